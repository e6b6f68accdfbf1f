"""Tools package for contract generation utilities."""

from tools.template_catalog import TemplateCatalog, filter_by_threshold
from tools.text_metrics import count_words, validate_prompt, validate_step3_inputs
from tools.contract_renderer import render_contract_text, render_contract_html

__all__ = [
    "TemplateCatalog",
    "filter_by_threshold",
    "count_words",
    "validate_prompt",
    "validate_step3_inputs",
    "render_contract_text",
    "render_contract_html",
]
