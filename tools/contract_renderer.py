"""Contract Renderer for assembling the reviewed clauses into a document.

Produces the plain-text and HTML renditions shown in the final review step.
Only approved clauses are included, mandatory clauses first.
"""

import html
from datetime import date
from typing import Dict, List, Optional

from drafting.models import Clause, ClauseStatus, MandatoryFields, PartyInfo
from tools.text_metrics import format_contract_type


def approved_clauses(
    mandatory: List[Clause],
    optional: List[Clause],
    custom: List[Clause]
) -> List[Clause]:
    """Approved clauses in document order."""
    ordered = sorted(mandatory, key=lambda c: c.order)
    ordered += sorted(optional, key=lambda c: c.order)
    ordered += sorted(custom, key=lambda c: c.order)
    return [c for c in ordered if c.status == ClauseStatus.APPROVED]


def _party_line(label: str, party: Optional[PartyInfo]) -> str:
    if party is None:
        return f"{label}: [not provided]"
    line = f"{label}: {party.name} ({party.email})"
    if party.address:
        line += f", {party.address}"
    return line


def render_contract_text(
    title: str,
    contract_type: str,
    fields: MandatoryFields,
    clauses: List[Clause],
    on: Optional[date] = None
) -> str:
    """Plain-text contract with numbered sections."""
    on = on or date.today()
    lines = [
        title.upper(),
        f"Type: {format_contract_type(contract_type)}",
        f"Date: {on.isoformat()}",
        "",
        _party_line("Party 1", fields.party1),
        _party_line("Party 2", fields.party2),
    ]
    if fields.contract_details:
        lines.append("")
        for key, value in sorted(fields.contract_details.items()):
            lines.append(f"{key.replace('_', ' ').title()}: {value}")

    for number, clause in enumerate(clauses, start=1):
        lines.extend(["", f"{number}. {clause.title}", clause.content.strip()])

    lines.extend([
        "",
        "SIGNATURES",
        f"{fields.party1.name if fields.party1 else 'Party 1'}: ______________________",
        f"{fields.party2.name if fields.party2 else 'Party 2'}: ______________________",
    ])
    return "\n".join(lines)


def render_contract_html(
    title: str,
    contract_type: str,
    fields: MandatoryFields,
    clauses: List[Clause],
    on: Optional[date] = None
) -> str:
    """HTML contract; all user and model text is escaped."""
    on = on or date.today()
    esc = html.escape

    details = "".join(
        f"<li><strong>{esc(key.replace('_', ' ').title())}:</strong> {esc(value)}</li>"
        for key, value in sorted(fields.contract_details.items())
    )
    sections = "".join(
        f'<section class="clause" id="{esc(clause.clause_id)}">'
        f"<h2>{number}. {esc(clause.title)}</h2>"
        + "".join(f"<p>{esc(p.strip())}</p>" for p in clause.content.split("\n\n") if p.strip())
        + "</section>"
        for number, clause in enumerate(clauses, start=1)
    )
    parties = "".join(
        f"<p>{esc(_party_line(label, party))}</p>"
        for label, party in (("Party 1", fields.party1), ("Party 2", fields.party2))
    )

    return (
        '<article class="contract">'
        f"<h1>{esc(title)}</h1>"
        f'<p class="meta">{esc(format_contract_type(contract_type))} &middot; {on.isoformat()}</p>'
        f'<div class="parties">{parties}</div>'
        + (f'<ul class="details">{details}</ul>' if details else "")
        + sections
        + "</article>"
    )


def clause_summary(clauses: List[Clause]) -> Dict[str, int]:
    summary = {status.value: 0 for status in ClauseStatus}
    for clause in clauses:
        summary[clause.status.value] += 1
    return summary
