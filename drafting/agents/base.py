"""Shared Gemini plumbing for the drafting agents."""

import os
from typing import Any, Optional

import msgspec
from google import genai
from google.genai import types
from loguru import logger

from drafting.error_handling import LLMError, AgentError, GEMINI_RETRY_CONFIG, retry_with_backoff

DEFAULT_MODEL = "gemini-2.5-flash-lite"


class GeminiAgent:
    """Base class holding the Gemini client and the JSON response handling.

    Subclasses set ``AGENT_NAME`` and ``ACKNOWLEDGEMENT`` and implement
    ``_build_instruction``.
    """

    AGENT_NAME = "GeminiAgent"
    ACKNOWLEDGEMENT = "I understand. I will respond with only JSON."

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = DEFAULT_MODEL
    ):
        """Initialize the agent.

        Args:
            api_key: Google API key for Gemini (defaults to GOOGLE_API_KEY env var)
            model_name: Gemini model to use

        Raises:
            AgentError: If no API key is available
        """
        self.api_key = api_key or os.getenv("GOOGLE_API_KEY")
        self.model_name = model_name

        if not self.api_key:
            raise AgentError(f"No API key provided for {self.AGENT_NAME}")

        self.client = genai.Client(api_key=self.api_key)
        self.instruction = self._build_instruction()

        logger.info(f"{self.AGENT_NAME} initialized", model=model_name)

    def _build_instruction(self) -> str:
        raise NotImplementedError

    @retry_with_backoff(config=GEMINI_RETRY_CONFIG, exceptions=(LLMError,))
    def _generate(
        self,
        prompt: str,
        session_logger,
        temperature: float = 0.2,
        max_output_tokens: int = 4000
    ) -> str:
        """Send the instruction and ``prompt`` to Gemini and return the raw text.

        Raises:
            LLMError: If the call fails or the response is empty
        """
        session_logger.info(f"Calling Gemini for {self.AGENT_NAME}")
        try:
            response = self.client.models.generate_content(
                model=self.model_name,
                contents=[
                    types.Content(
                        role="user",
                        parts=[types.Part(text=self.instruction)]
                    ),
                    types.Content(
                        role="model",
                        parts=[types.Part(text=self.ACKNOWLEDGEMENT)]
                    ),
                    types.Content(
                        role="user",
                        parts=[types.Part(text=prompt)]
                    )
                ],
                config=types.GenerateContentConfig(
                    temperature=temperature,
                    max_output_tokens=max_output_tokens,
                    response_mime_type="application/json"
                )
            )
        except Exception as e:
            raise LLMError(f"Gemini call failed: {e}") from e

        text = response.text if response is not None else None
        if not text or not text.strip():
            raise LLMError("Empty response from Gemini")
        session_logger.info("Received LLM response", response_length=len(text))
        return text

    def _parse_json_response(self, response_text: str, decode_type: Any, session_logger) -> Any:
        """Strip markdown fences and decode ``response_text`` into ``decode_type``.

        Raises:
            LLMError: If the JSON is malformed or does not match the type
        """
        cleaned_text = response_text.strip()
        if cleaned_text.startswith("```json"):
            cleaned_text = cleaned_text[7:]
        if cleaned_text.startswith("```"):
            cleaned_text = cleaned_text[3:]
        if cleaned_text.endswith("```"):
            cleaned_text = cleaned_text[:-3]
        cleaned_text = cleaned_text.strip()

        try:
            return msgspec.json.decode(cleaned_text.encode("utf-8"), type=decode_type)
        except (msgspec.DecodeError, msgspec.ValidationError) as e:
            session_logger.error(f"JSON decode error: {str(e)}")
            session_logger.debug(f"Response text: {response_text[:500]}")
            raise LLMError(f"Failed to parse JSON response: {str(e)}") from e
