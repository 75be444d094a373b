from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol

import google.generativeai as genai

from .config import Settings
from .errors import GenerativeTextError

logger = logging.getLogger("campus_assistant.gemini_client")

DEFAULT_SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
]


class TextGenerator(Protocol):
    """Single-call generative text contract: prompt in, text out."""

    def generate_text(self, prompt: str) -> str:
        ...


class GeminiClient:
    """TextGenerator backed by google-generativeai; one blocking call per prompt."""

    def __init__(self, settings: Settings) -> None:
        """Purpose: Set the API key and prepare the default model.
        Inputs/Outputs: Settings with the key, model name, temperature, and token cap.
        Side Effects / State: genai.configure sets a process-wide key; models are cached per name.
        Dependencies: google.generativeai.
        Failure Modes: ValueError when the key or the model name is empty.
        If Removed: The generic fallback cannot call the model.
        Testing Notes: Validate missing key raises ValueError.
        """
        # Key first; the SDK reads it when models are built.
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        genai.configure(api_key=settings.gemini_api_key)
        self._temperature = settings.gemini_temperature
        self._max_output_tokens = settings.gemini_max_output_tokens
        self._models: Dict[str, genai.GenerativeModel] = {}
        self._default_model = _normalize_model_name(settings.gemini_model)
        if not self._default_model:
            raise ValueError("GEMINI_MODEL is required")
        self._models[self._default_model] = genai.GenerativeModel(self._default_model)

    def generate_text(self, prompt: str, model: Optional[str] = None) -> str:
        """Purpose: Send one prompt and return the stripped reply text.
        Inputs/Outputs: Prompt and an optional model override; output is text.
        Side Effects / State: A new model name is added to the cache.
        Dependencies: GenerativeModel.generate_content with generation and safety settings.
        Failure Modes: Any SDK failure, blocked prompt, or empty output raises
            GenerativeTextError. Never retried here.
        If Removed: The generic fallback has no generator.
        Testing Notes: Stub the model to raise and expect GenerativeTextError.
        """
        # Override names go through the same "models/" normalization.
        model_name = _normalize_model_name(model) if model else self._default_model
        cached = self._models.get(model_name)
        if cached is None:
            cached = self._models[model_name] = genai.GenerativeModel(model_name)
        try:
            response = cached.generate_content(
                prompt,
                generation_config={
                    "temperature": self._temperature,
                    "max_output_tokens": self._max_output_tokens,
                },
                safety_settings=DEFAULT_SAFETY_SETTINGS,
            )
            # .text raises ValueError when the candidate was blocked.
            text: Optional[str] = response.text
        except Exception as exc:
            logger.warning("gemini generate failed model=%s error=%s", model_name, type(exc).__name__)
            raise GenerativeTextError(str(exc)) from exc
        text = (text or "").strip()
        if not text:
            raise GenerativeTextError("empty response")
        return text


def _normalize_model_name(name: Optional[str]) -> str:
    """Strip the "models/" prefix and whitespace from a model name."""
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
