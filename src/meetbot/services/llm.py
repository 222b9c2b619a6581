"""LLM provider abstraction via LiteLLM Router.

Provides the model routing used by the insight generator:
- Claude Sonnet 4 as the primary reasoning model
- GPT-4o as fallback when Claude is unavailable
- Whisper speech-to-text through ``litellm.atranscription``
"""

from __future__ import annotations

from typing import Any

import litellm
import structlog
from litellm import Router

from src.meetbot.config import get_settings
from src.meetbot.core.monitoring import track_llm_call

logger = structlog.get_logger(__name__)

DEFAULT_REASONING_MODEL = "anthropic/claude-sonnet-4-20250514"


class LLMService:
    """LLM provider abstraction with LiteLLM Router.

    Configures the "reasoning" model group (Claude primary, GPT-4o
    fallback) and exposes speech-to-text for meeting audio.
    """

    def __init__(self, settings: Any = None) -> None:
        self._settings = settings or get_settings()

        model_list = []

        if self._settings.ANTHROPIC_API_KEY:
            model_list.append({
                "model_name": "reasoning",
                "litellm_params": {
                    "model": DEFAULT_REASONING_MODEL,
                    "api_key": self._settings.ANTHROPIC_API_KEY,
                },
            })

        if self._settings.OPENAI_API_KEY:
            model_list.append({
                "model_name": "reasoning",
                "litellm_params": {
                    "model": "openai/gpt-4o",
                    "api_key": self._settings.OPENAI_API_KEY,
                },
            })

        if not model_list:
            logger.warning("No LLM API keys configured -- LLM service will be unavailable")
            self.router = None
            return

        self.router = Router(
            model_list=model_list,
            num_retries=self._settings.LLM_MAX_RETRIES,
            timeout=self._settings.LLM_TIMEOUT,
            allowed_fails=3,
            cooldown_time=30,
        )

    def resolve_model(self, model_name: str = "reasoning") -> str:
        """Resolve a model group name to a LiteLLM model identifier.

        Returns the first deployment registered for the group, or
        DEFAULT_REASONING_MODEL when the router is not configured.
        """
        if self.router:
            for m in self.router.model_list:
                if m.get("model_name") == model_name:
                    return m["litellm_params"]["model"]
        return DEFAULT_REASONING_MODEL

    async def transcribe(self, audio: bytes, filename: str = "audio.mp3") -> dict[str, Any]:
        """Run speech-to-text on an audio payload.

        Returns:
            The verbose JSON response as a dict (text, language,
            duration, segments).

        Raises:
            RuntimeError: If no OpenAI API key is configured.
        """
        if not self._settings.OPENAI_API_KEY:
            raise RuntimeError("OPENAI_API_KEY is required for transcription")

        model = self._settings.STT_MODEL
        async with track_llm_call(model, "transcription"):
            response = await litellm.atranscription(
                model=model,
                file=(filename, audio),
                response_format="verbose_json",
                api_key=self._settings.OPENAI_API_KEY,
                timeout=self._settings.LLM_TIMEOUT,
            )
        return _as_dict(response)


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    if hasattr(value, "model_dump"):
        return value.model_dump()
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return dict(vars(value))
