"""
TokenShrinker - Compressor

Single boundary to the external LLM provider. Takes text, asks the
configured model for a compressed version bounded to half the estimated
input tokens, and returns a CompressionResult. Nothing raised by the
provider escapes `compress`; there are no automatic retries.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from .config import ProviderSettings
from .hashing import estimate_tokens, target_tokens
from .repo_context import NO_SUMMARIES
from .schemas import CompressionResult

try:
    import litellm

    LITELLM_AVAILABLE = True
except ImportError:
    LITELLM_AVAILABLE = False
    logger.warning("LiteLLM not available. Install with: pip install litellm")


SYSTEM_PROMPT = (
    "You are a text compression expert. Your ONLY job is to compress the text to be "
    "as SHORT as possible while keeping the core meaning. Rules: 1) Remove filler words "
    "2) Use abbreviations 3) Be extremely concise 4) NO explanations "
    "5) Output ONLY the compressed version, nothing else."
)

CompletionFn = Callable[..., Any]


def build_messages(text: str, budget: int, context: Optional[str] = None) -> List[Dict[str, str]]:
    system = SYSTEM_PROMPT
    if context and context.strip() and context != NO_SUMMARIES:
        system += (
            "\n\nKnown repository context (use it to drop details the reader already has):\n"
            f"{context}"
        )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": f"Compress this to maximum {budget} tokens:\n\n{text}"},
    ]


def _field(obj: Any, name: str) -> Any:
    # LiteLLM returns objects; injected completion functions may return dicts.
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def compression_ratio(original_length: int, compressed_length: int) -> str:
    if original_length <= 0:
        return "0.0%"
    return f"{(1 - compressed_length / original_length) * 100:.1f}%"


class Compressor:
    """Compress text through the configured provider."""

    def __init__(
        self,
        provider: Optional[ProviderSettings] = None,
        completion_fn: Optional[CompletionFn] = None,
    ) -> None:
        self.provider = provider or ProviderSettings()
        self._completion_fn = completion_fn

    def _completion(self) -> CompletionFn:
        if self._completion_fn is not None:
            return self._completion_fn
        if not LITELLM_AVAILABLE:
            raise RuntimeError("LiteLLM not available")
        return litellm.completion

    def _request_kwargs(self, messages: List[Dict[str, str]], budget: int) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": self.provider.litellm_model,
            "messages": messages,
            "max_tokens": budget,
            "temperature": self.provider.temperature,
            "timeout": self.provider.timeout_seconds,
        }
        if self.provider.api_key:
            kwargs["api_key"] = self.provider.api_key
        if self.provider.base_url:
            kwargs["api_base"] = self.provider.base_url
        return kwargs

    def compress(self, text: Any, context: Optional[str] = None) -> CompressionResult:
        """Compress `text`; optional `context` is background for the model."""
        name, model = self.provider.name, self.provider.model

        if not isinstance(text, str):
            return CompressionResult.failure("Unsupported input type", name, model)

        if self.provider.requires_api_key and not self.provider.api_key:
            return CompressionResult.failure(
                f"No {name} API key found. Set USER_API_KEY, the provider key or AI_API_KEY in your .env file",
                name,
                model,
            )

        budget = target_tokens(estimate_tokens(text))
        messages = build_messages(text, budget, context)
        logger.debug(f"Compression request: provider={name} model={model} chars={len(text)} target_tokens={budget}")

        try:
            response = self._completion()(**self._request_kwargs(messages, budget))
        except Exception as e:
            logger.warning(f"Compression failed ({type(e).__name__}): {str(e)[:200]}")
            return CompressionResult.failure(str(e) or type(e).__name__, name, model)

        choices = _field(response, "choices")
        if not choices:
            return CompressionResult.failure("No response choices from AI", name, model)

        message = _field(choices[0], "message")
        if message is None:
            return CompressionResult.failure("No message in AI response", name, model)

        content = _field(message, "content")
        summary = content.strip() if isinstance(content, str) else ""
        if not summary:
            return CompressionResult.failure("AI returned empty summary", name, model)

        return CompressionResult(
            summary=summary,
            original_length=len(text),
            compressed_length=len(summary),
            compression_ratio=compression_ratio(len(text), len(summary)),
            provider=name,
            model=model,
        )
