"""Anthropic Claude adapter built on the official ``anthropic`` SDK."""

from __future__ import annotations

import logging
from typing import Any, Optional

import anthropic

from ..data_sources._retry import parse_retry_after
from ..errors import ProviderError, ProviderErrorKind
from .base import ModelParams, TextProvider, classify_status

logger = logging.getLogger(__name__)


class AnthropicProvider(TextProvider):
    name = "anthropic"

    def __init__(self, *, api_key: str, client: Any = None) -> None:
        self._api_key = api_key
        self._client = client

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            # Retries are owned by the invoker, not the SDK
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key, max_retries=0)
        return self._client

    async def close(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
            self._client = None

    async def complete(self, prompt, params: ModelParams, timeout, *, system: Optional[str] = None) -> str:
        kwargs: dict[str, Any] = {
            "model": params.model,
            "max_tokens": params.max_output_tokens,
            "temperature": params.temperature,
            "messages": [{"role": "user", "content": prompt}],
            "timeout": timeout,
        }
        if system:
            kwargs["system"] = system
        try:
            message = await self._get_client().messages.create(**kwargs)
        except anthropic.APIError as exc:
            raise self._classify(exc, params, timeout) from exc

        usage = getattr(message, "usage", None)
        if usage is not None:
            logger.info(
                "anthropic model=%s input_tokens=%s output_tokens=%s",
                params.model, getattr(usage, "input_tokens", "?"), getattr(usage, "output_tokens", "?"),
            )
        text = "".join(
            getattr(block, "text", "")
            for block in (message.content or [])
            if getattr(block, "type", "text") == "text"
        )
        return self.require_text(text, params)

    def _classify(self, exc: anthropic.APIError, params: ModelParams, timeout: float) -> ProviderError:
        # APITimeoutError subclasses APIConnectionError, check it first
        if isinstance(exc, anthropic.APITimeoutError):
            return self.error(ProviderErrorKind.TIMEOUT, f"timed out after {timeout:.0f}s", params)
        if isinstance(exc, anthropic.APIConnectionError):
            return self.error(ProviderErrorKind.NETWORK_ERROR, str(exc), params)
        if isinstance(exc, anthropic.APIStatusError):
            kind = classify_status(exc.status_code)
            retry_after = None
            if kind == ProviderErrorKind.RATE_LIMITED and exc.response is not None:
                retry_after = parse_retry_after(exc.response)
            return self.error(
                kind,
                f"HTTP {exc.status_code}: {exc.message}",
                params,
                status_code=exc.status_code,
                retry_after=retry_after,
            )
        return self.error(ProviderErrorKind.SERVER_ERROR, str(exc), params)
