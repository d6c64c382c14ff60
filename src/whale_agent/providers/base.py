"""
Provider abstraction shared by every analysis vendor.

A provider turns ``(prompt, params, timeout)`` into plain text.  Vendor
response shapes differ, so each adapter normalises its own payload; every
failure surfaces as a ``ProviderError`` with a ``ProviderErrorKind`` the
invoker can act on.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import Any, Literal, Optional

import httpx

from ..data_sources._retry import parse_retry_after
from ..errors import ProviderError, ProviderErrorKind

logger = logging.getLogger(__name__)

Tier = Literal["fast", "deep"]


@dataclass(frozen=True)
class ModelParams:
    model: str
    max_output_tokens: int = 2000
    temperature: float = 0.3


@dataclass(frozen=True)
class ProviderSpec:
    """One selectable ``provider:model`` pair with its call budget."""

    provider: str
    model: str
    tier: Tier
    timeout: float
    max_output_tokens: int = 2000
    temperature: float = 0.3

    @property
    def key(self) -> str:
        return f"{self.provider}:{self.model}"

    @property
    def params(self) -> ModelParams:
        return ModelParams(
            model=self.model,
            max_output_tokens=self.max_output_tokens,
            temperature=self.temperature,
        )


class TextProvider(abc.ABC):
    """Base class for analysis provider adapters."""

    name = "abstract"

    @abc.abstractmethod
    async def complete(
        self,
        prompt: str,
        params: ModelParams,
        timeout: float,
        *,
        system: Optional[str] = None,
    ) -> str:
        """Return the model's text answer or raise ``ProviderError``."""

    async def close(self) -> None:
        return None

    def error(
        self,
        kind: ProviderErrorKind,
        message: str,
        params: ModelParams,
        **kwargs: Any,
    ) -> ProviderError:
        return ProviderError(kind, message, provider=self.name, model=params.model, **kwargs)

    def require_text(self, text: Optional[str], params: ModelParams) -> str:
        if not text or not text.strip():
            raise self.error(ProviderErrorKind.SERVER_ERROR, "empty response", params)
        return text


def classify_status(status_code: int) -> ProviderErrorKind:
    """Map an HTTP status to a provider error kind."""
    if status_code == 429:
        return ProviderErrorKind.RATE_LIMITED
    if status_code in (401, 403):
        return ProviderErrorKind.AUTH_ERROR
    if status_code == 408:
        return ProviderErrorKind.TIMEOUT
    # Conflict and Too Early clear up on their own
    if status_code in (409, 425) or status_code >= 500:
        return ProviderErrorKind.SERVER_ERROR
    return ProviderErrorKind.BAD_REQUEST


class HTTPTextProvider(TextProvider):
    """Provider reached over a plain JSON HTTP API via ``httpx``."""

    def __init__(self, *, base_url: str, api_key: str, client: httpx.AsyncClient | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(headers={"Content-Type": "application/json"})
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def post_json(
        self,
        url: str,
        payload: dict[str, Any],
        *,
        params: ModelParams,
        timeout: float,
        headers: Optional[dict[str, str]] = None,
        query: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        """POST *payload* and return the decoded body, classifying every failure."""
        client = await self._get_client()
        try:
            resp = await client.post(url, json=payload, headers=headers, params=query, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise self.error(ProviderErrorKind.TIMEOUT, f"timed out after {timeout:.0f}s", params) from exc
        except httpx.TransportError as exc:
            raise self.error(ProviderErrorKind.NETWORK_ERROR, f"{type(exc).__name__}: {exc}", params) from exc

        if resp.status_code >= 400:
            kind = classify_status(resp.status_code)
            raise self.error(
                kind,
                f"HTTP {resp.status_code}: {_error_detail(resp)}",
                params,
                status_code=resp.status_code,
                retry_after=parse_retry_after(resp) if kind == ProviderErrorKind.RATE_LIMITED else None,
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise self.error(ProviderErrorKind.SERVER_ERROR, "non-JSON response body", params) from exc
        if not isinstance(body, dict):
            raise self.error(ProviderErrorKind.SERVER_ERROR, "unexpected response shape", params)
        return body


def _error_detail(resp: httpx.Response, limit: int = 200) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:limit]
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict):
        return str(err.get("message") or err)[:limit]
    return str(err or body)[:limit]
