"""Shared plumbing for providers that talk to a JSON HTTP API through httpx."""

from __future__ import annotations

import logging
from abc import abstractmethod
from typing import Any

import httpx

from history_insights.exceptions import (
    ProviderError,
    ProviderRequestError,
    ProviderUnavailableError,
    QuotaExceededError,
)
from history_insights.llm.base import BaseProvider, ProviderStatus, error_for_status
from history_insights.llm.cancellation import CancellationToken, guard

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0


class HTTPProvider(BaseProvider):
    """Base for httpx-backed providers.

    A fresh ``httpx.AsyncClient`` is opened per request. Pass ``transport``
    (e.g. ``httpx.MockTransport``) to route requests elsewhere.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._initialized = False

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Issue one request and translate failures into provider errors."""
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers=self._headers(),
            ) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.ConnectError as e:
            raise ProviderUnavailableError(f"Could not reach {self.display_name}: {e}") from e
        except httpx.TimeoutException as e:
            raise ProviderRequestError(f"{self.display_name} request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderRequestError(f"{self.display_name} request failed: {e}") from e

        if response.is_error:
            raise error_for_status(self.display_name, response.status_code, _error_detail(response))
        return response

    async def initialize(self, system_prompt: str | None = None) -> None:
        self.system_prompt = system_prompt
        if self._initialized:
            return
        if self.requires_configuration:
            raise ProviderUnavailableError(f"{self.display_name} API key is required")
        await self._probe()
        self._initialized = True
        logger.info(f"{self.display_name} provider initialized")

    async def prompt(
        self,
        text: str,
        response_schema: dict | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        if not self._initialized:
            await self.initialize(self.system_prompt)
        path, payload = self._build_prompt_request(text, response_schema)
        logger.debug(f"{self.display_name}: sending prompt ({len(text)} chars)")
        response = await guard(cancel_token, self._request("POST", path, json=payload))
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderRequestError(f"{self.display_name} returned a non-JSON body") from e
        result = self._extract_text(data)
        if not result:
            raise ProviderRequestError(f"No response from {self.display_name}")
        return result

    async def get_status(self) -> ProviderStatus:
        if self.requires_configuration:
            return ProviderStatus.NEEDS_CONFIGURATION
        try:
            await self._probe()
        except QuotaExceededError:
            return ProviderStatus.RATE_LIMITED
        except ProviderUnavailableError:
            return ProviderStatus.UNAVAILABLE
        except ProviderError as e:
            logger.warning(f"{self.display_name} status check failed: {e}")
            return ProviderStatus.ERROR
        return ProviderStatus.AVAILABLE

    @abstractmethod
    async def _probe(self) -> None:
        """Cheap request proving the backend is reachable and usable."""
        ...

    @abstractmethod
    def _build_prompt_request(self, text: str, response_schema: dict | None) -> tuple[str, dict]:
        """Return the request path and JSON payload for one prompt."""
        ...

    @abstractmethod
    def _extract_text(self, data: dict) -> str:
        ...


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(error)
    return str(body)
