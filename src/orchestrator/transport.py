"""
Ways for the orchestrator to reach a sweep service.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from api.server import API_KEY_HEADER
from api.service import SweepService
from batch.errors import PermanentConfigurationError, TransientNetworkError


class SweepTransport(ABC):
    """Issue one control call and return the service's response dict."""

    @abstractmethod
    def call(self, kind: str, action: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Raise TransientNetworkError or PermanentConfigurationError when the call itself fails."""

    def close(self) -> None:
        pass


def raise_for_error_type(response: dict[str, Any]) -> dict[str, Any]:
    """Turn configuration and transient failure responses into exceptions."""
    if response.get("success"):
        return response
    error_type = response.get("error_type")
    message = str(response.get("message") or "Request failed")
    if error_type in ("configuration", "auth"):
        raise PermanentConfigurationError(message)
    if error_type == "transient":
        raise TransientNetworkError(message)
    return response


class LocalTransport(SweepTransport):
    """Call an in-process service directly."""

    def __init__(self, service: SweepService) -> None:
        self.service = service

    def call(self, kind: str, action: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        return raise_for_error_type(self.service.handle(kind, action, payload))


class HttpTransport(SweepTransport):
    """Call a remote ``SweepApiServer`` over HTTP."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 60.0,
        client: Optional[httpx.Client] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers[API_KEY_HEADER] = token
        self.client = client or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout, headers=headers)
        self.logger = logger or logging.getLogger("media_offload")

    def call(self, kind: str, action: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        path = f"/api/{kind}/{action.replace('_', '-')}"
        try:
            if action == "status":
                response = self.client.get(path)
            else:
                response = self.client.post(path, json=payload or {})
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"{kind} {action} timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"{kind} {action} failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise PermanentConfigurationError("API key rejected by the sweep server")
        if response.status_code >= 500:
            raise TransientNetworkError(
                f"{kind} {action} returned HTTP {response.status_code}", status_code=response.status_code
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise TransientNetworkError(f"{kind} {action} returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise TransientNetworkError(f"{kind} {action} returned an unexpected body")
        return raise_for_error_type(data)

    def close(self) -> None:
        self.client.close()
