"""Async HTTP transport for the case file backend.

Wraps ``httpx.AsyncClient`` with bearer authentication from the session,
an explicit per-request timeout, retry with backoff for idempotent reads,
and mapping of non-2xx responses onto FetchError / NotFoundError carrying
the backend's ``message`` field.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

import httpx

from .config import Config
from .errors import FetchError, NotFoundError
from .session import SessionProvider

logger = logging.getLogger(__name__)

# HTTP status codes that indicate transient failures
TRANSIENT_HTTP_CODES = frozenset({408, 429, 500, 502, 503, 504})

# Bound how much of an error body ends up in logs
_MAX_LOGGED_BODY = 500


def _server_message(response: httpx.Response) -> str | None:
    """Return the ``message`` field of a JSON error body, if there is one.

    Validation errors may carry a list of messages; those are joined.
    """
    try:
        body = response.json()
    except (ValueError, RecursionError):
        return None
    if not isinstance(body, dict):
        return None
    message = body.get("message")
    if isinstance(message, list):
        message = ", ".join(item.strip() for item in message if isinstance(item, str) and item.strip())
    if isinstance(message, str) and message.strip():
        return message
    return None


class ApiClient:
    """Thin async client for the case file REST API.

    Owns one ``httpx.AsyncClient``; use as an async context manager or call
    :meth:`aclose` when done. Pass ``transport`` to run against an in-process
    fake backend.
    """

    def __init__(
        self,
        config: Config,
        session: SessionProvider,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.session = session
        self._client = httpx.AsyncClient(
            base_url=config.api_url,
            timeout=httpx.Timeout(config.timeout_seconds),
            transport=transport,
        )

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, with_body: bool) -> dict[str, str]:
        token = self.session.current().token.get_secret_value()
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        if with_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff capped at retry_max_delay, plus 10-20% jitter."""
        delay = self.config.retry_base_delay * (2**attempt)
        delay = min(delay, self.config.retry_max_delay)
        return delay + delay * random.uniform(0.1, 0.2)

    async def get_json(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        fallback: str | None = None,
    ) -> Any:
        """GET with retry on transient failures; returns the decoded body."""
        attempts = self.config.max_retries + 1
        for attempt in range(attempts):
            try:
                return await self._send("GET", path, params=params, fallback=fallback)
            except FetchError as e:
                transient = e.status_code is None or e.status_code in TRANSIENT_HTTP_CODES
                if not transient or isinstance(e, NotFoundError):
                    raise
                if attempt >= attempts - 1:
                    logger.error(
                        "Max retries exhausted",
                        extra={"path": path, "attempts": attempt + 1},
                    )
                    raise
                delay = self._calculate_backoff(attempt)
                logger.warning(
                    "Transient failure (attempt %d/%d), retrying in %.2fs",
                    attempt + 1,
                    attempts,
                    delay,
                    extra={"path": path, "status_code": e.status_code},
                )
                await asyncio.sleep(delay)
        raise FetchError("Unexpected retry loop exit", fallback=fallback)

    async def send_json(
        self,
        method: str,
        path: str,
        body: dict[str, Any],
        *,
        fallback: str | None = None,
    ) -> Any:
        """Send a mutating request once; mutations are never retried."""
        return await self._send(method, path, json=body, fallback=fallback)

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        fallback: str | None = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method,
                path,
                params=params,
                json=json,
                headers=self._headers(with_body=json is not None),
            )
        except httpx.TimeoutException as e:
            logger.warning("%s %s timed out: %s", method, path, type(e).__name__)
            raise FetchError(
                f"{method} {path} timed out after {self.config.timeout_seconds}s",
                fallback=fallback,
            ) from e
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s: %s", method, path, type(e).__name__, e)
            raise FetchError(
                f"{method} {path} failed: {type(e).__name__}: {e}",
                fallback=fallback,
            ) from e

        if not response.is_success:
            server_message = _server_message(response)
            logger.error(
                "%s %s returned %s: %s",
                method,
                path,
                response.status_code,
                response.text[:_MAX_LOGGED_BODY],
            )
            error_cls = NotFoundError if response.status_code == 404 else FetchError
            raise error_cls(
                f"{method} {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
                server_message=server_message,
                fallback=fallback,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            logger.debug("%s %s returned a non-JSON success body", method, path)
            return None
        except RecursionError as e:
            logger.warning("%s %s returned a body nested too deeply to decode", method, path)
            raise FetchError(
                f"{method} {path} returned an undecodable body",
                status_code=response.status_code,
                fallback=fallback,
            ) from e
