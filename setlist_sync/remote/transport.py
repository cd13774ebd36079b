"""
Single-round-trip HTTP primitive for the remote webhooks.

HttpTransport sends one JSON request and returns the parsed body. It never
retries: a failure of the one round trip is reported to the caller as a
TransportError. Retries belong to the confirmation machine only.

Body parsing:
    - Responses declared as JSON must parse, otherwise TransportError
    - Other content types are parsed leniently; an empty or non-JSON body
      becomes {} (the remote answers deletes with an empty body)

Usage:
    async with HttpTransport(timeout=30) as transport:
        body = await transport.request("GET", url)
        body = await transport.request("POST", url, {"song": {...}, "mode": "create"})

Any object with a compatible `request` coroutine can stand in for
HttpTransport; the gateway depends on the Transport protocol only.
"""

import asyncio
import json
from typing import Any, Protocol

import aiohttp

from setlist_sync.core.exceptions import TransportError
from setlist_sync.core.logger import get_logger

logger = get_logger(__name__)

# Response bodies are truncated to this length in error details
BODY_PREVIEW_LENGTH = 500


class Transport(Protocol):
    """What the gateway needs from an HTTP client."""

    async def request(
        self,
        method: str,
        url: str,
        payload: dict[str, Any] | None = None
    ) -> Any:
        ...


class HttpTransport:
    """
    aiohttp-backed transport.

    The ClientSession is created lazily on the first request (or on
    entering the async context) and closed by close() / context exit.

    Attributes:
        timeout: Total seconds allowed for one round trip.
    """

    def __init__(self, timeout: float = 30.0) -> None:
        self.timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "HttpTransport":
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"Accept": "application/json"},
            )
        return self._session

    async def close(self) -> None:
        """Close the underlying session. Safe to call multiple times."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request(
        self,
        method: str,
        url: str,
        payload: dict[str, Any] | None = None
    ) -> Any:
        """
        Perform one HTTP round trip.

        Args:
            method: "GET" or "POST".
            url: Absolute endpoint URL.
            payload: JSON body for POST requests.

        Returns:
            Parsed JSON body, or {} for an empty / non-JSON body.

        Raises:
            TransportError: On connection failure, timeout, non-2xx status,
                            or a JSON-declared body that does not parse.
        """
        session = self._ensure_session()
        logger.debug(f"{method} {url}")

        try:
            async with session.request(method, url, json=payload) as response:
                text = await response.text()
                content_type = response.headers.get("Content-Type", "")
                status = response.status
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"Request timed out after {self.timeout:g}s",
                details={"url": url, "method": method}
            ) from e
        except aiohttp.ClientError as e:
            raise TransportError(
                f"Request failed: {e}",
                details={"url": url, "method": method, "original_error": str(e)}
            ) from e

        if not 200 <= status < 300:
            logger.debug(f"{method} {url} -> HTTP {status}: {text[:BODY_PREVIEW_LENGTH]}")
            raise TransportError(
                f"HTTP error! status: {status}",
                details={"url": url, "method": method, "body": text[:BODY_PREVIEW_LENGTH]},
                status=status,
                body=text,
            )

        return parse_body(text, content_type, url=url, status=status)


def parse_body(text: str, content_type: str = "", url: str = "", status: int = 200) -> Any:
    """
    Parse a response body.

    Args:
        text: Raw body text.
        content_type: Content-Type header value.
        url: Endpoint, for error details.
        status: HTTP status, for error details.

    Returns:
        The decoded JSON value, or {} when the body is empty or, for
        non-JSON content types, unparseable.

    Raises:
        TransportError: If the body is declared as JSON but does not parse.
    """
    if not text.strip():
        return {}

    try:
        return json.loads(text)
    except ValueError as e:
        if "json" in content_type.lower():
            raise TransportError(
                "Malformed JSON in response body",
                details={"url": url, "body": text[:BODY_PREVIEW_LENGTH]},
                status=status,
                body=text,
            ) from e
        logger.debug(f"Non-JSON response from {url or 'remote'}; treating as empty")
        return {}
