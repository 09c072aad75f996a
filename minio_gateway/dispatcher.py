# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Outbound HTTP calls to the storage backend.

Sends an already signed request with httpx and returns the buffered
response.  Hop-by-hop headers are removed in both directions.  Transport
failures are raised as ``UpstreamUnavailableError`` (timeouts as the
``UpstreamTimeoutError`` subclass) so the gateway can tell them apart from
configuration problems.  Requests are never retried here.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

import httpx


logger = logging.getLogger(__name__)

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

HeaderPairs = list[tuple[str, str]]


class UpstreamUnavailableError(Exception):
    """The storage backend could not be reached."""


class UpstreamTimeoutError(UpstreamUnavailableError):
    """The storage backend did not answer within the configured timeout."""


def strip_hop_by_hop(
    headers: Mapping[str, str] | Iterable[tuple[str, str]],
) -> HeaderPairs:
    """Remove hop-by-hop headers.

    Besides the fixed RFC 7230 set, any header named in a ``Connection``
    header value is removed too.

    Args:
        headers: Mapping or ``(name, value)`` pairs.

    Returns:
        Remaining ``(name, value)`` pairs in their original order.
    """
    if isinstance(headers, Mapping):
        pairs = list(headers.items())
    else:
        pairs = list(headers)

    drop = set(HOP_BY_HOP_HEADERS)
    for name, value in pairs:
        if name.lower() == "connection":
            drop.update(
                token.strip().lower()
                for token in value.split(",")
                if token.strip()
            )
    return [(name, value) for name, value in pairs if name.lower() not in drop]


@dataclass(frozen=True)
class UpstreamResponse:
    """Buffered response from the storage backend.

    Attributes:
        status_code: HTTP status code.
        headers: Response headers without hop-by-hop headers.
        body: Raw body bytes, exactly as sent (not content-decoded).
    """

    status_code: int
    headers: HeaderPairs
    body: bytes

    def header(self, name: str) -> str | None:
        """First value of a header, case-insensitively."""
        wanted = name.lower()
        for key, value in self.headers:
            if key.lower() == wanted:
                return value
        return None


def _default_client() -> httpx.Client:
    client = httpx.Client(follow_redirects=False)
    # Bodies are relayed undecoded; only ask for compression the
    # client asked for.
    client.headers.pop("Accept-Encoding", None)
    return client


class Dispatcher:
    """Sends signed requests to the storage backend.

    One instance is shared by all gateway threads.
    """

    def __init__(self, client: httpx.Client | None = None) -> None:
        """Initialize dispatcher.

        Args:
            client: httpx client to use.  When None, a client is created
                and owned by the dispatcher.
        """
        self._owns_client = client is None
        self._client = client if client is not None else _default_client()

    def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | Iterable[tuple[str, str]],
        body: bytes,
        *,
        timeout_ms: float,
    ) -> UpstreamResponse:
        """Send a request and buffer the response.

        Args:
            method: HTTP method.
            url: Absolute upstream URL.
            headers: Signed request headers.
            body: Request body.
            timeout_ms: Timeout for connect, read and write, in ms.

        Returns:
            UpstreamResponse with hop-by-hop headers removed.

        Raises:
            UpstreamTimeoutError: If the backend timed out.
            UpstreamUnavailableError: On any other transport failure.
        """
        outbound = [
            (name, value)
            for name, value in strip_hop_by_hop(headers)
            if name.lower() != "content-length"
        ]
        try:
            with self._client.stream(
                method,
                url,
                headers=outbound,
                content=body,
                timeout=timeout_ms / 1000,
            ) as response:
                raw_body = b"".join(response.iter_raw())
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(
                f"{method} {url} timed out after {timeout_ms:g}ms"
            ) from e
        except httpx.TransportError as e:
            raise UpstreamUnavailableError(
                f"{method} {url} failed: {type(e).__name__}: {e}"
            ) from e

        return UpstreamResponse(
            status_code=response.status_code,
            headers=strip_hop_by_hop(response.headers.multi_items()),
            body=raw_body,
        )

    def close(self) -> None:
        """Close the underlying client if this dispatcher created it."""
        if self._owns_client:
            self._client.close()
