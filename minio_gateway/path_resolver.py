# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Resolve the upstream object path for a proxied request.

The resolved path is used twice: as the canonical URI inside the SigV4
signature and as the path of the outbound request.  Both must be the same
string, so ``resolve`` is the only place the upstream path is computed.

Resolution order:

1. Route strip-path: remove the route's first declared path prefix.
2. Secondary strip pattern from the plugin config, anchored at the start.
3. Force a leading ``/``, resolve ``.`` and ``..`` segments and re-encode
   the path with the SigV4 unreserved set, so httpx sends it unchanged.
4. Bucket injection: prefix ``/<bucket>`` unless the path already starts
   with that segment.
5. Prefix the service path.
6. Collapse repeated slashes.
"""

import re
import urllib.parse
from dataclasses import dataclass

from minio_gateway.aws_signing import uri_encode


DEFAULT_PORTS = {"http": 80, "https": 443}

_SLASH_RUN = re.compile(r"/{2,}")


@dataclass(frozen=True)
class PathContext:
    """Route, service and plugin settings that shape the upstream path.

    Attributes:
        route_strip_path: Whether the matched route strips its prefix.
        route_paths: Path prefixes declared on the route, in order.
        strip_path_pattern: Extra prefix removed after route stripping.
        strip_path_regex: Treat ``strip_path_pattern`` as a regular
            expression instead of a literal prefix.
        bucket_name: Bucket injected when absent from the path.
        service_path: Path prefix of the upstream service.
    """

    route_strip_path: bool = False
    route_paths: tuple[str, ...] = ()
    strip_path_pattern: str | None = None
    strip_path_regex: bool = False
    bucket_name: str | None = None
    service_path: str = ""


@dataclass(frozen=True)
class ResolvedPath:
    """Upstream path (signed as is) and the request URI built from it."""

    path: str
    uri: str


def _strip_route_prefix(path: str, context: PathContext) -> str:
    if not (context.route_strip_path and context.route_paths):
        return path
    prefix = context.route_paths[0]
    if prefix and path.startswith(prefix):
        path = path[len(prefix) :] or "/"
    return path


def _strip_pattern(path: str, pattern: str | None, *, regex: bool) -> str:
    if not pattern:
        return path
    if regex:
        return re.sub(f"^(?:{pattern})", "", path, count=1)
    if path.startswith(pattern):
        return path[len(pattern) :]
    return path


def normalize_path(path: str) -> str:
    """Resolve dot segments and re-encode a request path.

    The path is percent-decoded, empty, ``.`` and ``..`` segments are
    resolved (``..`` never climbs above the root), and the result is
    encoded with ``uri_encode`` keeping ``/``.  A trailing slash survives.
    The output contains only unreserved characters, ``/`` and ``%XX``
    escapes, which HTTP clients send as is.
    """
    decoded = urllib.parse.unquote(path)
    parts = decoded.split("/")
    segments: list[str] = []
    for part in parts:
        if part == "..":
            if segments:
                segments.pop()
        elif part not in ("", "."):
            segments.append(part)
    normalized = "/" + "/".join(segments)
    if segments and parts[-1] in ("", ".", ".."):
        normalized += "/"
    return uri_encode(normalized, encode_slash=False)


def _has_bucket_segment(path: str, bucket_prefix: str) -> bool:
    """True if ``path`` is ``bucket_prefix`` or continues with ``/``."""
    if not path.startswith(bucket_prefix):
        return False
    rest = path[len(bucket_prefix) :]
    return rest == "" or rest.startswith("/")


def resolve_upstream_path(request_path: str, context: PathContext) -> str:
    """Compute the normalized upstream path for a request.

    Args:
        request_path: Inbound request path without query string.
        context: Route, service and plugin settings.

    Returns:
        Absolute path with single slashes.
    """
    path = _strip_route_prefix(request_path, context)
    path = _strip_pattern(
        path, context.strip_path_pattern, regex=context.strip_path_regex
    )
    path = normalize_path(path)

    service_path = uri_encode(
        urllib.parse.unquote(context.service_path or ""), encode_slash=False
    )
    if context.bucket_name:
        bucket_prefix = "/" + uri_encode(context.bucket_name)
        if _has_bucket_segment(path, bucket_prefix):
            upstream = service_path + path
        else:
            upstream = service_path + bucket_prefix + path
    else:
        upstream = service_path + path

    upstream = _SLASH_RUN.sub("/", upstream)
    if not upstream.startswith("/"):
        upstream = "/" + upstream
    return upstream


def build_request_uri(path: str, query: str | None) -> str:
    """Append ``?query`` to the path when the query is non-empty."""
    if query:
        return f"{path}?{query}"
    return path


def resolve(
    request_path: str, query: str | None, context: PathContext
) -> ResolvedPath:
    """Resolve both the signing path and the full request URI."""
    path = resolve_upstream_path(request_path, context)
    return ResolvedPath(path=path, uri=build_request_uri(path, query))


def format_host(host: str, port: int | None, protocol: str = "http") -> str:
    """Format a ``Host`` value, omitting the protocol's default port."""
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    if port is None or DEFAULT_PORTS.get(protocol.lower()) == port:
        return host
    return f"{host}:{port}"


def build_upstream_url(
    protocol: str, host: str, port: int | None, uri: str
) -> str:
    """Absolute upstream URL for a resolved request URI."""
    return f"{protocol}://{format_host(host, port, protocol)}{uri}"
