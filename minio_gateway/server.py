# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""WSGI gateway that signs and proxies requests to MinIO/S3.

For every inbound request the gateway matches a route, resolves the
upstream path, signs the request with the route's storage credentials and
relays it to the route's service.  Clients never see the credentials.

Error responses carry a JSON body ``{"message": ...}``:

- 400 when the query string is not valid UTF-8,
- 404 when no route matches,
- 500 on configuration errors (never retried),
- 502 when the storage backend cannot be reached,
- 504 when the storage backend times out.
"""

import argparse
import json
import logging
import signal
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit


if TYPE_CHECKING:
    from werkzeug.wrappers.response import StartResponse

from werkzeug.serving import make_server
from werkzeug.wrappers import Request, Response

from minio_gateway.aws_signing import (
    SigningRequest,
    sign_request,
    uri_encode,
    utc_now,
)
from minio_gateway.config import (
    ConfigError,
    GatewayConfig,
    MinioPluginConfig,
    RouteConfig,
    ServiceConfig,
)
from minio_gateway.dispatcher import (
    Dispatcher,
    UpstreamResponse,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
    strip_hop_by_hop,
)
from minio_gateway.logging import configure_logging
from minio_gateway.path_resolver import (
    PathContext,
    build_upstream_url,
    format_host,
    resolve,
)


logger = logging.getLogger(__name__)

NO_ROUTE_MESSAGE = "no Route matched with those values"
INVALID_QUERY_MESSAGE = "Query string is not valid UTF-8"


@dataclass(frozen=True)
class RouteMatch:
    """A matched route with its service and effective plugin settings."""

    route: RouteConfig
    service: ServiceConfig
    plugin: MinioPluginConfig

    def path_context(self) -> PathContext:
        """Path resolution settings for this match."""
        return PathContext(
            route_strip_path=self.route.strip_path,
            route_paths=self.route.paths,
            strip_path_pattern=self.plugin.strip_path_pattern,
            strip_path_regex=self.plugin.strip_path_regex,
            bucket_name=self.plugin.bucket_name,
            service_path=self.service.path,
        )


def match_route(
    config: GatewayConfig, path: str, method: str
) -> RouteMatch | None:
    """Find the route for a request.

    A route matches when one of its paths is a literal prefix of the
    request path and its method list (if any) contains the method.  The
    longest matching prefix wins; ties go to the route declared first.

    Raises:
        ConfigError: If the matched route's service or plugin settings
            cannot be found.
    """
    best: RouteConfig | None = None
    best_length = -1
    for route in config.routes:
        if route.methods and method.upper() not in route.methods:
            continue
        for prefix in route.paths:
            if path.startswith(prefix) and len(prefix) > best_length:
                best = route
                best_length = len(prefix)

    if best is None:
        return None
    return RouteMatch(
        route=best,
        service=config.service_for(best),
        plugin=config.plugin_for(best),
    )


def _raw_path(request: Request) -> str:
    """Request path as sent by the client, still percent-encoded."""
    raw_uri = request.environ.get("RAW_URI") or request.environ.get(
        "REQUEST_URI"
    )
    if raw_uri:
        # WSGI carries the request line as latin-1 decoded bytes.
        try:
            raw_uri = raw_uri.encode("latin-1").decode("utf-8")
        except UnicodeError:
            raw_uri = ""
    if raw_uri:
        path = raw_uri.split("?", 1)[0]
        if "://" in path:
            path = urlsplit(path).path
        if path:
            return path
    return uri_encode(request.path, encode_slash=False)


def _json_error(status: int, message: str) -> Response:
    return Response(
        json.dumps({"message": message}),
        status=status,
        content_type="application/json",
    )


class _RelayedResponse(Response):
    # Upstream decides the content type; none is added when it sends none.
    default_mimetype = None


def _relay(upstream: UpstreamResponse) -> Response:
    """Turn a buffered upstream response into a WSGI response."""
    response = _RelayedResponse(upstream.body, status=upstream.status_code)
    for name, value in upstream.headers:
        if name.lower() != "content-length":
            response.headers.add(name, value)
    # HEAD responses have no body but must keep the declared length.
    declared_length = upstream.header("Content-Length")
    if declared_length is not None:
        response.headers["Content-Length"] = declared_length
    return response


class GatewayServer:
    """Signing reverse proxy for MinIO/S3.

    Runs in a background thread (``start``/``stop``) or can be mounted as
    a WSGI application via ``wsgi_app``.
    """

    def __init__(
        self,
        config: GatewayConfig,
        host: str | None = None,
        port: int | None = None,
        dispatcher: Dispatcher | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize gateway server.

        Args:
            config: Gateway configuration.
            host: Host to bind to; defaults to ``config.server.host``.
            port: Port to bind to; defaults to ``config.server.port``.
            dispatcher: Upstream dispatcher; a default one is created
                when None.
            clock: Time source for request signing.
        """
        self.config = config
        self.host = host or config.server.host
        self.port = port or config.server.port
        self.dispatcher = dispatcher or Dispatcher()
        self._clock = clock
        self._server: Any = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start serving in a background thread."""
        self._server = make_server(
            self.host,
            self.port,
            self.wsgi_app,
            threaded=True,
        )
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name="GatewayServer",
        )
        self._thread.start()
        logger.info(
            "Gateway listening on http://%s:%d/ (%d routes)",
            self.host,
            self.port,
            len(self.config.routes),
        )

    def stop(self) -> None:
        """Stop serving and release the upstream client."""
        if self._server:
            self._server.shutdown()
            self._server = None
            logger.info("Gateway stopped")
        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None
        self.dispatcher.close()

    def wsgi_app(
        self,
        environ: dict[str, Any],
        start_response: "StartResponse",
    ) -> Iterable[bytes]:
        """WSGI application entry point."""
        request = Request(environ)
        response = self._handle(request)
        return response(environ, start_response)

    def _handle(self, request: Request) -> Response:
        """Proxy a request, mapping failures to error responses."""
        try:
            return self._proxy(request)
        except ConfigError as e:
            logger.error("Configuration error for %s: %s", request.path, e)
            return _json_error(500, "Gateway configuration error")
        except UpstreamTimeoutError as e:
            logger.warning("Storage backend timed out: %s", e)
            return _json_error(504, "Storage backend timed out")
        except UpstreamUnavailableError as e:
            logger.warning("Storage backend unavailable: %s", e)
            return _json_error(502, "Failed to connect to storage backend")
        except Exception:
            logger.exception("Error handling request %s", request.path)
            return _json_error(500, "Internal Server Error")

    def _proxy(self, request: Request) -> Response:
        method = request.method
        path = _raw_path(request)
        try:
            query = request.query_string.decode("utf-8")
        except UnicodeDecodeError:
            logger.info("Rejecting %s %s: query is not UTF-8", method, path)
            return _json_error(400, INVALID_QUERY_MESSAGE)

        match = match_route(self.config, path, method)
        if match is None:
            logger.info("No route for %s %s", method, path)
            return _json_error(404, NO_ROUTE_MESSAGE)

        service = match.service
        resolved = resolve(path, query, match.path_context())
        body = request.get_data(cache=False)

        signed = sign_request(
            SigningRequest(
                method=method,
                path=resolved.path,
                query=query,
                headers=dict(strip_hop_by_hop(request.headers.items())),
                body=body,
            ),
            match.plugin.credentials,
            format_host(service.host, service.port, service.protocol),
            clock=self._clock,
        )
        logger.debug(
            "Signed %s %s: signed_headers=%s canonical_request=%r",
            method,
            resolved.path,
            signed.signed_headers,
            signed.canonical_request,
        )

        url = build_upstream_url(
            service.protocol, service.host, service.port, resolved.uri
        )
        upstream = self.dispatcher.send(
            method,
            url,
            signed.headers,
            body,
            timeout_ms=match.plugin.timeout,
        )
        logger.info(
            "%s %s -> [%s] %s -> %d",
            method,
            path,
            match.route.name,
            resolved.path,
            upstream.status_code,
        )
        return _relay(upstream)


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0=success, 1=config error, 2=startup error).
    """
    parser = argparse.ArgumentParser(
        description="MinIO/S3 signing gateway",
        epilog="Signs requests with SigV4 and proxies them to storage.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to YAML config (default: config/minio-gateway.yaml)",
    )
    parser.add_argument("--host", help="Override the bind address")
    parser.add_argument("--port", type=int, help="Override the bind port")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args(argv)

    configure_logging(
        level=logging.DEBUG if args.debug else logging.INFO,
        add_secret_filter=True,
    )

    try:
        config = GatewayConfig.from_yaml(args.config)
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        return 1

    server = GatewayServer(config, host=args.host, port=args.port)
    try:
        server.start()
    except OSError as e:
        logger.critical("Failed to start gateway: %s", e)
        return 2

    stopping = threading.Event()

    def shutdown_handler(signum: int, frame: object) -> None:
        """Handle shutdown signals."""
        logger.info("Received signal %d, shutting down...", signum)
        stopping.set()

    signal.signal(signal.SIGINT, shutdown_handler)
    signal.signal(signal.SIGTERM, shutdown_handler)

    try:
        while not stopping.wait(1.0):
            pass
    finally:
        server.stop()
    return 0
