# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""SigV4 signing gateway for MinIO and other S3-compatible storage.

Modules:
- aws_signing: canonical request, signing key chain, and request signer
- path_resolver: upstream path and URL resolution
- config: YAML gateway configuration
- dispatcher: outbound HTTP calls to the storage backend
- server: WSGI gateway and command-line entry point
"""

from minio_gateway.aws_signing import (
    SignedRequest,
    SigningContext,
    SigningCredentials,
    SigningRequest,
    sign_request,
)
from minio_gateway.config import ConfigError, GatewayConfig
from minio_gateway.dispatcher import (
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from minio_gateway.path_resolver import PathContext, resolve
from minio_gateway.server import GatewayServer


__all__ = [
    # aws_signing
    "SignedRequest",
    "SigningContext",
    "SigningCredentials",
    "SigningRequest",
    "sign_request",
    # config
    "ConfigError",
    "GatewayConfig",
    # dispatcher
    "UpstreamTimeoutError",
    "UpstreamUnavailableError",
    # path_resolver
    "PathContext",
    "resolve",
    # server
    "GatewayServer",
]
