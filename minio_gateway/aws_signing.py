# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""AWS Signature Version 4 signing for S3-compatible storage requests.

Signs a fully buffered request with header-based SigV4 (HMAC-SHA256) so the
gateway can talk to MinIO/S3 on behalf of clients that never see the
storage credentials.  The module is split the way the protocol is:

- Canonicalization: canonical query string, signed-header set, canonical
  headers, and the canonical request itself.
- Key chain: the four-step HMAC derivation of the scoped signing key.
- Signer: string-to-sign, signature, ``Authorization`` header, and the
  final merged header set.

Everything here is pure apart from reading the clock, which callers can
replace.  Streaming (``aws-chunked``) payloads and presigned URLs are not
handled.
"""

from __future__ import annotations

import hashlib
import hmac
import urllib.parse
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime


ALGORITHM = "AWS4-HMAC-SHA256"
SCOPE_TERMINATOR = "aws4_request"
DEFAULT_REGION = "us-east-1"
DEFAULT_SERVICE = "s3"

EMPTY_PAYLOAD_SHA256 = hashlib.sha256(b"").hexdigest()

# Headers that are always part of the signature
REQUIRED_SIGNED_HEADERS = ("host", "x-amz-content-sha256", "x-amz-date")

_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%SZ"
_DATE_FORMAT = "%Y%m%d"

_UNRESERVED = frozenset(
    b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~"
)

# Inbound headers the signer always replaces with its own values
_REPLACED_HEADERS = frozenset(
    {"authorization", "host", "x-amz-date", "x-amz-content-sha256"}
)


def utc_now() -> datetime:
    """Default clock for signing."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SigningCredentials:
    """Storage credentials and signing scope.

    Shared read-only across requests.  The secret key is excluded from
    ``repr`` so the object can appear in tracebacks and debug output.
    """

    access_key: str
    secret_key: str = field(repr=False)
    region: str = DEFAULT_REGION
    service: str = DEFAULT_SERVICE

    def __post_init__(self) -> None:
        """Reject credentials that could never produce a valid signature.

        Raises:
            ValueError: If any field is empty.
        """
        if not self.access_key:
            raise ValueError("Access key cannot be empty")
        if not self.secret_key:
            raise ValueError("Secret key cannot be empty")
        if not self.region:
            raise ValueError("Region cannot be empty")
        if not self.service:
            raise ValueError("Service cannot be empty")


@dataclass(frozen=True)
class SigningRequest:
    """The parts of a request that go into the signature.

    Attributes:
        method: HTTP method.
        path: Upstream path, already resolved (no query string).
        query: Raw query string without the leading ``?``.
        headers: Request headers (names are case-insensitive).
        body: Fully buffered request body.
    """

    method: str
    path: str
    query: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""


@dataclass(frozen=True)
class SigningContext:
    """Timestamp, date and credential scope for one signing operation."""

    timestamp: str
    date: str
    credential_scope: str

    @classmethod
    def at(
        cls,
        instant: datetime,
        region: str = DEFAULT_REGION,
        service: str = DEFAULT_SERVICE,
    ) -> SigningContext:
        """Build the context from a single instant.

        Naive datetimes are taken to be UTC.
        """
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=UTC)
        else:
            instant = instant.astimezone(UTC)
        date = instant.strftime(_DATE_FORMAT)
        return cls(
            timestamp=instant.strftime(_TIMESTAMP_FORMAT),
            date=date,
            credential_scope=f"{date}/{region}/{service}/{SCOPE_TERMINATOR}",
        )


@dataclass(frozen=True)
class CanonicalComponents:
    """Ingredients of the canonical request, recomputed per request."""

    canonical_uri: str
    canonical_query: str
    canonical_headers: str
    signed_header_names: tuple[str, ...]

    @property
    def signed_headers(self) -> str:
        """Signed header names joined with ``;``."""
        return signed_headers_string(self.signed_header_names)


@dataclass(frozen=True)
class SignedRequest:
    """Result of ``sign_request``.

    Attributes:
        headers: Final header set to send upstream.
        authorization: Value of the ``Authorization`` header.
        signature: Hex signature.
        signed_headers: ``;``-joined signed header names.
        canonical_request: The canonical request that was hashed.
        string_to_sign: The string the signing key was applied to.
        context: Timestamp and scope used.
    """

    headers: dict[str, str]
    authorization: str
    signature: str
    signed_headers: str
    canonical_request: str
    string_to_sign: str
    context: SigningContext


# ---------------------------------------------------------------------------
# URI encoding
# ---------------------------------------------------------------------------


def uri_encode(value: str, *, encode_slash: bool = True) -> str:
    """Percent-encode a value using the RFC 3986 unreserved set.

    Letters, digits, ``-``, ``.``, ``_`` and ``~`` pass through; every other
    UTF-8 byte becomes ``%XX`` with upper-case hex.

    Args:
        value: String to encode.
        encode_slash: If False, ``/`` is left as is.

    Returns:
        Encoded string.
    """
    result: list[str] = []
    for byte in value.encode("utf-8"):
        if byte in _UNRESERVED or (byte == 0x2F and not encode_slash):
            result.append(chr(byte))
        else:
            result.append(f"%{byte:02X}")
    return "".join(result)


# ---------------------------------------------------------------------------
# Canonicalization
# ---------------------------------------------------------------------------


def parse_query_pairs(query: str | None) -> list[tuple[str, str]]:
    """Split a raw query string into decoded ``(key, value)`` pairs.

    Parsing is lenient: empty segments and segments without a key are
    skipped, and a segment without ``=`` has an empty value.
    """
    if not query:
        return []
    return [
        (key, value)
        for key, value in urllib.parse.parse_qsl(query, keep_blank_values=True)
        if key
    ]


def canonical_query_string(query: str | None) -> str:
    """Build the canonical query string.

    Args:
        query: Raw query string (without leading ``?``), possibly empty.

    Returns:
        Encoded ``key=value`` pairs sorted by key, joined with ``&``.
    """
    encoded = sorted(
        (uri_encode(key), uri_encode(value))
        for key, value in parse_query_pairs(query)
    )
    return "&".join(f"{key}={value}" for key, value in encoded)


def _lookup(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def signed_header_names(headers: Mapping[str, str]) -> tuple[str, ...]:
    """Sorted names of the headers to sign.

    Always ``host``, ``x-amz-content-sha256`` and ``x-amz-date``, plus
    ``content-type`` when the request carries one.
    """
    names = set(REQUIRED_SIGNED_HEADERS)
    if _lookup(headers, "content-type") is not None:
        names.add("content-type")
    return tuple(sorted(names))


def signed_headers_string(names: tuple[str, ...] | list[str]) -> str:
    """Join lower-cased, sorted header names with ``;``."""
    return ";".join(sorted(name.lower() for name in names))


def canonical_headers_string(
    headers: Mapping[str, str], names: tuple[str, ...] | list[str]
) -> str:
    """Build the canonical headers block.

    Args:
        headers: Request headers (any case).
        names: Header names to include.

    Returns:
        ``name:value`` lines, sorted, each terminated by a newline.

    Raises:
        ValueError: If a named header is not present.
    """
    lower_headers = {key.lower(): value for key, value in headers.items()}
    lines: list[str] = []
    for name in names:
        name = name.lower()
        value = lower_headers.get(name)
        if value is None:
            raise ValueError(f"Signed header missing from request: {name}")
        lines.append(f"{name}:{str(value).strip()}")
    lines.sort()
    return "\n".join(lines) + "\n"


def build_canonical_components(
    path: str, query: str | None, headers: Mapping[str, str]
) -> CanonicalComponents:
    """Derive all canonical request ingredients from one header set.

    The path is used verbatim; it must already be the exact path that
    will be requested upstream.
    """
    names = signed_header_names(headers)
    return CanonicalComponents(
        canonical_uri=path or "/",
        canonical_query=canonical_query_string(query),
        canonical_headers=canonical_headers_string(headers, names),
        signed_header_names=names,
    )


def build_canonical_request(
    method: str, components: CanonicalComponents, payload_hash: str
) -> str:
    """Assemble the canonical request string.

    The canonical headers block already ends with a newline, so joining
    produces the blank line SigV4 requires before the signed headers.
    """
    return "\n".join(
        [
            method,
            components.canonical_uri,
            components.canonical_query,
            components.canonical_headers,
            components.signed_headers,
            payload_hash,
        ]
    )


def hash_payload(body: bytes | None) -> str:
    """Lower-case hex SHA-256 of the request body."""
    return hashlib.sha256(body or b"").hexdigest()


# ---------------------------------------------------------------------------
# Key chain
# ---------------------------------------------------------------------------


def _hmac_sha256(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def derive_signing_key(
    secret_key: str, date: str, region: str, service: str
) -> bytes:
    """Derive the scoped SigV4 signing key.

    Args:
        secret_key: Secret access key.
        date: Scope date (YYYYMMDD).
        region: Region name.
        service: Service name.

    Returns:
        Raw 32-byte signing key.
    """
    k_date = _hmac_sha256(("AWS4" + secret_key).encode("utf-8"), date)
    k_region = _hmac_sha256(k_date, region)
    k_service = _hmac_sha256(k_region, service)
    return _hmac_sha256(k_service, SCOPE_TERMINATOR)


# ---------------------------------------------------------------------------
# Signer
# ---------------------------------------------------------------------------


def build_string_to_sign(
    context: SigningContext, canonical_request: str
) -> str:
    """Build the SigV4 string to sign."""
    return "\n".join(
        [
            ALGORITHM,
            context.timestamp,
            context.credential_scope,
            hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
        ]
    )


def compute_signature(signing_key: bytes, string_to_sign: str) -> str:
    """Hex HMAC-SHA256 of the string to sign."""
    return hmac.new(
        signing_key, string_to_sign.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def build_authorization_header(
    access_key: str,
    context: SigningContext,
    signed_headers: str,
    signature: str,
) -> str:
    """Format the ``Authorization`` header value."""
    return (
        f"{ALGORITHM} "
        f"Credential={access_key}/{context.credential_scope}, "
        f"SignedHeaders={signed_headers}, "
        f"Signature={signature}"
    )


def sign_request(
    request: SigningRequest,
    credentials: SigningCredentials,
    host: str,
    *,
    clock: Callable[[], datetime] = utc_now,
) -> SignedRequest:
    """Sign a request for the storage backend.

    The request headers are not modified.  The returned header set is the
    inbound headers without any ``Authorization``, ``Host``, ``X-Amz-Date``
    or ``X-Amz-Content-Sha256``, plus freshly computed values for all four.

    Args:
        request: Request to sign; ``path`` must be the upstream path.
        credentials: Storage credentials and scope.
        host: Upstream ``Host`` value (``host`` or ``host:port``).
        clock: Time source, read once.

    Returns:
        SignedRequest with the final headers and signing intermediates.
    """
    context = SigningContext.at(
        clock(), credentials.region, credentials.service
    )
    payload_hash = hash_payload(request.body)

    headers = {
        name: value
        for name, value in request.headers.items()
        if name.lower() not in _REPLACED_HEADERS
    }
    headers["Host"] = host
    headers["X-Amz-Date"] = context.timestamp
    headers["X-Amz-Content-Sha256"] = payload_hash

    components = build_canonical_components(
        request.path, request.query, headers
    )
    canonical_request = build_canonical_request(
        request.method, components, payload_hash
    )
    string_to_sign = build_string_to_sign(context, canonical_request)

    signing_key = derive_signing_key(
        credentials.secret_key,
        context.date,
        credentials.region,
        credentials.service,
    )
    signature = compute_signature(signing_key, string_to_sign)
    authorization = build_authorization_header(
        credentials.access_key, context, components.signed_headers, signature
    )
    headers["Authorization"] = authorization

    return SignedRequest(
        headers=headers,
        authorization=authorization,
        signature=signature,
        signed_headers=components.signed_headers,
        canonical_request=canonical_request,
        string_to_sign=string_to_sign,
        context=context,
    )
