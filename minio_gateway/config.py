# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for the MinIO signing gateway.

Configuration is loaded from a YAML file (``config/minio-gateway.yaml`` by
default) with support for ``!env`` tags that resolve values from
environment variables, so credentials can stay out of the file::

    server:
      host: 0.0.0.0
      port: 8000
    services:
      minio:
        protocol: http
        host: minio.internal
        port: 9000
    routes:
      - name: objects
        service: minio
        paths: [/minio]
        minio:
          minio_access_key: !env MINIO_ACCESS_KEY
          minio_secret_key: !env MINIO_SECRET_KEY
          bucket_name: test

Plugin settings (the ``minio`` block) may sit on a route or on its
service; the route's block wins.  Storage credentials are registered with
``SecretFilter`` as soon as they are parsed.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar, overload

import yaml

from minio_gateway.aws_signing import DEFAULT_REGION, SigningCredentials
from minio_gateway.dotenv_loader import load_dotenv_once
from minio_gateway.logging import SecretFilter
from minio_gateway.path_resolver import DEFAULT_PORTS


logger = logging.getLogger(__name__)

_DEFAULT_CONFIG_PATH = Path("config/minio-gateway.yaml")

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})

DEFAULT_TIMEOUT_MS = 100_000


class ConfigError(Exception):
    """Configuration is missing, malformed, or inconsistent."""


# ---------------------------------------------------------------------------
# YAML ``!env`` tag
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a safe YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, accepting common string spellings."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


def _raw_resolve(value: object) -> str | None:
    """Resolve ``_EnvVar`` to its value (None if unset/empty) or stringify."""
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name) or None
    if value is None:
        return None
    return str(value)


_MISSING = object()

_T = TypeVar("_T")


@overload
def _resolve(value: object, coerce: type[_T], *, default: _T) -> _T: ...


@overload
def _resolve(value: object, coerce: type[_T], *, required: str) -> _T: ...


@overload
def _resolve(value: object, coerce: type[_T]) -> _T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
    required: str = "",
) -> Any:
    """Resolve one config value: ``!env`` lookup, default, type coercion.

    Args:
        value: Raw YAML value (``_EnvVar``, None, or a parsed literal).
        coerce: Target type (``str``, ``int``, ``bool``).
        default: Value used when absent.
        required: Field name; when set, absence raises ``ConfigError``.

    Returns:
        The coerced value, or None when optional and absent.
    """
    if not isinstance(value, _EnvVar) and value is not None:
        if coerce is bool:
            return _coerce_bool(value)
        if isinstance(value, coerce) and not isinstance(value, bool):
            return value

    resolved = _raw_resolve(value)
    if resolved is None:
        if required:
            if isinstance(value, _EnvVar):
                raise ConfigError(
                    f"Required config '{required}': environment variable "
                    f"'{value.var_name}' is not set"
                )
            raise ConfigError(f"Required config '{required}' is missing")
        if default is not _MISSING:
            return default
        return None

    if coerce is bool:
        return _coerce_bool(resolved)
    try:
        return coerce(resolved)
    except ValueError as e:
        raise ConfigError(
            f"Cannot convert {resolved!r} to {coerce.__name__}"
        ) from e


def _resolve_string_list(value: object, *, name: str) -> list[str]:
    """Resolve a list of strings, resolving ``!env`` per element.

    Raises:
        ConfigError: If the value is present but not a list.
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(
            f"Config '{name}' must be a list, got {type(value).__name__}"
        )
    result: list[str] = []
    for item in value:
        resolved = _raw_resolve(item)
        if resolved:
            result.append(resolved)
    return result


def _mapping(value: object, name: str) -> dict:
    """Return a YAML mapping, treating absence as empty."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a YAML mapping")
    return value


# ---------------------------------------------------------------------------
# Config model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MinioPluginConfig:
    """Signing and path settings for requests sent to MinIO/S3.

    Attributes:
        minio_access_key: Storage access key (required).
        minio_secret_key: Storage secret key (required, never logged).
        minio_region: Region used in the credential scope.
        bucket_name: Bucket injected into paths that lack it.
        strip_path_pattern: Extra prefix removed from request paths.
        strip_path_regex: Interpret ``strip_path_pattern`` as a regular
            expression anchored at the start of the path.
        timeout: Upstream request timeout in milliseconds.
    """

    minio_access_key: str
    minio_secret_key: str = field(repr=False)
    minio_region: str = DEFAULT_REGION
    bucket_name: str | None = None
    strip_path_pattern: str | None = None
    strip_path_regex: bool = False
    timeout: float = DEFAULT_TIMEOUT_MS

    def __post_init__(self) -> None:
        """Validate configuration and register credentials for redaction.

        Raises:
            ValueError: If configuration is invalid.
        """
        SecretFilter.register_secret(self.minio_secret_key)
        SecretFilter.register_secret(self.minio_access_key)

        if not self.minio_access_key:
            raise ValueError("minio_access_key cannot be empty")
        if not self.minio_secret_key:
            raise ValueError("minio_secret_key cannot be empty")
        if not self.minio_region:
            raise ValueError("minio_region cannot be empty")
        if self.timeout <= 0:
            raise ValueError(f"Timeout must be > 0 ms: {self.timeout}")
        if self.strip_path_regex and self.strip_path_pattern:
            try:
                re.compile(self.strip_path_pattern)
            except re.error as e:
                raise ValueError(
                    f"Invalid strip_path_pattern regex "
                    f"{self.strip_path_pattern!r}: {e}"
                ) from e

    @property
    def credentials(self) -> SigningCredentials:
        """Signing credentials for this plugin instance."""
        return SigningCredentials(
            access_key=self.minio_access_key,
            secret_key=self.minio_secret_key,
            region=self.minio_region,
        )

    @classmethod
    def from_raw(cls, raw: dict, where: str) -> "MinioPluginConfig":
        """Build plugin config from a parsed ``minio`` YAML block."""
        return cls(
            minio_access_key=_resolve(
                raw.get("minio_access_key"),
                str,
                required=f"{where}.minio_access_key",
            ),
            minio_secret_key=_resolve(
                raw.get("minio_secret_key"),
                str,
                required=f"{where}.minio_secret_key",
            ),
            minio_region=_resolve(
                raw.get("minio_region"), str, default=DEFAULT_REGION
            ),
            bucket_name=_resolve(raw.get("bucket_name"), str) or None,
            strip_path_pattern=(
                _resolve(raw.get("strip_path_pattern"), str) or None
            ),
            strip_path_regex=_resolve(
                raw.get("strip_path_regex"), bool, default=False
            ),
            timeout=_resolve(
                raw.get("timeout"), float, default=DEFAULT_TIMEOUT_MS
            ),
        )


@dataclass(frozen=True)
class ServiceConfig:
    """Upstream storage service.

    Attributes:
        name: Service name (key under ``services``).
        host: Upstream hostname.
        protocol: ``http`` or ``https``.
        port: Upstream port; defaults to the protocol's default port.
        path: Path prefix prepended to every upstream path.
        plugin: Service-level plugin settings.
    """

    name: str
    host: str
    protocol: str = "http"
    port: int | None = None
    path: str = ""
    plugin: MinioPluginConfig | None = None

    def __post_init__(self) -> None:
        """Validate configuration.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.host:
            raise ValueError(f"Service '{self.name}': host cannot be empty")
        if self.protocol not in DEFAULT_PORTS:
            raise ValueError(
                f"Service '{self.name}': unsupported protocol "
                f"{self.protocol!r} (expected http or https)"
            )
        if self.port is not None and not (1 <= self.port <= 65535):
            raise ValueError(
                f"Service '{self.name}': invalid port: {self.port}"
            )


@dataclass(frozen=True)
class RouteConfig:
    """Inbound route bound to a service.

    Attributes:
        name: Route name, used in logs.
        service: Name of the service requests are proxied to.
        paths: Path prefixes that select this route, in declared order.
        strip_path: Remove the first declared prefix before proxying.
        methods: Allowed methods (upper case); empty allows all.
        plugin: Route-level plugin settings; override the service's.
    """

    name: str
    service: str
    paths: tuple[str, ...]
    strip_path: bool = True
    methods: tuple[str, ...] = ()
    plugin: MinioPluginConfig | None = None

    def __post_init__(self) -> None:
        """Validate configuration.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.paths:
            raise ValueError(f"Route '{self.name}': paths cannot be empty")
        for path in self.paths:
            if not path.startswith("/"):
                raise ValueError(
                    f"Route '{self.name}': path must start with '/': {path}"
                )


@dataclass(frozen=True)
class ServerSettings:
    """Listener settings for the gateway process."""

    host: str = "127.0.0.1"
    port: int = 8000

    def __post_init__(self) -> None:
        """Validate configuration.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not (1 <= self.port <= 65535):
            raise ValueError(f"Invalid server port: {self.port}")


@dataclass(frozen=True)
class GatewayConfig:
    """Complete gateway configuration.

    Attributes:
        services: Upstream services keyed by name.
        routes: Routes in declaration order.
        server: Listener settings.
    """

    services: dict[str, ServiceConfig]
    routes: tuple[RouteConfig, ...]
    server: ServerSettings = field(default_factory=ServerSettings)

    def __post_init__(self) -> None:
        """Validate cross-references between routes and services.

        Raises:
            ConfigError: If validation fails.
        """
        if not self.routes:
            raise ConfigError("At least one route must be configured")

        seen: set[str] = set()
        for route in self.routes:
            if route.name in seen:
                raise ConfigError(f"Duplicate route name: '{route.name}'")
            seen.add(route.name)
            # Both raise ConfigError when unresolvable
            self.service_for(route)
            self.plugin_for(route)

        logger.info(
            "Gateway config loaded: %d services, %d routes",
            len(self.services),
            len(self.routes),
        )

    def service_for(self, route: RouteConfig) -> ServiceConfig:
        """Service a route proxies to.

        Raises:
            ConfigError: If the service is not configured.
        """
        service = self.services.get(route.service)
        if service is None:
            raise ConfigError(
                f"Route '{route.name}' references unknown service "
                f"'{route.service}'"
            )
        return service

    def plugin_for(self, route: RouteConfig) -> MinioPluginConfig:
        """Effective plugin settings for a route.

        Raises:
            ConfigError: If neither the route nor its service has any.
        """
        if route.plugin is not None:
            return route.plugin
        plugin = self.service_for(route).plugin
        if plugin is None:
            raise ConfigError(
                f"Route '{route.name}' has no minio plugin config "
                f"(set it on the route or on service '{route.service}')"
            )
        return plugin

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "GatewayConfig":
        """Load configuration from a YAML file.

        Values tagged with ``!env VAR_NAME`` are resolved from the
        environment at load time.  A ``.env`` file is loaded first if
        present.

        Args:
            config_path: Path to the YAML file.  Defaults to
                ``config/minio-gateway.yaml`` in the working directory.

        Returns:
            GatewayConfig instance.

        Raises:
            ConfigError: If the file is missing or invalid.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = _DEFAULT_CONFIG_PATH

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            try:
                raw = yaml.load(f, Loader=_make_loader())
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: dict) -> "GatewayConfig":
        """Build config from a parsed (but unresolved) YAML mapping.

        Raises:
            ConfigError: If any section is invalid.
        """
        try:
            server_raw = _mapping(raw.get("server"), "server")
            server = ServerSettings(
                host=_resolve(
                    server_raw.get("host"), str, default="127.0.0.1"
                ),
                port=_resolve(server_raw.get("port"), int, default=8000),
            )

            services: dict[str, ServiceConfig] = {}
            services_raw = _mapping(raw.get("services"), "services")
            for name, service_raw in services_raw.items():
                name = str(name)
                services[name] = _parse_service(
                    name, _mapping(service_raw, f"services.{name}")
                )

            routes_raw = raw.get("routes") or []
            if not isinstance(routes_raw, list):
                raise ConfigError("'routes' must be a YAML list")
            routes = tuple(
                _parse_route(index, _mapping(route_raw, f"routes[{index}]"))
                for index, route_raw in enumerate(routes_raw)
            )
        except ValueError as e:
            raise ConfigError(str(e)) from e

        return cls(services=services, routes=routes, server=server)


def _parse_plugin(raw: object, where: str) -> MinioPluginConfig | None:
    if raw is None:
        return None
    return MinioPluginConfig.from_raw(_mapping(raw, where), where)


def _parse_service(name: str, raw: dict) -> ServiceConfig:
    """Parse one entry under ``services``."""
    where = f"services.{name}"
    protocol = _resolve(raw.get("protocol"), str, default="http").lower()
    return ServiceConfig(
        name=name,
        host=_resolve(raw.get("host"), str, required=f"{where}.host"),
        protocol=protocol,
        port=_resolve(raw.get("port"), int),
        path=_resolve(raw.get("path"), str, default=""),
        plugin=_parse_plugin(raw.get("minio"), f"{where}.minio"),
    )


def _parse_route(index: int, raw: dict) -> RouteConfig:
    """Parse one entry under ``routes``."""
    name = _resolve(raw.get("name"), str, default=f"route-{index}")
    where = f"routes.{name}"
    return RouteConfig(
        name=name,
        service=_resolve(
            raw.get("service"), str, required=f"{where}.service"
        ),
        paths=tuple(
            _resolve_string_list(raw.get("paths"), name=f"{where}.paths")
        ),
        strip_path=_resolve(raw.get("strip_path"), bool, default=True),
        methods=tuple(
            m.upper()
            for m in _resolve_string_list(
                raw.get("methods"), name=f"{where}.methods"
            )
        ),
        plugin=_parse_plugin(raw.get("minio"), f"{where}.minio"),
    )
