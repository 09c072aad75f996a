# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for gateway configuration."""

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from minio_gateway.config import (
    DEFAULT_TIMEOUT_MS,
    ConfigError,
    GatewayConfig,
    MinioPluginConfig,
    _coerce_bool,
    _EnvVar,
    _make_loader,
    _raw_resolve,
    _resolve,
    _resolve_string_list,
)
from minio_gateway.logging import SecretFilter
from tests.vectors import (
    MINIO_ACCESS_KEY,
    MINIO_SECRET_KEY,
    gateway_config_dict,
    plugin_block,
)


EXAMPLE_YAML = """\
server:
  host: 0.0.0.0
  port: 8080
services:
  minio:
    protocol: HTTP
    host: minio.internal
    port: 9000
routes:
  - name: objects
    service: minio
    paths: [/minio]
    methods: [get, put]
    minio:
      minio_access_key: !env TEST_MINIO_ACCESS_KEY
      minio_secret_key: !env TEST_MINIO_SECRET_KEY
      bucket_name: test
      timeout: 5000
"""


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


class TestRawResolve:
    """Tests for _raw_resolve."""

    def test_literal(self) -> None:
        """Literals are stringified, None stays None."""
        assert _raw_resolve("x") == "x"
        assert _raw_resolve(9000) == "9000"
        assert _raw_resolve(None) is None

    def test_envvar_set(self) -> None:
        """EnvVar resolves to the environment value."""
        with patch.dict("os.environ", {"MY_VAR": "val"}):
            assert _raw_resolve(_EnvVar("MY_VAR")) == "val"

    def test_envvar_empty_is_unset(self) -> None:
        """An empty environment value counts as unset."""
        with patch.dict("os.environ", {"MY_VAR": ""}):
            assert _raw_resolve(_EnvVar("MY_VAR")) is None


class TestResolve:
    """Tests for _resolve."""

    def test_default_used_when_absent(self) -> None:
        """Absent values take the default."""
        assert _resolve(None, int, default=7) == 7

    def test_required_missing(self) -> None:
        """Missing required values raise ConfigError."""
        with pytest.raises(ConfigError, match="'a.b' is missing"):
            _resolve(None, str, required="a.b")

    def test_required_env_missing_names_variable(self) -> None:
        """Error for an unset env var names the variable."""
        with (
            patch.dict("os.environ", {}, clear=True),
            pytest.raises(ConfigError, match="NOT_SET_VAR"),
        ):
            _resolve(_EnvVar("NOT_SET_VAR"), str, required="x")

    def test_coerces_env_to_int(self) -> None:
        """String env values are coerced to the target type."""
        with patch.dict("os.environ", {"PORT": "9000"}):
            assert _resolve(_EnvVar("PORT"), int) == 9000

    def test_bad_int(self) -> None:
        """Unconvertible values raise ConfigError."""
        with pytest.raises(ConfigError, match="Cannot convert"):
            _resolve("nine", int)

    def test_bool_strings(self) -> None:
        """Common boolean spellings are accepted."""
        assert _coerce_bool("yes") is True
        assert _coerce_bool("Off") is False
        with pytest.raises(ConfigError):
            _coerce_bool("maybe")

    def test_string_list(self) -> None:
        """Lists resolve per element and reject scalars."""
        with patch.dict("os.environ", {"P": "/env"}):
            assert _resolve_string_list(["/a", _EnvVar("P")], name="n") == [
                "/a",
                "/env",
            ]
        with pytest.raises(ConfigError, match="must be a list"):
            _resolve_string_list("/a", name="n")


class TestEnvTag:
    """Tests for the !env YAML tag."""

    def test_env_tag_produces_placeholder(self) -> None:
        """!env values are left unresolved by the loader."""
        result = yaml.load("key: !env MY_VAR", Loader=_make_loader())
        assert isinstance(result["key"], _EnvVar)
        assert result["key"].var_name == "MY_VAR"


# ---------------------------------------------------------------------------
# Plugin config
# ---------------------------------------------------------------------------


class TestMinioPluginConfig:
    """Tests for MinioPluginConfig."""

    def test_defaults(self) -> None:
        """Optional settings take their defaults."""
        plugin = MinioPluginConfig.from_raw(plugin_block(), "p")
        assert plugin.minio_region == "us-east-1"
        assert plugin.bucket_name is None
        assert plugin.strip_path_pattern is None
        assert plugin.strip_path_regex is False
        assert plugin.timeout == DEFAULT_TIMEOUT_MS

    def test_empty_optional_strings_disable(self) -> None:
        """Empty bucket and pattern are treated as unset."""
        plugin = MinioPluginConfig.from_raw(
            plugin_block(bucket_name="", strip_path_pattern=""), "p"
        )
        assert plugin.bucket_name is None
        assert plugin.strip_path_pattern is None

    def test_missing_secret_key(self) -> None:
        """Secret key is required."""
        with pytest.raises(ConfigError, match="p.minio_secret_key"):
            MinioPluginConfig.from_raw(
                {"minio_access_key": MINIO_ACCESS_KEY}, "p"
            )

    def test_credentials(self) -> None:
        """Credentials carry the configured region and s3 service."""
        plugin = MinioPluginConfig.from_raw(
            plugin_block(minio_region="eu-north-1"), "p"
        )
        creds = plugin.credentials
        assert creds.access_key == MINIO_ACCESS_KEY
        assert creds.secret_key == MINIO_SECRET_KEY
        assert creds.region == "eu-north-1"
        assert creds.service == "s3"

    def test_registers_secrets(self) -> None:
        """Both keys are registered for log redaction."""
        MinioPluginConfig.from_raw(plugin_block(), "p")
        assert MINIO_SECRET_KEY in SecretFilter._secrets
        assert MINIO_ACCESS_KEY in SecretFilter._secrets

    def test_secret_not_in_repr(self) -> None:
        """repr never shows the secret key."""
        plugin = MinioPluginConfig.from_raw(plugin_block(), "p")
        assert MINIO_SECRET_KEY not in repr(plugin)

    def test_invalid_regex(self) -> None:
        """A broken regex is rejected only in regex mode."""
        with pytest.raises(ValueError, match="Invalid strip_path_pattern"):
            MinioPluginConfig(
                minio_access_key="a",
                minio_secret_key="s",
                strip_path_pattern="(",
                strip_path_regex=True,
            )
        literal = MinioPluginConfig(
            minio_access_key="a", minio_secret_key="s", strip_path_pattern="("
        )
        assert literal.strip_path_pattern == "("

    def test_non_positive_timeout(self) -> None:
        """Timeout must be positive."""
        with pytest.raises(ValueError, match="Timeout"):
            MinioPluginConfig(
                minio_access_key="a", minio_secret_key="s", timeout=0
            )


# ---------------------------------------------------------------------------
# GatewayConfig
# ---------------------------------------------------------------------------


class TestGatewayConfigFromDict:
    """Tests for GatewayConfig.from_dict."""

    def test_basic(self) -> None:
        """Services, routes and server settings are parsed."""
        config = GatewayConfig.from_dict(gateway_config_dict())
        assert config.server.port == 8000
        service = config.services["minio"]
        assert service.host == "minio.internal"
        assert service.port == 9000
        route = config.routes[0]
        assert route.name == "objects"
        assert route.paths == ("/minio",)
        assert route.strip_path is True
        assert route.methods == ()
        assert config.plugin_for(route).minio_access_key == MINIO_ACCESS_KEY

    def test_route_plugin_wins(self) -> None:
        """Route-level plugin settings override the service's."""
        raw = gateway_config_dict(
            plugin=plugin_block(bucket_name="route-bucket"),
            service={"minio": plugin_block(bucket_name="service-bucket")},
        )
        config = GatewayConfig.from_dict(raw)
        plugin = config.plugin_for(config.routes[0])
        assert plugin.bucket_name == "route-bucket"

    def test_service_plugin_fallback(self) -> None:
        """Routes without plugin settings use the service's."""
        raw = gateway_config_dict(
            service={"minio": plugin_block(bucket_name="service-bucket")},
        )
        del raw["routes"][0]["minio"]
        config = GatewayConfig.from_dict(raw)
        plugin = config.plugin_for(config.routes[0])
        assert plugin.bucket_name == "service-bucket"

    def test_no_plugin_anywhere(self) -> None:
        """A route with no plugin settings at all is rejected."""
        raw = gateway_config_dict()
        del raw["routes"][0]["minio"]
        with pytest.raises(ConfigError, match="no minio plugin config"):
            GatewayConfig.from_dict(raw)

    def test_unknown_service(self) -> None:
        """Routes must reference a configured service."""
        raw = gateway_config_dict(route={"service": "nope"})
        with pytest.raises(ConfigError, match="unknown service 'nope'"):
            GatewayConfig.from_dict(raw)

    def test_no_routes(self) -> None:
        """At least one route is required."""
        raw = gateway_config_dict()
        raw["routes"] = []
        with pytest.raises(ConfigError, match="At least one route"):
            GatewayConfig.from_dict(raw)

    def test_duplicate_route_names(self) -> None:
        """Route names must be unique."""
        raw = gateway_config_dict()
        raw["routes"].append(dict(raw["routes"][0]))
        with pytest.raises(ConfigError, match="Duplicate route name"):
            GatewayConfig.from_dict(raw)

    def test_route_path_must_be_absolute(self) -> None:
        """Route paths start with '/'."""
        raw = gateway_config_dict(route={"paths": ["minio"]})
        with pytest.raises(ConfigError, match="must start with '/'"):
            GatewayConfig.from_dict(raw)

    def test_unsupported_protocol(self) -> None:
        """Only http and https are accepted."""
        raw = gateway_config_dict(service={"protocol": "ftp"})
        with pytest.raises(ConfigError, match="unsupported protocol"):
            GatewayConfig.from_dict(raw)

    def test_invalid_port(self) -> None:
        """Ports outside 1-65535 are rejected."""
        raw = gateway_config_dict(service={"port": 70000})
        with pytest.raises(ConfigError, match="invalid port"):
            GatewayConfig.from_dict(raw)

    def test_unnamed_route_gets_index_name(self) -> None:
        """Routes without a name are named by position."""
        raw = gateway_config_dict()
        del raw["routes"][0]["name"]
        config = GatewayConfig.from_dict(raw)
        assert config.routes[0].name == "route-0"


class TestGatewayConfigFromYaml:
    """Tests for GatewayConfig.from_yaml."""

    @pytest.fixture(autouse=True)
    def _no_dotenv(self) -> Iterator[None]:
        """Keep a stray .env file from leaking into the environment."""
        with patch("minio_gateway.config.load_dotenv_once"):
            yield

    def test_loads_file_with_env(self, tmp_path: Path) -> None:
        """!env credentials are resolved from the environment."""
        path = tmp_path / "gateway.yaml"
        path.write_text(EXAMPLE_YAML)
        env = {
            "TEST_MINIO_ACCESS_KEY": MINIO_ACCESS_KEY,
            "TEST_MINIO_SECRET_KEY": MINIO_SECRET_KEY,
        }
        with patch.dict("os.environ", env):
            config = GatewayConfig.from_yaml(path)

        assert config.server.host == "0.0.0.0"
        assert config.server.port == 8080
        assert config.services["minio"].protocol == "http"
        route = config.routes[0]
        assert route.methods == ("GET", "PUT")
        plugin = config.plugin_for(route)
        assert plugin.minio_secret_key == MINIO_SECRET_KEY
        assert plugin.bucket_name == "test"
        assert plugin.timeout == 5000

    def test_missing_env_credentials(self, tmp_path: Path) -> None:
        """Unset credential variables are a configuration error."""
        path = tmp_path / "gateway.yaml"
        path.write_text(EXAMPLE_YAML)
        with (
            patch.dict("os.environ", {}, clear=True),
            pytest.raises(ConfigError, match="TEST_MINIO_ACCESS_KEY"),
        ):
            GatewayConfig.from_yaml(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file raises ConfigError."""
        with pytest.raises(ConfigError, match="not found"):
            GatewayConfig.from_yaml(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Syntax errors raise ConfigError."""
        path = tmp_path / "gateway.yaml"
        path.write_text("routes: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            GatewayConfig.from_yaml(path)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        """Top level must be a mapping."""
        path = tmp_path / "gateway.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="YAML mapping"):
            GatewayConfig.from_yaml(path)

    def test_example_config_parses(self) -> None:
        """The shipped example config is valid."""
        example = (
            Path(__file__).parent.parent
            / "config"
            / "minio-gateway.example.yaml"
        )
        text = example.read_text()
        env_names = [
            line.split("!env", 1)[1].strip()
            for line in text.splitlines()
            if "!env" in line
        ]
        with patch.dict("os.environ", {name: "x" for name in env_names}):
            config = GatewayConfig.from_yaml(example)
        assert config.routes
