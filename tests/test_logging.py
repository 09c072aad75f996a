# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for logging setup and secret redaction."""

import logging

from minio_gateway.config import GatewayConfig
from minio_gateway.logging import (
    REDACTED,
    SecretFilter,
    configure_logging,
)
from tests.vectors import (
    MINIO_ACCESS_KEY,
    MINIO_SECRET_KEY,
    gateway_config_dict,
)


def _record(msg: str, args: object = None) -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=args,  # type: ignore[arg-type]
        exc_info=None,
    )


class TestSecretFilter:
    """Tests for SecretFilter."""

    def test_no_secrets_passthrough(self) -> None:
        """Records are untouched when nothing is registered."""
        record = _record("hello %s", ("world",))
        assert SecretFilter().filter(record) is True
        assert record.getMessage() == "hello world"

    def test_redacts_message(self) -> None:
        """Secrets in the message are replaced."""
        SecretFilter.register_secret("hunter2")
        record = _record("password is hunter2")
        SecretFilter().filter(record)
        assert record.getMessage() == f"password is {REDACTED}"

    def test_redacts_tuple_args(self) -> None:
        """String args are redacted; other args are kept."""
        SecretFilter.register_secret("hunter2")
        record = _record("%s %d", ("key=hunter2", 5))
        SecretFilter().filter(record)
        assert record.getMessage() == f"key={REDACTED} 5"

    def test_redacts_dict_args(self) -> None:
        """Mapping args are redacted too."""
        SecretFilter.register_secret("hunter2")
        record = _record("%(k)s", ({"k": "hunter2"},))
        assert isinstance(record.args, dict)
        SecretFilter().filter(record)
        assert record.args == {"k": REDACTED}
        assert record.getMessage() == REDACTED

    def test_longest_secret_first(self) -> None:
        """A secret containing another is replaced whole."""
        SecretFilter.register_secret("abc")
        SecretFilter.register_secret("abcdef")
        record = _record("x abcdef y")
        SecretFilter().filter(record)
        assert record.getMessage() == f"x {REDACTED} y"

    def test_empty_secret_ignored(self) -> None:
        """Registering an empty value does nothing."""
        SecretFilter.register_secret("")
        SecretFilter.register_secret(None)
        assert SecretFilter._pattern is None

    def test_config_credentials_redacted(self) -> None:
        """Storage keys from a loaded config never reach log output."""
        GatewayConfig.from_dict(gateway_config_dict())
        record = _record(
            "signing with %s/%s", (MINIO_ACCESS_KEY, MINIO_SECRET_KEY)
        )
        SecretFilter().filter(record)
        message = record.getMessage()
        assert MINIO_ACCESS_KEY not in message
        assert MINIO_SECRET_KEY not in message


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_single_handler_with_filter(self) -> None:
        """Root gets exactly one handler carrying SecretFilter."""
        root = logging.getLogger()
        saved_handlers = root.handlers[:]
        saved_level = root.level
        try:
            configure_logging(level=logging.DEBUG)
            configure_logging(level=logging.DEBUG)
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert any(
                isinstance(f, SecretFilter) for f in root.handlers[0].filters
            )
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    def test_without_filter(self) -> None:
        """The filter can be left out."""
        root = logging.getLogger()
        saved_handlers = root.handlers[:]
        saved_level = root.level
        try:
            configure_logging(add_secret_filter=False)
            assert root.handlers[0].filters == []
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
