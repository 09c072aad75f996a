# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Logging setup for the gateway, with storage credential redaction.

Storage access and secret keys are registered with ``SecretFilter`` when
the gateway configuration is built, so they never reach log output even
if a message or exception happens to include them.

Usage:
    # In the entry point
    from minio_gateway.logging import configure_logging
    configure_logging(level=logging.INFO)

    # In library modules
    import logging
    logger = logging.getLogger(__name__)
"""

import logging
import re
from typing import ClassVar


REDACTED = "[REDACTED]"

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SecretFilter(logging.Filter):
    """Logging filter that replaces registered secrets with ``[REDACTED]``.

    The registry is process-wide: credentials registered by one config
    object are redacted from every handler carrying this filter.
    """

    _secrets: ClassVar[set[str]] = set()
    _pattern: ClassVar[re.Pattern[str] | None] = None

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact secrets from the record's message and string args.

        Args:
            record: The log record to filter.

        Returns:
            Always True; records are rewritten, never dropped.
        """
        pattern = self._pattern
        if pattern is None:
            return True

        record.msg = pattern.sub(REDACTED, str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(
                pattern.sub(REDACTED, arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        elif isinstance(record.args, dict):
            record.args = {
                key: pattern.sub(REDACTED, value)
                if isinstance(value, str)
                else value
                for key, value in record.args.items()
            }
        return True

    @classmethod
    def register_secret(cls, secret: str | None) -> None:
        """Register a value to redact. Empty values are ignored."""
        if secret:
            cls._secrets.add(secret)
            cls._rebuild_pattern()

    @classmethod
    def clear_secrets(cls) -> None:
        """Forget all registered secrets. Used by tests."""
        cls._secrets.clear()
        cls._pattern = None

    @classmethod
    def _rebuild_pattern(cls) -> None:
        # Longest first so a secret containing another is fully replaced.
        ordered = sorted(cls._secrets, key=len, reverse=True)
        cls._pattern = re.compile("|".join(re.escape(s) for s in ordered))


def configure_logging(
    level: int = logging.INFO,
    format_string: str | None = None,
    add_secret_filter: bool = True,
) -> None:
    """Configure the root logger for the gateway process.

    Replaces any existing root handlers with a single stream handler.

    Args:
        level: Root logging level.
        format_string: Custom format string; ``DEFAULT_FORMAT`` if None.
        add_secret_filter: Attach ``SecretFilter`` to the handler.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT))
    if add_secret_filter:
        handler.addFilter(SecretFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
