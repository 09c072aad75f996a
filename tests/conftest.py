# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across the gateway tests."""

from collections.abc import Callable, Iterator
from datetime import datetime

import pytest

from minio_gateway.aws_signing import SigningCredentials
from minio_gateway.dotenv_loader import reset_dotenv_state
from minio_gateway.logging import SecretFilter
from tests.vectors import (
    AWS_DOCS_ACCESS_KEY,
    AWS_DOCS_SECRET_KEY,
    FIXED_INSTANT,
    MINIO_ACCESS_KEY,
    MINIO_SECRET_KEY,
)


@pytest.fixture(autouse=True)
def _isolate_global_state() -> Iterator[None]:
    """Reset process-wide registries between tests."""
    SecretFilter.clear_secrets()
    reset_dotenv_state()
    yield
    SecretFilter.clear_secrets()
    reset_dotenv_state()


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    """Clock that always returns ``FIXED_INSTANT``."""
    return lambda: FIXED_INSTANT


@pytest.fixture
def credentials() -> SigningCredentials:
    """MinIO-style credentials in the default region."""
    return SigningCredentials(
        access_key=MINIO_ACCESS_KEY, secret_key=MINIO_SECRET_KEY
    )


@pytest.fixture
def aws_docs_credentials() -> SigningCredentials:
    """Credentials from the AWS S3 SigV4 documentation."""
    return SigningCredentials(
        access_key=AWS_DOCS_ACCESS_KEY, secret_key=AWS_DOCS_SECRET_KEY
    )
