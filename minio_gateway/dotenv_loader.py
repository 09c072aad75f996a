# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Load a ``.env`` file once per process before config ``!env`` lookups."""

import logging
from pathlib import Path

from dotenv import find_dotenv, load_dotenv


logger = logging.getLogger(__name__)

_dotenv_loaded = False


def load_dotenv_once(env_path: Path | None = None) -> None:
    """Load ``.env`` into ``os.environ`` on the first call only.

    Variables already present in the environment are not overridden.

    Args:
        env_path: Explicit ``.env`` path.  When None or missing, the file
            is searched for from the current directory upwards.
    """
    global _dotenv_loaded
    if _dotenv_loaded:
        return

    if env_path is not None and env_path.exists():
        load_dotenv(env_path)
        logger.debug("Loaded .env from %s", env_path)
    else:
        found = find_dotenv(usecwd=True)
        if found:
            load_dotenv(found)
            logger.debug("Loaded .env from %s", found)
    _dotenv_loaded = True


def reset_dotenv_state() -> None:
    """Allow the next ``load_dotenv_once`` call to load again. For tests."""
    global _dotenv_loaded
    _dotenv_loaded = False
