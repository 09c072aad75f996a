# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Run the gateway with ``python -m minio_gateway``."""

import sys

from minio_gateway.server import main


if __name__ == "__main__":
    sys.exit(main())
