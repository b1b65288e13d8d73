"""joku entry point.

Usage::

    python -m joku [--config PATH] [--debug] COMMAND ...
"""

from __future__ import annotations

import sys

from joku.cli import main

if __name__ == "__main__":
    sys.exit(main())
