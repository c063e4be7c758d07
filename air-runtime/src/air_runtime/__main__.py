"""
Entry point for ``python -m air_runtime``.

Equivalent to the ``air`` console script: fixes the GitHub issue named on the
command line inside a fresh E2B sandbox.
"""
from __future__ import annotations

from .cli import main


if __name__ == "__main__":
    main()
