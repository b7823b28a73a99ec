"""Keyvault CLI entry point: python -m keyvault"""

from __future__ import annotations

import sys

from keyvault.cli import main

if __name__ == "__main__":
    sys.exit(main())
