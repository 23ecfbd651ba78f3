"""Module entrypoint for ``python -m specsheet``."""

from __future__ import annotations

from specsheet.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
