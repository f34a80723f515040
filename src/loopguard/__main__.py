"""Module entrypoint for ``python -m loopguard``."""

from __future__ import annotations

from loopguard.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
