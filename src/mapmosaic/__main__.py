"""Module entrypoint for `python -m mapmosaic`."""

from __future__ import annotations

from mapmosaic.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
