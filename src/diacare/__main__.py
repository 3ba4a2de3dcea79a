"""Punto de entrada: ``python -m diacare``."""

from __future__ import annotations

from diacare.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
