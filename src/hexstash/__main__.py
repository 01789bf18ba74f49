"""Entry point for `python -m hexstash` and the `hexstash` console script."""

from __future__ import annotations

from hexstash.cli import main

if __name__ == "__main__":
    main()
