"""Entry point for ``python -m minibt``."""

from __future__ import annotations

from minibt.cli.main import main

if __name__ == "__main__":
    main()
