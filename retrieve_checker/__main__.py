"""Allow ``python -m retrieve_checker``."""

from __future__ import annotations

from retrieve_checker.cli.main import main

if __name__ == "__main__":
    main()
