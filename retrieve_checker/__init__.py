"""retrieve_checker - verifies that storage providers serve the content they advertise."""

from __future__ import annotations

__version__ = "1.19.1"
