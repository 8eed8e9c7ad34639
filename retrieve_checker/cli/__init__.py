"""Command line interface for the retrieval checker."""

from retrieve_checker.cli.main import cli, main

__all__ = [
    "cli",
    "main",
]
