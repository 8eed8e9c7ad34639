"""Dispute intake queue."""

from __future__ import annotations

from retrieve_checker.queue.dispute_queue import DisputeQueue

__all__ = ["DisputeQueue"]
