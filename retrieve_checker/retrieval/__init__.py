"""CAR retrieval, content verification and error classification."""

from __future__ import annotations

from retrieve_checker.retrieval.classifier import classify_error
from retrieve_checker.retrieval.verifier import (
    ContentVerifier,
    VerificationResult,
    get_retrieval_url,
    verify_content,
)

__all__ = [
    "ContentVerifier",
    "VerificationResult",
    "classify_error",
    "get_retrieval_url",
    "verify_content",
]
