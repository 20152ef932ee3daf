"""
Review policy -- rejection reason rules shared by field, document and step review.

Pure.  Loaded from the workflow catalog (``review_policy`` section) or
constructed with defaults.
"""

from __future__ import annotations

from dataclasses import dataclass

from dossier_kernel.exceptions import RejectionReasonError

DEFAULT_REJECTION_REASON_MIN_LENGTH = 10


@dataclass(frozen=True)
class ReviewPolicy:
    rejection_reason_min_length: int = DEFAULT_REJECTION_REASON_MIN_LENGTH

    def __post_init__(self) -> None:
        if self.rejection_reason_min_length < 1:
            raise ValueError("rejection_reason_min_length must be >= 1")

    def validate_rejection_reason(self, reason: str | None) -> str:
        """
        Return the stripped reason, or raise RejectionReasonError.

        Length is measured after stripping surrounding whitespace.
        """
        cleaned = (reason or "").strip()
        if len(cleaned) < self.rejection_reason_min_length:
            raise RejectionReasonError(
                min_length=self.rejection_reason_min_length,
                actual_length=len(cleaned),
            )
        return cleaned
