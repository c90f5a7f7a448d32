"""Importance classification."""

from .classifier import (
    ClassificationContext,
    ClassificationResult,
    ImportanceClassifier,
    classify,
)

__all__ = [
    "ClassificationContext",
    "ClassificationResult",
    "ImportanceClassifier",
    "classify",
]
