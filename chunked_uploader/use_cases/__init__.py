"""Application use cases for upload workflows."""

from .deduplication import (
    DedupDecision,
    ResolveDedupActionUseCase,
    ResolveFileHashUseCase,
    parse_part_indices,
)

__all__ = [
    "DedupDecision",
    "ResolveDedupActionUseCase",
    "ResolveFileHashUseCase",
    "parse_part_indices",
]
