"""
Per-call extraction frame.
"""
from dataclasses import dataclass, replace
from typing import Any, Self

__all__ = ['ExtractionContext']


@dataclass(frozen=True, slots=True)
class ExtractionContext:
    """Immutable frame passed down the extractor call tree.

    `column` and `field_type` address the value a nested extractor should
    read. Nested calls receive a new frame from `with_reference`, so a
    callee never changes what its caller sees.
    """
    source: Any = None
    api: type | None = None
    column: str | None = None
    field_type: Any = None

    def with_reference(self, column: str | None, field_type: Any = None) -> Self:
        """Return a frame addressing `column` as `field_type`."""
        return replace(self, column=column, field_type=field_type)

    @property
    def has_reference(self) -> bool:
        return self.column is not None
