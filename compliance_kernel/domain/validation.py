"""
ValidationResult -- outcome of a hierarchy or advisory check.

Errors block persistence; warnings are advisory and travel to the caller
on an otherwise successful result.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class ValidationResult:
    """
    Immutable outcome of a validation pass.

    Guarantees:
        - ``is_valid`` is True iff ``errors`` is empty.
        - Messages keep the order in which checks produced them.
    """

    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @classmethod
    def ok(cls, warnings: Iterable[str] = ()) -> ValidationResult:
        return cls(errors=(), warnings=tuple(warnings))

    @classmethod
    def of(cls, errors: Iterable[str], warnings: Iterable[str] = ()) -> ValidationResult:
        return cls(errors=tuple(errors), warnings=tuple(warnings))

    def merge(self, other: ValidationResult) -> ValidationResult:
        """Concatenate two results, self first."""
        return ValidationResult(
            errors=self.errors + other.errors,
            warnings=self.warnings + other.warnings,
        )


def as_uuid(value: UUID | str | None) -> UUID | None:
    """
    Normalize an id from a caller payload to a UUID.

    Raises:
        ValueError: ``value`` is not UUID-shaped.
    """
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))
