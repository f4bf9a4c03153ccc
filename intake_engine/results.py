"""
Result types returned by engine entry points.

Mutations never raise for expected rejections. They return one of these
frozen dataclasses synchronously; the caller inspects the type.

Field Store:          MutationApplied | MutationDenied | CardinalityViolation
Sub-Entity Manager:   EditingOpened | EntrySaved | EditCancelled |
                      RemovalRequested | RemovalCancelled | EntryRemoved |
                      ValidationFailure | MutationDenied |
                      CardinalityViolation | IllegalTransition
Engine completion:    AssessmentCompleted | ValidationFailure | MutationDenied

Every result exposes `ok` so callers can branch without isinstance chains.
"""

from dataclasses import dataclass
from typing import Tuple

from intake_engine.contracts import Provider, ValidationError


@dataclass(frozen=True)
class MutationApplied:
    """
    Write committed to the Field Store.
    
    Attributes:
        section_key: Section written
        fields: Fields written by the caller, in write order
        cleared: Dependent fields cleared by the Conditional Resolver
    """
    section_key: str
    fields: Tuple[str, ...]
    cleared: Tuple[str, ...] = ()
    ok: bool = True


@dataclass(frozen=True)
class MutationDenied:
    """
    Mutation attempted while the Mode Gate disallows it.
    
    Nothing was written.
    """
    operation: str
    mode: str
    reason: str = "Assessment is read-only in this mode"
    ok: bool = False


@dataclass(frozen=True)
class CardinalityViolation:
    """
    A single-cardinality category would hold more than one entry.
    
    Nothing was written and no entry was created.
    """
    category: str
    existing_count: int
    reason: str = "This category only allows one entry. Edit or remove the existing entry first."
    ok: bool = False


@dataclass(frozen=True)
class ValidationFailure:
    """
    Local validation rejected a transition (sub-entity save, completion).
    
    The list of errors tells the caller which fields are missing.
    """
    errors: Tuple[ValidationError, ...]
    ok: bool = False
    
    @property
    def fields(self) -> Tuple[str, ...]:
        return tuple(error.field for error in self.errors)


@dataclass(frozen=True)
class IllegalTransition:
    """
    Transition rejected by the Sub-Entity Manager state machine.
    
    Examples:
    - save or cancel while the category is idle
    - edit/remove with an index outside the array
    - confirm_remove without a pending request
    
    Attributes:
        reason: Human-readable explanation
        operation: Name of rejected operation
    """
    reason: str
    operation: str
    ok: bool = False


@dataclass(frozen=True)
class EditingOpened:
    """Category moved to editing(index); buffer is the seeded record."""
    category: str
    index: int
    buffer: Provider
    ok: bool = True


@dataclass(frozen=True)
class EntrySaved:
    """Buffer committed at index; category back to idle."""
    category: str
    index: int
    record: Provider
    promoted: bool = False
    ok: bool = True


@dataclass(frozen=True)
class EditCancelled:
    """Buffer discarded; category back to idle, array unchanged."""
    category: str
    ok: bool = True


@dataclass(frozen=True)
class RemovalRequested:
    """First phase of removal; waiting for confirm_remove."""
    category: str
    index: int
    record: Provider
    ok: bool = True


@dataclass(frozen=True)
class RemovalCancelled:
    """Pending removal withdrawn; array unchanged."""
    category: str
    ok: bool = True


@dataclass(frozen=True)
class EntryRemoved:
    """Entry filtered out of the category array."""
    category: str
    index: int
    record: Provider
    ok: bool = True


@dataclass(frozen=True)
class RecoverableSchemaDrift:
    """
    Stored data did not have the declared shape and was coerced.
    
    Recorded by the Field Store, never returned from a mutation.
    """
    section_key: str
    field: str
    found_type: str
    coerced_to: str = "[]"


@dataclass(frozen=True)
class AssessmentCompleted:
    """Every section validated clean; status moved to completed."""
    completed_at: str
    ok: bool = True
