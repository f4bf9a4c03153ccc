"""
Semantic contracts for the intake assessment engine.

This module defines immutable data structures that serve as contracts
between engine components. They define shape and semantics; enforcement
lives in the Validator, the Field Store and the template loader.

Design principles:
- Frozen dataclasses (immutable after creation)
- Tuples instead of lists for nested collections
- No dependencies on engine components

Contents:
- ValidationError: One validation finding (field, message, severity)
- Provider: Repeatable sub-entity stored in a category array
- FieldChange: One committed field write, reported to audit hooks
- Template parts: FieldSpec, SectionSchema, DependencyRule, ValidationRule,
  CategorySpec, ScoreDefinition
- ScoreResult: Computed score with its documented maximum

Usage:
    from intake_engine.contracts import Provider, ValidationError
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from intake_engine.utils.field_values import FieldKind


class Cardinality(str, Enum):
    """How many entries a sub-entity category may hold."""
    SINGLE = "single"
    MULTIPLE = "multiple"


@dataclass(frozen=True)
class ValidationError:
    """
    One validation finding.
    
    Ephemeral: recomputed on every validation pass, never persisted.
    
    Attributes:
        field: Field the finding is attached to (category key for
            section-level sub-entity errors)
        message: Human-readable message, ready to render
        severity: 'error' (blocks completion) or 'warning'
    """
    field: str
    message: str
    severity: str = "error"


@dataclass(frozen=True)
class Provider:
    """
    Repeatable sub-entity (care provider, pharmacy, agency, ...).
    
    Stored inside a section as a plain dict (see to_dict) so snapshots
    stay JSON-serializable. A Provider belongs to exactly one category
    array of exactly one section.
    
    Attributes:
        id: Unique identifier generated on add
        display_name: Practice or agency name (required to save)
        provider_name: Individual clinician name (optional)
        phone: Contact phone (required to save)
        email: Contact email (optional)
        notes: Hours, specialties, concerns
        is_inactive: Former/previous provider flag
    """
    id: str
    display_name: str = ""
    provider_name: str = ""
    phone: str = ""
    email: str = ""
    notes: str = ""
    is_inactive: bool = False
    
    # Fields that must be non-blank before an edit can be saved
    REQUIRED_FIELDS = ('display_name', 'phone')
    
    def missing_required(self) -> Tuple[str, ...]:
        """Names of required fields that are blank, in declaration order."""
        return tuple(
            name for name in self.REQUIRED_FIELDS
            if not str(getattr(self, name) or "").strip()
        )
    
    def is_promotable(self) -> bool:
        """True when the record has a name and a contact to forward."""
        return not self.missing_required()
    
    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
    
    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Provider":
        """
        Build a Provider from stored data.
        
        Tolerates missing keys (blank defaults) and ignores unknown keys,
        so older stored entries still load.
        """
        def text(key):
            value = data.get(key)
            return "" if value is None else str(value)
        
        return Provider(
            id=text('id'),
            display_name=text('display_name'),
            provider_name=text('provider_name'),
            phone=text('phone'),
            email=text('email'),
            notes=text('notes'),
            is_inactive=bool(data.get('is_inactive', False)),
        )


@dataclass(frozen=True)
class FieldChange:
    """
    One committed field write, as seen by audit hooks.
    
    Attributes:
        section_key: Section that was written
        field: Field that changed
        previous: Value before the write (None if never set)
        value: Value after the write
        source: 'caller' for direct writes, 'resolver' for dependent clears,
            'load' for whole-section replacement
    """
    section_key: str
    field: str
    previous: Any
    value: Any
    source: str = "caller"


# ============================================================================
# Template contracts
# ============================================================================

@dataclass(frozen=True)
class FieldSpec:
    """Declared field of a section."""
    name: str
    kind: FieldKind
    label: Optional[str] = None


@dataclass(frozen=True)
class SectionSchema:
    """
    Declared shape of one section.
    
    fields is a tuple to keep declaration order (used for rendering and
    for the order of type errors).
    """
    key: str
    label: str
    fields: Tuple[FieldSpec, ...]
    
    def field_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.fields)
    
    def get_field(self, name: str) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None


@dataclass(frozen=True)
class DependencyRule:
    """
    "field is only meaningful while `when` holds", re-checked whenever
    depends_on changes.
    
    when is a condition DSL dict kept as a tuple-free mapping; it is never
    mutated after loading.
    """
    section_key: str
    field: str
    depends_on: str
    when: Dict[str, Any] = field(hash=False, compare=True)


@dataclass(frozen=True)
class ValidationRule:
    """
    One declared validation rule.
    
    kind: 'required' | 'conditional_required' | 'format' | 'range'
    """
    kind: str
    field: str
    message: Optional[str] = None
    when: Optional[Dict[str, Any]] = field(default=None, hash=False)
    one_of: Optional[Tuple[Any, ...]] = None
    pattern: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None


@dataclass(frozen=True)
class CategorySpec:
    """
    Sub-entity category backed by an entity_list field.
    
    Attributes:
        key: Field name of the category array (e.g. 'primary_care_provider')
        label: Display label, also passed to the resource directory
        cardinality: single (at most one entry) or multiple
        required: Section-level error when the array is empty
    """
    key: str
    label: str
    cardinality: Cardinality = Cardinality.MULTIPLE
    required: bool = False


@dataclass(frozen=True)
class ScoreDefinition:
    """
    Declared score rollup.
    
    Methods:
    - 'sum': sum of integer ratings, each 0..max_rating
    - 'indicative_count': one point per item whose answer equals the
      item's indicative answer (max_rating is 1)
    
    max_score is len(item_keys) * max_rating. higher_is documents what a
    higher score means (e.g. 'more independent').
    
    bands: ((low, high, label), ...) inclusive interpretation ranges.
    """
    key: str
    section_key: str
    label: str
    item_keys: Tuple[str, ...]
    max_rating: int
    higher_is: str
    method: str = "sum"
    indicative_answers: Optional[Tuple[Any, ...]] = None
    bands: Tuple[Tuple[int, int, str], ...] = ()
    
    @property
    def max_score(self) -> int:
        return len(self.item_keys) * self.max_rating
    
    def interpret(self, score: int) -> Optional[str]:
        for low, high, label in self.bands:
            if low <= score <= high:
                return label
        return None


@dataclass(frozen=True)
class ScoreResult:
    """Computed score for one ScoreDefinition."""
    key: str
    label: str
    score: int
    max_score: int
    higher_is: str
    interpretation: Optional[str] = None
