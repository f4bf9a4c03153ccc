"""
Field value kinds for assessment sections.

Every field in the assessment template declares exactly one kind. Values
stay plain JSON-compatible Python objects inside the Field Store; the kind
is the tag that says which shape the value must have.

Kinds:
- boolean:     True / False (yes/no questions)
- text:        str (free text, dropdown choices, dates as ISO strings)
- number:      int or finite float (ratings, counts) - bool, NaN and
               infinities are NOT numbers here
- string_list: list of str (multi-select checkboxes)
- entity_list: list of dict (repeatable sub-entities, e.g. providers)

Design:
- FieldKind is a string-based enum so template JSON can name it directly
- Kind mismatches are reported by the Validator, never raised at write time
"""

import math
from enum import Enum
from typing import Any


class FieldKind(str, Enum):
    """Declared shape of a section field."""
    BOOLEAN = "boolean"
    TEXT = "text"
    NUMBER = "number"
    STRING_LIST = "string_list"
    ENTITY_LIST = "entity_list"


# Single source of truth for valid kind strings
# Used by EngineConfig when loading the template (fail-fast on typos)
VALID_KINDS = {kind.value for kind in FieldKind}


def empty_value(kind: FieldKind) -> Any:
    """
    Value a field is reset to when it is cleared.
    
    Text fields clear to '' (matches an unselected dropdown), list kinds
    to a fresh empty list, boolean and number to None.
    """
    kind = FieldKind(kind)
    if kind == FieldKind.TEXT:
        return ""
    if kind in (FieldKind.STRING_LIST, FieldKind.ENTITY_LIST):
        return []
    return None


def matches_kind(kind: FieldKind, value: Any) -> bool:
    """
    Check that a value has the shape its kind declares.
    
    None always matches (unanswered). Lists are checked element-wise.
    
    Examples:
        >>> matches_kind(FieldKind.NUMBER, 2)
        True
        >>> matches_kind(FieldKind.NUMBER, True)
        False
        >>> matches_kind(FieldKind.NUMBER, float("nan"))
        False
        >>> matches_kind(FieldKind.STRING_LIST, ['Walker', 'Cane'])
        True
    """
    if value is None:
        return True
    
    kind = FieldKind(kind)
    
    if kind == FieldKind.BOOLEAN:
        return isinstance(value, bool)
    if kind == FieldKind.TEXT:
        return isinstance(value, str)
    if kind == FieldKind.NUMBER:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        return math.isfinite(value)
    if kind == FieldKind.STRING_LIST:
        return isinstance(value, list) and all(isinstance(item, str) for item in value)
    if kind == FieldKind.ENTITY_LIST:
        return isinstance(value, list) and all(isinstance(item, dict) for item in value)
    
    return False
