"""
Utility helpers for the intake assessment engine

Simple utility functions for ID generation, deep copies and emptiness checks.
"""

import uuid
from typing import Any


def generate_entity_id(short=True):
    """
    Generate unique identifier for assessments and sub-entities
    
    Args:
        short (bool): If True, return 12-char hex. If False, return full UUID.
        
    Returns:
        str: Identifier
        
    Examples:
        >>> generate_entity_id()
        'a3f7e2b9c1d2'
        
        >>> generate_entity_id(short=False)
        'a3f7e2b9c1d2e3f4a5b6c7d8e9f0a1b2'
    """
    full_id = uuid.uuid4().hex
    return full_id[:12] if short else full_id


def deep_copy(obj: Any) -> Any:
    """
    Create deep copy of nested dict/list structure.
    
    Args:
        obj: Object to copy (dict, list, set, or primitive)
        
    Returns:
        Deep copy of object
    """
    if isinstance(obj, dict):
        return {k: deep_copy(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [deep_copy(item) for item in obj]
    elif isinstance(obj, set):
        return {deep_copy(item) for item in obj}
    else:
        return obj


def is_empty_value(value: Any) -> bool:
    """
    Check whether a stored answer counts as "not answered".
    
    None, blank strings and empty lists are empty. False and 0 are
    real answers and are NOT empty.
    
    Examples:
        >>> is_empty_value('  ')
        True
        >>> is_empty_value(False)
        False
        >>> is_empty_value([])
        True
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False
