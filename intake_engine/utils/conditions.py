"""
Condition DSL shared by the Conditional Resolver and the Validator.

A condition is a small JSON structure evaluated against a section's data map:

    {"is_true": "memory_concerns"}
    {"eq": ["cognitive_education_level", "High School Graduate"]}
    {"all": [{"exists": "adl_bathing"}, {"lte": ["adl_bathing", 1]}]}

Supports: all, any, eq, ne, in, is_true, is_false, exists, gte, gt, lte, lt

Design principles:
- Pure functions (no state)
- Missing fields never raise; they make comparisons False
- Empty condition is vacuously true
"""

import logging
from typing import Any, Dict, Set

logger = logging.getLogger(__name__)

OPERATORS = {
    "all", "any", "eq", "ne", "in", "is_true", "is_false", "exists",
    "gte", "gt", "lte", "lt"
}

_NUMERIC_OPERATORS = {
    "gte": lambda a, b: a >= b,
    "gt": lambda a, b: a > b,
    "lte": lambda a, b: a <= b,
    "lt": lambda a, b: a < b,
}


def evaluate_condition(dsl: Dict[str, Any], data: Dict[str, Any]) -> bool:
    """
    Evaluate DSL condition structure against a section data map.
    
    Args:
        dsl: DSL condition dict
        data: Section field values
        
    Returns:
        bool: Evaluation result
    """
    if not dsl:
        return True
    
    # Logical operators
    if "all" in dsl:
        return all(evaluate_condition(sub, data) for sub in dsl["all"])
    
    if "any" in dsl:
        conditions = dsl["any"]
        if not conditions:
            return False  # Empty any = no conditions met
        return any(evaluate_condition(sub, data) for sub in conditions)
    
    # Comparison operators
    if "eq" in dsl:
        field, expected = dsl["eq"]
        return data.get(field) == expected
    
    if "ne" in dsl:
        field, expected = dsl["ne"]
        return data.get(field) != expected
    
    if "in" in dsl:
        field, allowed = dsl["in"]
        return data.get(field) in allowed
    
    # Boolean operators
    if "is_true" in dsl:
        return data.get(dsl["is_true"]) is True
    
    if "is_false" in dsl:
        return data.get(dsl["is_false"]) is False
    
    # Existence operator
    if "exists" in dsl:
        field = dsl["exists"]
        return field in data and data[field] is not None
    
    # Numeric comparison operators
    for operator, compare in _NUMERIC_OPERATORS.items():
        if operator in dsl:
            field, threshold = dsl[operator]
            value = data.get(field)
            if value is None or isinstance(value, bool):
                return False
            try:
                return compare(float(value), float(threshold))
            except (TypeError, ValueError):
                return False
    
    # Unknown operator
    logger.warning(f"Unknown DSL operator: {list(dsl.keys())}")
    return False


def condition_fields(dsl: Dict[str, Any]) -> Set[str]:
    """
    Collect every field name a condition reads.
    
    Used when loading the template to check that conditions only
    reference declared fields.
    
    Raises:
        ValueError: If the condition uses an unknown operator
    """
    fields = set()
    if not dsl:
        return fields
    
    for operator, operand in dsl.items():
        if operator not in OPERATORS:
            raise ValueError(f"Unknown condition operator '{operator}'")
        
        if operator in ("all", "any"):
            for sub in operand:
                fields |= condition_fields(sub)
        elif operator in ("is_true", "is_false", "exists"):
            fields.add(operand)
        else:
            fields.add(operand[0])
    
    return fields
