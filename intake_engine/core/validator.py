"""
Section Validator - declared-rule evaluation over section snapshots

Responsibilities:
- Check present values against their declared kind (boolean, text, ...)
- Evaluate declared rules: required, conditional_required, format, range
- Report required sub-entity categories that hold no saved entry (name and
  phone filled in) as one section-level error on the category field
- Compute section completion percentage from the required rules

Design principles:
- Pure: validate(section_key, data) depends only on its arguments and the
  template; it never writes and is safe to call repeatedly
- Stable order: kind errors in template field order, then rule errors in
  rule declaration order, then category errors in category order
- Errors are returned, never raised
"""

import logging
import math
import re
from typing import Any, Dict, List

from intake_engine.contracts import Provider, ValidationError, ValidationRule
from intake_engine.utils.conditions import evaluate_condition
from intake_engine.utils.field_values import FieldKind, matches_kind
from intake_engine.utils.helpers import is_empty_value

logger = logging.getLogger(__name__)

KIND_DESCRIPTIONS = {
    FieldKind.BOOLEAN: "yes or no",
    FieldKind.TEXT: "text",
    FieldKind.NUMBER: "a number",
    FieldKind.STRING_LIST: "a list of options",
    FieldKind.ENTITY_LIST: "a list of entries",
}


def _humanize(field: str) -> str:
    return field.replace('_', ' ').capitalize()


def _complete_entries(value: Any) -> List[Provider]:
    """
    Entries of an entity list that count toward a required category.
    
    Non-dict items (schema drift) and placeholders still missing a name or
    phone number are not counted.
    """
    if not isinstance(value, list):
        return []
    records = [Provider.from_dict(item) for item in value if isinstance(item, dict)]
    return [record for record in records if record.is_promotable()]


class SectionValidator:
    """Evaluates a section's declared rules against a data snapshot"""
    
    def __init__(self, config):
        """
        Args:
            config: EngineConfig (rules already validated at load)
        """
        self.config = config
        self._patterns = {}
        for rules in config.validation.values():
            for rule in rules:
                if rule.pattern and rule.pattern not in self._patterns:
                    self._patterns[rule.pattern] = re.compile(rule.pattern)
    
    # =========================================================================
    # Public API
    # =========================================================================
    
    def validate(self, section_key: str, data: Dict[str, Any]) -> List[ValidationError]:
        """
        Validate one section snapshot.
        
        Args:
            section_key: Section to validate
            data: Section snapshot (not modified)
            
        Returns:
            list[ValidationError]: Ordered errors, empty if the section is valid
            
        Raises:
            ValueError: If section_key is not declared
        """
        schema = self.config.get_section(section_key)
        errors: List[ValidationError] = []
        
        # Kind checks (entity lists are coerced by the store, not reported here)
        for spec in schema.fields:
            if spec.kind == FieldKind.ENTITY_LIST or spec.name not in data:
                continue
            if not matches_kind(spec.kind, data[spec.name]):
                errors.append(ValidationError(
                    field=spec.name,
                    message=f"{_humanize(spec.name)} must be {KIND_DESCRIPTIONS[spec.kind]}",
                ))
        
        for rule in self.config.validation.get(section_key, ()):
            error = self._check_rule(rule, data)
            if error is not None:
                errors.append(error)
        
        for category in self.config.categories.get(section_key, ()):
            if not category.required:
                continue
            if not _complete_entries(data.get(category.key)):
                errors.append(ValidationError(
                    field=category.key,
                    message=f"{category.label}: at least one provider is required",
                ))
        
        if errors:
            logger.debug(f"Section '{section_key}' has {len(errors)} validation errors")
        return errors
    
    def completion_percentage(self, section_key: str, data: Dict[str, Any]) -> int:
        """
        Share of required items that are answered (0-100).
        
        Required items are 'required' rules plus required categories.
        A section with no required items is 100 once anything is entered.
        """
        self.config.get_section(section_key)
        
        required = [
            rule.field for rule in self.config.validation.get(section_key, ())
            if rule.kind == "required"
        ]
        required_categories = [
            category.key for category in self.config.categories.get(section_key, ())
            if category.required
        ]
        
        if not required and not required_categories:
            has_data = any(not is_empty_value(value) for value in data.values())
            return 100 if has_data else 0
        
        answered = sum(1 for field in required if not is_empty_value(data.get(field)))
        answered += sum(1 for key in required_categories if _complete_entries(data.get(key)))
        return round(answered / (len(required) + len(required_categories)) * 100)
    
    # =========================================================================
    # Rule Evaluation
    # =========================================================================
    
    def _check_rule(self, rule: ValidationRule, data: Dict[str, Any]):
        value = data.get(rule.field)
        
        if rule.kind == "required":
            if is_empty_value(value):
                return self._error(rule, f"{_humanize(rule.field)} is required")
            return None
        
        if rule.kind == "conditional_required":
            if evaluate_condition(rule.when, data) and is_empty_value(value):
                return self._error(rule, f"{_humanize(rule.field)} is required")
            return None
        
        # format and range only judge answered values
        if is_empty_value(value):
            return None
        
        if rule.kind == "format":
            return self._check_format(rule, value)
        
        if rule.kind == "range":
            return self._check_range(rule, value)
        
        logger.warning(f"Unknown rule kind: {rule.kind}")
        return None
    
    def _check_format(self, rule: ValidationRule, value: Any):
        values = value if isinstance(value, list) else [value]
        
        if rule.one_of is not None:
            invalid = [item for item in values if item not in rule.one_of]
            if invalid:
                options = ", ".join(str(option) for option in rule.one_of)
                return self._error(rule, f"{_humanize(rule.field)} must be one of: {options}")
        
        if rule.pattern:
            pattern = self._patterns[rule.pattern]
            for item in values:
                if isinstance(item, str) and not pattern.match(item):
                    return self._error(rule, f"{_humanize(rule.field)} has an invalid format")
        
        return None
    
    def _check_range(self, rule: ValidationRule, value: Any):
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            return None  # Kind check already reports non-numbers and NaN/inf
        
        too_low = rule.min is not None and value < rule.min
        too_high = rule.max is not None and value > rule.max
        if not (too_low or too_high):
            return None
        
        name = _humanize(rule.field)
        if rule.min is not None and rule.max is not None:
            return self._error(rule, f"{name} must be between {rule.min} and {rule.max}")
        if rule.min is not None:
            return self._error(rule, f"{name} must be at least {rule.min}")
        return self._error(rule, f"{name} must be at most {rule.max}")
    
    @staticmethod
    def _error(rule: ValidationRule, default_message: str) -> ValidationError:
        return ValidationError(field=rule.field, message=rule.message or default_message)
