"""
Field Store - ordered section storage for one assessment

Responsibilities:
- Store each section's raw answers (field -> value), sections in template order
- Single write path for every mutation (caller writes, resolver clears,
  whole-section loads)
- Consult the Mode Gate before any write
- Run the Conditional Resolver after writes, inside the same operation
- Report every committed change to audit hooks

Design principles:
- Atomic: writes are staged on a working copy and swapped in as one step,
  so no reader ever sees a partially-updated section
- Writes-then-reads: all writes of a batch land in the working copy before
  the resolver reads it
- Defensive copies in and out (snapshots are safe to modify)
- Programming errors (unknown section/field) raise ValueError before
  anything is staged; expected rejections are returned as results

API Philosophy:
- Field Store = container + write path
- Validator / Score Calculator = readers of snapshots
- Sub-Entity Manager = client of update_field / update_section
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from intake_engine.contracts import Cardinality, FieldChange, Provider
from intake_engine.results import (
    CardinalityViolation,
    MutationApplied,
    MutationDenied,
    RecoverableSchemaDrift,
)
from intake_engine.utils.field_values import FieldKind
from intake_engine.utils.helpers import deep_copy

logger = logging.getLogger(__name__)


class FieldStore:
    """Stores section data and owns the single mutation channel"""
    
    def __init__(self, config, gate, resolver=None, sections: Optional[Dict[str, Dict[str, Any]]] = None):
        """
        Initialize empty sections from the template.
        
        Args:
            config: EngineConfig
            gate: ModeGate consulted before every write
            resolver: ConditionalResolver (None disables dependent clearing)
            sections: Previously stored section data to restore (not gated,
                this is construction, not mutation)
        """
        self.config = config
        self.gate = gate
        self.resolver = resolver
        
        self._sections: Dict[str, Dict[str, Any]] = {key: {} for key in config.section_keys()}
        self._audit_hooks: List[Callable[[FieldChange], None]] = []
        self.schema_drift: List[RecoverableSchemaDrift] = []
        
        for section_key, data in (sections or {}).items():
            if section_key not in self._sections:
                logger.warning(f"Ignoring stored data for unknown section '{section_key}'")
                continue
            self._sections[section_key] = deep_copy(data or {})
        
        logger.info(f"Field Store initialized with {len(self._sections)} sections")
    
    # ========================
    # Private Helpers
    # ========================
    
    def _validate_fields(self, section_key: str, fields: Iterable[str]) -> None:
        """
        Raises:
            ValueError: If section_key or any field is not declared
        """
        schema = self.config.get_section(section_key)
        declared = set(schema.field_names())
        for field in fields:
            if field not in declared:
                raise ValueError(f"Field '{field}' is not declared in section '{section_key}'")
    
    def _deny(self, operation: str, section_key: str) -> MutationDenied:
        mode = self.gate.mode.value
        logger.warning(f"{operation} on '{section_key}' denied in {mode} mode")
        return MutationDenied(operation=operation, mode=mode)
    
    def _check_cardinality(self, section_key: str, values: Dict[str, Any]) -> Optional[CardinalityViolation]:
        for field, value in values.items():
            category = self.config.get_category(section_key, field)
            if category is None or category.cardinality != Cardinality.SINGLE:
                continue
            if isinstance(value, list) and len(value) > 1:
                logger.warning(
                    f"{section_key}.{field}: single category cannot hold {len(value)} entries"
                )
                return CardinalityViolation(category=field, existing_count=len(value))
        return None
    
    def _stage(self, working: Dict[str, Any], section_key: str, field: str,
               value: Any, source: str, changes: List[FieldChange]) -> bool:
        """
        Stage one write on the working copy.
        
        Every write, caller or resolver, goes through here so the gate and
        the audit trail see all of them.
        
        Returns:
            bool: False if the gate denied the write (caller must abort)
        """
        if not self.gate.can_mutate():
            return False
        
        value = self._to_stored(section_key, field, value)
        previous = working.get(field)
        working[field] = deep_copy(value)
        changes.append(FieldChange(
            section_key=section_key,
            field=field,
            previous=deep_copy(previous),
            value=deep_copy(value),
            source=source,
        ))
        return True
    
    def _to_stored(self, section_key: str, field: str, value: Any) -> Any:
        """Store Provider records in entity lists as plain dicts."""
        spec = self.config.get_section(section_key).get_field(field)
        if spec is None or spec.kind != FieldKind.ENTITY_LIST or not isinstance(value, list):
            return value
        return [item.to_dict() if isinstance(item, Provider) else item for item in value]
    
    def _resolve(self, working: Dict[str, Any], section_key: str, triggers: Iterable[str],
                 changes: List[FieldChange]) -> Optional[List[str]]:
        """
        Apply resolver clears for each trigger, in order.
        
        Returns:
            list of cleared field names, or None if a clear was denied
        """
        cleared: List[str] = []
        if self.resolver is None:
            return cleared
        
        for trigger in triggers:
            for field, value in self.resolver.on_field_changed(section_key, trigger, working):
                if not self._stage(working, section_key, field, value, 'resolver', changes):
                    return None
                cleared.append(field)
        return cleared
    
    def _commit(self, section_key: str, working: Dict[str, Any], changes: List[FieldChange]) -> None:
        """Swap the working copy in, then notify audit hooks (hook failures are logged)."""
        self._sections[section_key] = working
        
        for change in changes:
            logger.debug(f"{section_key}: {change.field} = {change.value!r} ({change.source})")
            for hook in self._audit_hooks:
                try:
                    hook(change)
                except Exception as e:
                    logger.error(f"Audit hook failed for {section_key}.{change.field}: {e}")
    
    # ========================
    # Mutation Entry Points
    # ========================
    
    def update_field(self, section_key: str, field: str, value: Any):
        """
        Write one field, then clear dependents whose condition no longer holds.
        
        Args:
            section_key: Section to update (e.g. 'cognitive')
            field: Declared field name
            value: New value (replaces any previous value)
            
        Returns:
            MutationApplied | MutationDenied | CardinalityViolation
            
        Raises:
            ValueError: If section or field is not declared
            
        Example:
            store.update_field('cognitive', 'memory_concerns', False)
            # memory_concerns_frequency is cleared in the same operation
        """
        if not self.gate.can_mutate():
            return self._deny("update_field", section_key)
        
        return self._apply(section_key, {field: value}, "update_field", source='caller')
    
    def update_section(self, section_key: str, partial_data: Dict[str, Any]):
        """
        Write several fields atomically: all land or none do.
        
        All writes are staged before the resolver reads the section, so a
        batch that sets a trigger and its dependent together is resolved
        against the final batch state.
        
        Returns:
            MutationApplied | MutationDenied | CardinalityViolation
            
        Raises:
            ValueError: If section or any field is not declared (nothing written)
        """
        if not self.gate.can_mutate():
            return self._deny("update_section", section_key)
        
        return self._apply(section_key, dict(partial_data), "update_section", source='caller')
    
    def load_section(self, section_key: str, data: Dict[str, Any]):
        """
        Replace a whole section (bulk import, out-of-band edits).
        
        Fields absent from `data` are removed. Dependency rules are
        re-checked for every loaded field.
        
        Returns:
            MutationApplied | MutationDenied | CardinalityViolation
        """
        if not self.gate.can_mutate():
            return self._deny("load_section", section_key)
        
        self._validate_fields(section_key, data.keys())
        violation = self._check_cardinality(section_key, data)
        if violation:
            return violation
        
        previous = self._sections[section_key]
        working: Dict[str, Any] = {}
        changes: List[FieldChange] = []
        
        for field, value in data.items():
            if not self._stage(working, section_key, field, value, 'load', changes):
                return self._deny("load_section", section_key)
        
        # Removed fields are reported too, so the audit trail is complete
        for field in previous:
            if field not in data:
                changes.append(FieldChange(section_key, field, deep_copy(previous[field]), None, 'load'))
        
        cleared = self._resolve(working, section_key, list(data.keys()), changes)
        if cleared is None:
            return self._deny("load_section", section_key)
        
        self._commit(section_key, working, changes)
        logger.info(f"Section '{section_key}' loaded ({len(data)} fields)")
        return MutationApplied(section_key=section_key, fields=tuple(data.keys()), cleared=tuple(cleared))
    
    def _apply(self, section_key: str, values: Dict[str, Any], operation: str, source: str):
        self._validate_fields(section_key, values.keys())
        
        violation = self._check_cardinality(section_key, values)
        if violation:
            return violation
        
        working = deep_copy(self._sections[section_key])
        changes: List[FieldChange] = []
        
        for field, value in values.items():
            if not self._stage(working, section_key, field, value, source, changes):
                return self._deny(operation, section_key)
        
        cleared = self._resolve(working, section_key, list(values.keys()), changes)
        if cleared is None:
            return self._deny(operation, section_key)
        
        self._commit(section_key, working, changes)
        return MutationApplied(section_key=section_key, fields=tuple(values.keys()), cleared=tuple(cleared))
    
    # ========================
    # Reads
    # ========================
    
    def snapshot(self, section_key: str) -> Dict[str, Any]:
        """
        Get section data (deep copy, safe to modify).
        
        Raises:
            ValueError: If section_key doesn't exist
        """
        if section_key not in self._sections:
            raise ValueError(f"Section '{section_key}' does not exist")
        return deep_copy(self._sections[section_key])
    
    def get_field(self, section_key: str, field: str, default: Any = None) -> Any:
        """Get one field value (deep copy) or default."""
        if section_key not in self._sections:
            raise ValueError(f"Section '{section_key}' does not exist")
        return deep_copy(self._sections[section_key].get(field, default))
    
    def export_sections(self) -> Dict[str, Dict[str, Any]]:
        """All sections in template order (deep copy)."""
        return deep_copy(self._sections)
    
    def read_entity_list(self, section_key: str, field: str) -> List[Dict[str, Any]]:
        """
        Read an entity-list field, coercing malformed stored data.
        
        A value that is not a list (or list items that are not dicts) is
        RecoverableSchemaDrift: recorded, logged, and read as empty/skipped
        instead of failing the whole assessment.
        
        Returns:
            list of entry dicts (deep copy)
        """
        value = self.get_field(section_key, field)
        if value is None:
            return []
        
        if not isinstance(value, list):
            self._record_drift(section_key, field, type(value).__name__)
            return []
        
        entries = []
        for item in value:
            if isinstance(item, dict):
                entries.append(item)
            else:
                self._record_drift(section_key, field, f"list[{type(item).__name__}]")
        return entries
    
    def _record_drift(self, section_key: str, field: str, found_type: str) -> None:
        drift = RecoverableSchemaDrift(section_key=section_key, field=field, found_type=found_type)
        if drift in self.schema_drift:
            return
        self.schema_drift.append(drift)
        logger.warning(
            f"Schema drift: {section_key}.{field} holds {found_type}, expected entity list "
            f"(treated as empty)"
        )
    
    # ========================
    # Audit
    # ========================
    
    def add_audit_hook(self, hook: Callable[[FieldChange], None]) -> None:
        """Register a callable receiving every committed FieldChange."""
        self._audit_hooks.append(hook)
