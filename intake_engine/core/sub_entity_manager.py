"""
Sub-Entity Manager - repeatable nested records inside one section

Responsibilities:
- Per-category state machine: idle <-> editing(index)
- add / edit / save / cancel transitions with an editing buffer
- Two-phase removal (request_remove -> confirm_remove)
- Cardinality enforcement for single-entry categories
- Promotion of saved records to the resource directory collaborator

Design principles:
- Every array change goes through FieldStore.update_field / update_section,
  so the Mode Gate and the audit trail see sub-entity edits like any other
  write
- The stored array is untouched until save; cancel is always safe
- Sessions track entries by id, not by position, so they survive other
  entries being removed and notice when their own entry disappears
- At most one editing session per category; sessions in different
  categories are independent
- Expected rejections are returned as results, never raised

State per category:
    idle --add--> editing(new index)        (CardinalityViolation if single & non-empty)
    idle --edit(i)--> editing(i)
    editing --save(record)--> idle          (ValidationFailure keeps editing)
    editing --cancel--> idle
    idle --request_remove(i)--> pending --confirm_remove--> idle
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from intake_engine.contracts import Cardinality, CategorySpec, Provider, ValidationError
from intake_engine.core.mode_gate import can_mutate
from intake_engine.results import (
    CardinalityViolation,
    EditCancelled,
    EditingOpened,
    EntryRemoved,
    EntrySaved,
    IllegalTransition,
    MutationDenied,
    RemovalCancelled,
    RemovalRequested,
    ValidationFailure,
)
from intake_engine.utils.helpers import generate_entity_id

logger = logging.getLogger(__name__)

REQUIRED_FIELD_MESSAGES = {
    'display_name': 'Practice or Agency Name is required',
    'phone': 'Phone Number is required',
}


@dataclass
class _EditingSession:
    """Open editing buffer for one category."""
    entry_id: str
    index: int
    buffer: Provider


@dataclass
class _PendingRemoval:
    """First phase of a removal, waiting for confirmation."""
    entry_id: str
    index: int


class SubEntityManager:
    """Manages the category arrays of one section"""
    
    STATE_IDLE = "idle"
    STATE_EDITING = "editing"
    
    def __init__(self, store, section_key: str, gate, directory=None):
        """
        Initialize manager for one section's categories.
        
        Args:
            store: FieldStore owning the section
            section_key: Section holding the category arrays (e.g. 'care_providers')
            gate: ModeGate (leaving EDIT drops open sessions)
            directory: Optional resource directory with callable promote()
            
        Raises:
            ValueError: If the section declares no entity categories
            TypeError: If directory has no callable promote() method
        """
        categories = store.config.categories.get(section_key, ())
        if not categories:
            raise ValueError(f"Section '{section_key}' declares no entity categories")
        
        if directory is not None and not callable(getattr(directory, 'promote', None)):
            raise TypeError("directory must have callable promote() method")
        
        self.store = store
        self.section_key = section_key
        self.gate = gate
        self.directory = directory
        self.categories: Dict[str, CategorySpec] = {spec.key: spec for spec in categories}
        
        self._sessions: Dict[str, _EditingSession] = {}
        self._pending_removals: Dict[str, _PendingRemoval] = {}
        
        gate.add_listener(self._on_mode_changed)
        
        logger.info(f"Sub-Entity Manager initialized for '{section_key}' ({len(self.categories)} categories)")
    
    # ========================
    # Private Helpers
    # ========================
    
    def _require_category(self, category: str) -> CategorySpec:
        """
        Raises:
            ValueError: If category is not declared for this section
        """
        spec = self.categories.get(category)
        if spec is None:
            raise ValueError(f"Category '{category}' does not exist in section '{self.section_key}'")
        return spec
    
    def _unknown(self, operation: str, category: str) -> IllegalTransition:
        logger.warning(f"{operation}: unknown category '{category}' in section '{self.section_key}'")
        return IllegalTransition(reason=f"Category '{category}' does not exist", operation=operation)
    
    def _deny(self, operation: str, category: str) -> MutationDenied:
        mode = self.gate.mode.value
        logger.warning(f"{operation} on '{category}' denied in {mode} mode")
        return MutationDenied(operation=operation, mode=mode)
    
    def _raw_entries(self, category: str) -> List[dict]:
        return self.store.read_entity_list(self.section_key, category)
    
    @staticmethod
    def _locate(entries: List[dict], entry_id: str, fallback_index: int) -> Optional[int]:
        """
        Current position of a tracked entry.
        
        Entries without an id (older stored data) are tracked by position.
        """
        if entry_id:
            for i, entry in enumerate(entries):
                if entry.get('id') == entry_id:
                    return i
            return None
        return fallback_index if fallback_index < len(entries) else None
    
    def _open_session(self, category: str, entry_id: str, index: int, buffer: Provider) -> None:
        if category in self._sessions:
            logger.info(f"{category}: closing open edit before opening another")
            del self._sessions[category]
        self._sessions[category] = _EditingSession(entry_id=entry_id, index=index, buffer=buffer)
    
    def _on_mode_changed(self, mode) -> None:
        """Leaving EDIT returns every category to idle."""
        if can_mutate(mode):
            return
        if self._sessions or self._pending_removals:
            logger.info(
                f"Mode {mode.value}: discarding {len(self._sessions)} editing sessions "
                f"and {len(self._pending_removals)} pending removals"
            )
        self._sessions.clear()
        self._pending_removals.clear()
    
    def _promote(self, record: Provider, spec: CategorySpec) -> bool:
        """
        Forward a saved record to the resource directory.
        
        Fire-and-forget: a failing directory is logged and never rolls
        back the save.
        """
        if self.directory is None or not record.is_promotable():
            return False
        try:
            self.directory.promote(record, spec.label)
        except Exception as e:
            logger.error(f"Resource directory promotion failed for {spec.key}: {e}")
            return False
        return True
    
    # ========================
    # Reads
    # ========================
    
    def entries(self, category: str) -> List[Provider]:
        """
        Stored entries of a category (malformed data reads as empty).
        
        Raises:
            ValueError: If category doesn't exist
        """
        self._require_category(category)
        return [Provider.from_dict(entry) for entry in self._raw_entries(category)]
    
    def state(self, category: str) -> str:
        """'editing' while a session is open, 'idle' otherwise."""
        self._require_category(category)
        return self.STATE_EDITING if category in self._sessions else self.STATE_IDLE
    
    def editing_index(self, category: str) -> Optional[int]:
        """Current array index of the entry being edited, or None."""
        self._require_category(category)
        session = self._sessions.get(category)
        if session is None:
            return None
        return self._locate(self._raw_entries(category), session.entry_id, session.index)
    
    def buffer(self, category: str) -> Optional[Provider]:
        """Editing buffer of a category, or None when idle."""
        self._require_category(category)
        session = self._sessions.get(category)
        return session.buffer if session else None
    
    def pending_removal(self, category: str) -> Optional[int]:
        """Index awaiting confirm_remove, or None."""
        self._require_category(category)
        pending = self._pending_removals.get(category)
        if pending is None:
            return None
        return self._locate(self._raw_entries(category), pending.entry_id, pending.index)
    
    def all_entries(self) -> List[Tuple[str, List[Provider]]]:
        """
        Non-empty categories with their entries, in template order.
        
        Used for print/export rendering.
        
        Returns:
            list: [(category label, [Provider, ...]), ...]
        """
        listing = []
        for key, spec in self.categories.items():
            providers = self.entries(key)
            if providers:
                listing.append((spec.label, providers))
        return listing
    
    # ========================
    # Transitions
    # ========================
    
    def add(self, category: str):
        """
        Append a blank entry with a fresh id and open it for editing.
        
        Returns:
            EditingOpened | CardinalityViolation | MutationDenied
        """
        spec = self.categories.get(category)
        if spec is None:
            return self._unknown("add", category)
        if not self.gate.can_mutate():
            return self._deny("add", category)
        
        entries = self._raw_entries(category)
        if spec.cardinality == Cardinality.SINGLE and entries:
            logger.warning(f"add on single category '{category}' rejected ({len(entries)} entry present)")
            return CardinalityViolation(category=category, existing_count=len(entries))
        
        # Deterministic: an open edit in this category is closed first
        self._sessions.pop(category, None)
        
        record = Provider(id=generate_entity_id())
        result = self.store.update_field(self.section_key, category, entries + [record.to_dict()])
        if not result.ok:
            return result
        
        index = len(entries)
        self._open_session(category, record.id, index, record)
        logger.info(f"{category}: added entry {record.id} at index {index}")
        return EditingOpened(category=category, index=index, buffer=record)
    
    def edit(self, category: str, index: int):
        """
        Open an existing entry into an editing buffer.
        
        Returns:
            EditingOpened | IllegalTransition | MutationDenied
        """
        if category not in self.categories:
            return self._unknown("edit", category)
        if not self.gate.can_mutate():
            return self._deny("edit", category)
        
        entries = self._raw_entries(category)
        if index < 0 or index >= len(entries):
            return IllegalTransition(
                reason=f"No entry at index {index} in '{category}' ({len(entries)} entries)",
                operation="edit",
            )
        
        stored = Provider.from_dict(entries[index])
        entry_id = stored.id
        buffer = stored if stored.id else replace(stored, id=generate_entity_id())
        
        self._open_session(category, entry_id, index, buffer)
        logger.debug(f"{category}: editing index {index}")
        return EditingOpened(category=category, index=index, buffer=buffer)
    
    def update_buffer(self, category: str, **changes) -> Provider:
        """
        Change fields of the open editing buffer.
        
        Example:
            manager.update_buffer('primary_care_provider', display_name='Dr. Lee')
            
        Returns:
            Provider: Updated buffer
            
        Raises:
            ValueError: If the category is idle, or changes include 'id'
            TypeError: If changes name a field Provider doesn't have
        """
        self._require_category(category)
        session = self._sessions.get(category)
        if session is None:
            raise ValueError(f"No entry is being edited in '{category}'")
        if 'id' in changes:
            raise ValueError("Entry id cannot be changed")
        
        session.buffer = replace(session.buffer, **changes)
        return session.buffer
    
    def save(self, category: str, record: Optional[Provider] = None):
        """
        Commit the edited record into the category array.
        
        Args:
            category: Category being edited
            record: Edited record (defaults to the editing buffer). Its id is
                always the id of the entry being edited.
            
        Returns:
            EntrySaved | ValidationFailure | IllegalTransition | MutationDenied
        """
        spec = self.categories.get(category)
        if spec is None:
            return self._unknown("save", category)
        if not self.gate.can_mutate():
            return self._deny("save", category)
        
        session = self._sessions.get(category)
        if session is None:
            return IllegalTransition(reason=f"No entry is being edited in '{category}'", operation="save")
        
        record = record if record is not None else session.buffer
        record = replace(record, id=session.buffer.id)
        session.buffer = record
        
        missing = record.missing_required()
        if missing:
            logger.info(f"{category}: save rejected, missing {list(missing)}")
            return ValidationFailure(errors=tuple(
                ValidationError(field=name, message=REQUIRED_FIELD_MESSAGES[name]) for name in missing
            ))
        
        entries = self._raw_entries(category)
        index = self._locate(entries, session.entry_id, session.index)
        if index is None:
            del self._sessions[category]
            return IllegalTransition(
                reason=f"Entry being edited no longer exists in '{category}'",
                operation="save",
            )
        
        updated = list(entries)
        updated[index] = record.to_dict()
        result = self.store.update_section(self.section_key, {category: updated})
        if not result.ok:
            return result
        
        del self._sessions[category]
        promoted = self._promote(record, spec)
        logger.info(f"{category}: saved entry {record.id} at index {index}")
        return EntrySaved(category=category, index=index, record=record, promoted=promoted)
    
    def cancel(self, category: str):
        """
        Discard the editing buffer. The stored array is unchanged.
        
        Allowed in any mode: it never writes.
        
        Returns:
            EditCancelled | IllegalTransition
        """
        if category not in self.categories:
            return self._unknown("cancel", category)
        if category not in self._sessions:
            return IllegalTransition(reason=f"No entry is being edited in '{category}'", operation="cancel")
        
        del self._sessions[category]
        logger.debug(f"{category}: edit cancelled")
        return EditCancelled(category=category)
    
    def request_remove(self, category: str, index: int):
        """
        First phase of removal. Nothing is removed until confirm_remove.
        
        Returns:
            RemovalRequested | IllegalTransition | MutationDenied
        """
        if category not in self.categories:
            return self._unknown("request_remove", category)
        if not self.gate.can_mutate():
            return self._deny("remove", category)
        
        entries = self._raw_entries(category)
        if index < 0 or index >= len(entries):
            return IllegalTransition(
                reason=f"No entry at index {index} in '{category}' ({len(entries)} entries)",
                operation="request_remove",
            )
        
        record = Provider.from_dict(entries[index])
        self._pending_removals[category] = _PendingRemoval(entry_id=record.id, index=index)
        return RemovalRequested(category=category, index=index, record=record)
    
    def confirm_remove(self, category: str):
        """
        Second phase of removal: filter the entry out of the array.
        
        If the removed entry was being edited, that session is closed in the
        same transition.
        
        Returns:
            EntryRemoved | IllegalTransition | MutationDenied
        """
        if category not in self.categories:
            return self._unknown("confirm_remove", category)
        if not self.gate.can_mutate():
            return self._deny("remove", category)
        
        pending = self._pending_removals.get(category)
        if pending is None:
            return IllegalTransition(reason=f"No removal pending in '{category}'", operation="confirm_remove")
        
        entries = self._raw_entries(category)
        index = self._locate(entries, pending.entry_id, pending.index)
        if index is None:
            del self._pending_removals[category]
            return IllegalTransition(
                reason=f"Entry pending removal no longer exists in '{category}'",
                operation="confirm_remove",
            )
        
        record = Provider.from_dict(entries[index])
        remaining = [entry for i, entry in enumerate(entries) if i != index]
        result = self.store.update_field(self.section_key, category, remaining)
        if not result.ok:
            return result
        
        del self._pending_removals[category]
        
        session = self._sessions.get(category)
        if session is not None and self._locate(entries, session.entry_id, session.index) == index:
            del self._sessions[category]
            logger.info(f"{category}: removed entry was being edited, session closed")
        elif session is not None and not session.entry_id and session.index > index:
            session.index -= 1
        
        logger.info(f"{category}: removed entry at index {index}")
        return EntryRemoved(category=category, index=index, record=record)
    
    def cancel_remove(self, category: str):
        """
        Withdraw a pending removal.
        
        Returns:
            RemovalCancelled | IllegalTransition
        """
        if category not in self.categories:
            return self._unknown("cancel_remove", category)
        if category not in self._pending_removals:
            return IllegalTransition(reason=f"No removal pending in '{category}'", operation="cancel_remove")
        
        del self._pending_removals[category]
        return RemovalCancelled(category=category)
    
    def remove(self, category: str, index: int, acknowledged: bool = False):
        """
        Single-call removal; the caller must pass acknowledged=True.
        
        Returns:
            EntryRemoved | IllegalTransition | MutationDenied
        """
        if category not in self.categories:
            return self._unknown("remove", category)
        if not acknowledged:
            return IllegalTransition(reason="Removal must be acknowledged before it is applied", operation="remove")
        
        requested = self.request_remove(category, index)
        if not isinstance(requested, RemovalRequested):
            return requested
        return self.confirm_remove(category)
