"""
Mode Gate - capability check for every mutation entry point.

Invariants:
- Exactly one mode is active per interaction cycle
- Only EDIT permits mutation
- VIEW and PRINT are read-only: mutation attempts are rejected with
  MutationDenied, never silently applied
- Mode is supplied by the caller and never persisted with the assessment

Design:
- Mode is a string-based enum for JSON/query-string round trips
- ModeGate holds the current mode; components ask it, they never read the
  mode themselves
- Listeners are told about mode changes (Sub-Entity Manager drops open
  editing sessions when leaving EDIT)
"""

import logging
from enum import Enum
from typing import Callable, List

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    """
    Capability context the engine is invoked under.
    
    EDIT:
        Staff member is authoring the assessment. All entry points open.
        
    VIEW:
        Read-only review (including client self-service viewing).
        Snapshots, validation and scores only.
        
    PRINT:
        Print/export rendering. Same capabilities as VIEW.
    """
    EDIT = "edit"
    VIEW = "view"
    PRINT = "print"


# Single source of truth for valid mode strings
VALID_MODES = {mode.value for mode in Mode}


def can_mutate(mode: Mode) -> bool:
    """True only for EDIT (unknown mode strings are not EDIT)."""
    try:
        return Mode(mode) == Mode.EDIT
    except ValueError:
        return False


class ModeGate:
    """Holds the current mode and answers capability checks."""
    
    def __init__(self, mode: Mode = Mode.EDIT):
        """
        Args:
            mode: Initial mode (Mode or its string value)
            
        Raises:
            ValueError: If mode is not a valid mode string
        """
        self._mode = Mode(mode)
        self._listeners: List[Callable[[Mode], None]] = []
    
    @property
    def mode(self) -> Mode:
        return self._mode
    
    def set_mode(self, mode: Mode) -> None:
        """
        Switch mode and notify listeners.
        
        Raises:
            ValueError: If mode is not a valid mode string
        """
        mode = Mode(mode)
        if mode == self._mode:
            return
        
        logger.info(f"Mode changed: {self._mode.value} -> {mode.value}")
        self._mode = mode
        for listener in self._listeners:
            listener(mode)
    
    def can_mutate(self) -> bool:
        return can_mutate(self._mode)
    
    def add_listener(self, listener: Callable[[Mode], None]) -> None:
        self._listeners.append(listener)
