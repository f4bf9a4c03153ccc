"""
Assessment envelope - the persisted unit of one client intake.

An Assessment is what crosses the engine boundary: persistence loads one,
AssessmentEngine edits its sections, to_assessment() hands a fresh one back.

Rules:
- Immutable after creation, deep copied in and out
- Serializable to/from JSON
- Mode is never stored here (it is supplied per interaction cycle)
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional
import copy

from intake_engine.utils.helpers import generate_entity_id


class AssessmentStatus(str, Enum):
    """Authoring status of an assessment."""
    DRAFT = "draft"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Assessment:
    """
    One client's intake assessment.
    
    Attributes:
        id: Assessment identifier
        client_id: Client the assessment belongs to
        status: draft or completed
        version: Save counter (incremented by persistence at each save point)
        template_version: Version of the template the sections were authored
            against (informational, no migration)
        sections: section key -> field data, in template order
        completed_at: ISO date set by mark_completed
    """
    id: str
    client_id: str = ""
    status: AssessmentStatus = AssessmentStatus.DRAFT
    version: int = 0
    template_version: str = ""
    sections: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    completed_at: Optional[str] = None
    
    @staticmethod
    def new(client_id: str = "", template_version: str = "") -> "Assessment":
        """Blank draft with a generated id."""
        return Assessment(id=generate_entity_id(), client_id=client_id, template_version=template_version)
    
    def next_version(self) -> "Assessment":
        """Copy with the save counter incremented."""
        return replace(self, version=self.version + 1, sections=copy.deepcopy(self.sections))
    
    def to_json(self) -> dict:
        """
        Serialize to JSON-safe dict (deep copy).
        
        Returns:
            dict: Deep copy of the assessment
        """
        return {
            'id': self.id,
            'client_id': self.client_id,
            'status': self.status.value,
            'version': self.version,
            'template_version': self.template_version,
            'sections': copy.deepcopy(self.sections),
            'completed_at': self.completed_at,
        }
    
    @staticmethod
    def from_json(data: dict) -> "Assessment":
        """
        Deserialize from JSON dict.
        
        Deep copies so no external reference can mutate the assessment.
        
        Raises:
            ValueError: If 'id' is missing or status is not a known status
        """
        if not data.get('id'):
            raise ValueError("Assessment data missing 'id'")
        
        return Assessment(
            id=str(data['id']),
            client_id=str(data.get('client_id') or ""),
            status=AssessmentStatus(data.get('status', AssessmentStatus.DRAFT.value)),
            version=int(data.get('version', 0)),
            template_version=str(data.get('template_version') or ""),
            sections=copy.deepcopy(data.get('sections') or {}),
            completed_at=data.get('completed_at'),
        )
