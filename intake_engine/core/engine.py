"""
Assessment Engine - coordinator for one assessment

Responsibilities:
- Wire the components around one Field Store:
  Mode Gate -> Field Store -> Conditional Resolver (write path)
  Validator / Score Calculator (snapshot readers)
  Sub-Entity Managers (one per section that declares categories)
- Expose the inbound operations to a presentation layer
- Keep the audit log of every committed field change
- Status transition to completed once every section validates clean
- Export a read-only view for view/print rendering

Design principles:
- Thin orchestration layer (business logic in the components)
- Configuration passed in explicitly, no module-level tables
- Synchronous, single-threaded: every call completes before it returns
- Assessment in, Assessment out (to_assessment); persistence is the
  caller's job at explicit save points
"""

import logging
from dataclasses import asdict, replace
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from intake_engine.assessment import Assessment, AssessmentStatus
from intake_engine.contracts import FieldChange, ScoreResult, ValidationError
from intake_engine.core.conditional_resolver import ConditionalResolver
from intake_engine.core.field_store import FieldStore
from intake_engine.core.mode_gate import Mode, ModeGate
from intake_engine.core.score_calculator import ScoreCalculator, compute_score
from intake_engine.core.sub_entity_manager import SubEntityManager
from intake_engine.core.validator import SectionValidator
from intake_engine.results import AssessmentCompleted, MutationDenied, ValidationFailure
from intake_engine.utils.resource_directory import LoggingResourceDirectory

logger = logging.getLogger(__name__)


class AssessmentEngine:
    """
    Owns the components for one assessment.
    
    Example:
        engine = AssessmentEngine(load_default_config())
        engine.update_field('cognitive', 'memory_concerns', True)
        providers = engine.entities('care_providers')
        providers.add('primary_care_provider')
    """
    
    def __init__(self, config, assessment: Optional[Assessment] = None,
                 directory=None, mode: Mode = Mode.EDIT):
        """
        Initialize engine for one assessment.
        
        Args:
            config: EngineConfig (template)
            assessment: Stored assessment to continue (None starts a new draft)
            directory: Resource directory collaborator with promote(); defaults
                to LoggingResourceDirectory
            mode: Initial mode
            
        Raises:
            ValueError: If mode is not a valid mode string
            TypeError: If directory has no callable promote() method
        """
        self.config = config
        
        if assessment is None:
            assessment = Assessment.new(template_version=config.version)
        elif assessment.template_version and assessment.template_version != config.version:
            logger.warning(
                f"Assessment {assessment.id} was authored against template "
                f"{assessment.template_version}, loaded with {config.version}"
            )
        self._assessment = replace(assessment, sections={})
        
        self.gate = ModeGate(mode)
        self.resolver = ConditionalResolver(config)
        self.validator = SectionValidator(config)
        self.calculator = ScoreCalculator(config)
        self.store = FieldStore(config, self.gate, self.resolver, sections=assessment.sections)
        
        self.audit_log: List[FieldChange] = []
        self.store.add_audit_hook(self.audit_log.append)
        
        self.directory = directory if directory is not None else LoggingResourceDirectory()
        self._managers: Dict[str, SubEntityManager] = {
            section_key: SubEntityManager(self.store, section_key, self.gate, self.directory)
            for section_key in config.categories
        }
        
        logger.info(
            f"Assessment Engine initialized: {assessment.id} "
            f"({assessment.status.value}, mode={self.gate.mode.value})"
        )
    
    # ========================
    # Mode
    # ========================
    
    @property
    def mode(self) -> Mode:
        return self.gate.mode
    
    def set_mode(self, mode: Mode) -> None:
        """
        Switch capability context for the next interaction cycle.
        
        Leaving EDIT discards open sub-entity sessions and pending removals.
        
        Raises:
            ValueError: If mode is not a valid mode string
        """
        self.gate.set_mode(mode)
    
    # ========================
    # Writes (delegated to the Field Store)
    # ========================
    
    def update_field(self, section_key: str, field: str, value: Any):
        """
        Returns:
            MutationApplied | MutationDenied | CardinalityViolation
        """
        return self.store.update_field(section_key, field, value)
    
    def update_section(self, section_key: str, partial_data: Dict[str, Any]):
        """
        Returns:
            MutationApplied | MutationDenied | CardinalityViolation
        """
        return self.store.update_section(section_key, partial_data)
    
    def load_section(self, section_key: str, data: Dict[str, Any]):
        """
        Returns:
            MutationApplied | MutationDenied | CardinalityViolation
        """
        return self.store.load_section(section_key, data)
    
    # ========================
    # Reads
    # ========================
    
    def snapshot(self, section_key: str) -> Dict[str, Any]:
        return self.store.snapshot(section_key)
    
    def entities(self, section_key: str) -> SubEntityManager:
        """
        Sub-Entity Manager for a section.
        
        Raises:
            ValueError: If the section declares no entity categories
        """
        manager = self._managers.get(section_key)
        if manager is None:
            raise ValueError(f"Section '{section_key}' has no entity categories")
        return manager
    
    @property
    def schema_drift(self):
        return list(self.store.schema_drift)
    
    # ========================
    # Validation
    # ========================
    
    def validate(self, section_key: str) -> List[ValidationError]:
        """
        Validate one section. Pure: never writes, safe to repeat.
        
        Malformed entity lists are recorded as schema drift and validated
        as empty.
        """
        data = self.store.snapshot(section_key)
        for category in self.config.categories.get(section_key, ()):
            self.store.read_entity_list(section_key, category.key)
        return self.validator.validate(section_key, data)
    
    def validate_all(self) -> Dict[str, List[ValidationError]]:
        """
        Validate every section.
        
        Returns:
            dict: section key -> errors, only for sections with errors
        """
        results = {}
        for section_key in self.config.section_keys():
            errors = self.validate(section_key)
            if errors:
                results[section_key] = errors
        return results
    
    def completion_percentage(self, section_key: str) -> int:
        return self.validator.completion_percentage(section_key, self.store.snapshot(section_key))
    
    def overall_completion(self) -> int:
        """Mean of the section completion percentages (0-100)."""
        keys = self.config.section_keys()
        if not keys:
            return 0
        total = sum(self.completion_percentage(key) for key in keys)
        return round(total / len(keys))
    
    # ========================
    # Scores
    # ========================
    
    def compute_score(self, section_key: str, item_keys: Iterable[str]) -> int:
        """Sum of the integer ratings at item_keys in a section."""
        return compute_score(self.store.snapshot(section_key), item_keys)
    
    def score(self, score_key: str) -> ScoreResult:
        """
        Raises:
            ValueError: If score_key is not declared
        """
        definition = self.config.get_score(score_key)
        return self.calculator.score(score_key, self.store.snapshot(definition.section_key))
    
    def scores(self) -> List[ScoreResult]:
        """All declared scores, in declaration order."""
        return [self.score(definition.key) for definition in self.config.scores]
    
    # ========================
    # Status
    # ========================
    
    def mark_completed(self, completed_at: Optional[str] = None):
        """
        Move the assessment to completed.
        
        Args:
            completed_at: ISO date (defaults to today)
            
        Returns:
            AssessmentCompleted | ValidationFailure | MutationDenied
        """
        if not self.gate.can_mutate():
            logger.warning(f"mark_completed denied in {self.gate.mode.value} mode")
            return MutationDenied(operation="mark_completed", mode=self.gate.mode.value)
        
        errors = self.validate_all()
        if errors:
            flattened = tuple(error for section_errors in errors.values() for error in section_errors)
            logger.info(f"Assessment {self._assessment.id} not completed: {len(flattened)} errors")
            return ValidationFailure(errors=flattened)
        
        completed_at = completed_at or date.today().isoformat()
        self._assessment = replace(
            self._assessment,
            status=AssessmentStatus.COMPLETED,
            completed_at=completed_at,
        )
        logger.info(f"Assessment {self._assessment.id} completed on {completed_at}")
        return AssessmentCompleted(completed_at=completed_at)
    
    @property
    def assessment_id(self) -> str:
        return self._assessment.id
    
    @property
    def status(self) -> AssessmentStatus:
        return self._assessment.status
    
    def record_save_point(self, saved: Assessment) -> None:
        """Adopt the version number persistence assigned at a save point."""
        if saved.id != self._assessment.id:
            raise ValueError(f"Save point belongs to {saved.id}, not {self._assessment.id}")
        self._assessment = replace(self._assessment, version=saved.version)
    
    # ========================
    # Export
    # ========================
    
    def to_assessment(self) -> Assessment:
        """
        Current state as an Assessment (deep copy).
        
        client_id follows the 'client_id' field of the first section that
        declares one, once it is filled.
        """
        client_id = self._assessment.client_id
        for section in self.config.sections:
            if 'client_id' in section.field_names():
                client_id = self.store.get_field(section.key, 'client_id') or client_id
                break
        
        return replace(self._assessment, client_id=client_id, sections=self.store.export_sections())
    
    def export_view(self) -> Dict[str, Any]:
        """
        Read-only rendering payload for view/print.
        
        Available in every mode.
        
        Returns:
            dict with keys:
                - assessment: id, client_id, status, completed_at
                - mode: current mode string
                - sections: [{key, label, data, completion}, ...] in template order
                - scores: [ScoreResult as dict, ...]
                - providers: {section key: [{category, entries}, ...]}
                - overall_completion: int
        """
        assessment = self.to_assessment()
        
        sections = []
        for section in self.config.sections:
            sections.append({
                'key': section.key,
                'label': section.label,
                'data': assessment.sections.get(section.key, {}),
                'completion': self.completion_percentage(section.key),
            })
        
        providers = {}
        for section_key, manager in self._managers.items():
            providers[section_key] = [
                {'category': label, 'entries': [record.to_dict() for record in records]}
                for label, records in manager.all_entries()
            ]
        
        return {
            'assessment': {
                'id': assessment.id,
                'client_id': assessment.client_id,
                'status': assessment.status.value,
                'completed_at': assessment.completed_at,
            },
            'mode': self.gate.mode.value,
            'sections': sections,
            'scores': [asdict(result) for result in self.scores()],
            'providers': providers,
            'overall_completion': self.overall_completion(),
        }
