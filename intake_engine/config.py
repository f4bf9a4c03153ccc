"""
Assessment template loading and validation.

The template is the static configuration the engine is constructed with:
- sections: ordered section schemas (field names and kinds)
- dependencies: conditional-dependency rules per section
- validation: declared validation rules per section
- entity_categories: sub-entity categories and their cardinality
- scores: score rollups with their documented maximum and meaning

There is no process-wide storage. Callers load an EngineConfig and pass it
into AssessmentEngine explicitly.

Design principles:
- Fail fast: every problem in the template is collected and raised at load
- Dependency tables must be acyclic (checked here, not at write time)
- Immutable after loading (frozen contracts, tuples)
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from intake_engine.contracts import (
    Cardinality,
    CategorySpec,
    DependencyRule,
    FieldSpec,
    ScoreDefinition,
    SectionSchema,
    ValidationRule,
)
from intake_engine.utils.conditions import condition_fields
from intake_engine.utils.field_values import VALID_KINDS, FieldKind

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_PATH = Path(__file__).parent / "data" / "assessment_template.json"

RULE_KINDS = {"required", "conditional_required", "format", "range"}
SCORE_METHODS = {"sum", "indicative_count"}


@dataclass(frozen=True)
class EngineConfig:
    """
    Validated assessment template.
    
    Attributes:
        version: Template version string (informational only, no migration)
        sections: Section schemas in questionnaire order
        dependencies: section key -> dependency rules in declaration order
        validation: section key -> validation rules in declaration order
        categories: section key -> sub-entity categories
        scores: score definitions in declaration order
    """
    version: str
    sections: Tuple[SectionSchema, ...]
    dependencies: Dict[str, Tuple[DependencyRule, ...]]
    validation: Dict[str, Tuple[ValidationRule, ...]]
    categories: Dict[str, Tuple[CategorySpec, ...]]
    scores: Tuple[ScoreDefinition, ...]
    
    # ========================
    # Lookups
    # ========================
    
    def section_keys(self) -> Tuple[str, ...]:
        return tuple(section.key for section in self.sections)
    
    def get_section(self, section_key: str) -> SectionSchema:
        """
        Raises:
            ValueError: If section_key is not declared
        """
        for section in self.sections:
            if section.key == section_key:
                return section
        raise ValueError(f"Section '{section_key}' does not exist")
    
    def get_category(self, section_key: str, category_key: str) -> Optional[CategorySpec]:
        for category in self.categories.get(section_key, ()):
            if category.key == category_key:
                return category
        return None
    
    def get_score(self, score_key: str) -> ScoreDefinition:
        """
        Raises:
            ValueError: If score_key is not declared
        """
        for score in self.scores:
            if score.key == score_key:
                return score
        raise ValueError(f"Score '{score_key}' does not exist")
    
    # ========================
    # Loading
    # ========================
    
    @staticmethod
    def from_file(template_path) -> "EngineConfig":
        """
        Load and validate a template JSON file.
        
        Raises:
            FileNotFoundError: If the template doesn't exist
            ValueError: If the template is invalid
        """
        path = Path(template_path)
        if not path.exists():
            raise FileNotFoundError(f"Assessment template not found: {template_path}")
        
        with open(path, 'r') as f:
            raw = json.load(f)
        
        config = EngineConfig.from_dict(raw)
        logger.info(
            f"Assessment template loaded: {path.name} "
            f"(version {config.version}, {len(config.sections)} sections)"
        )
        return config
    
    @staticmethod
    def from_dict(raw: Dict[str, Any]) -> "EngineConfig":
        """
        Build a config from a template dict.
        
        Raises:
            ValueError: If validation fails (message lists every problem)
        """
        errors: List[str] = []
        
        sections = _parse_sections(raw.get("sections"), errors)
        fields_by_section = {s.key: {f.name: f for f in s.fields} for s in sections}
        
        dependencies = _parse_dependencies(raw.get("dependencies", {}), fields_by_section, errors)
        validation = _parse_validation(raw.get("validation", {}), fields_by_section, errors)
        categories = _parse_categories(raw.get("entity_categories", {}), fields_by_section, errors)
        scores = _parse_scores(raw.get("scores", []), fields_by_section, errors)
        
        if errors:
            error_msg = "Template validation failed:\n  - " + "\n  - ".join(errors)
            raise ValueError(error_msg)
        
        return EngineConfig(
            version=str(raw.get("version", "unknown")),
            sections=sections,
            dependencies=dependencies,
            validation=validation,
            categories=categories,
            scores=scores,
        )


def load_default_config() -> EngineConfig:
    """Load the care-management intake template shipped with the package."""
    return EngineConfig.from_file(DEFAULT_TEMPLATE_PATH)


# ============================================================================
# Parsing helpers
# ============================================================================

def _parse_sections(raw_sections, errors: List[str]) -> Tuple[SectionSchema, ...]:
    if not raw_sections:
        errors.append("Missing 'sections' in template")
        return ()
    
    sections = []
    seen_keys = set()
    
    for i, raw_section in enumerate(raw_sections):
        key = raw_section.get("key")
        if not key:
            errors.append(f"Section at index {i} missing 'key'")
            continue
        if key in seen_keys:
            errors.append(f"Duplicate section key '{key}'")
            continue
        seen_keys.add(key)
        
        field_specs = []
        seen_fields = set()
        for j, raw_field in enumerate(raw_section.get("fields", [])):
            name = raw_field.get("name")
            kind = raw_field.get("kind")
            if not name:
                errors.append(f"Field at index {j} in section '{key}' missing 'name'")
                continue
            if name in seen_fields:
                errors.append(f"Duplicate field '{name}' in section '{key}'")
                continue
            if kind not in VALID_KINDS:
                errors.append(f"Field '{name}' in section '{key}' has invalid kind '{kind}'")
                continue
            seen_fields.add(name)
            field_specs.append(FieldSpec(name=name, kind=FieldKind(kind), label=raw_field.get("label")))
        
        sections.append(SectionSchema(
            key=key,
            label=raw_section.get("label", key),
            fields=tuple(field_specs),
        ))
    
    return tuple(sections)


def _check_condition(section_key, owner, dsl, section_fields, errors) -> None:
    try:
        referenced = condition_fields(dsl)
    except (ValueError, TypeError, IndexError) as e:
        errors.append(f"{owner} in section '{section_key}' has malformed condition: {e}")
        return
    
    for name in sorted(referenced):
        if name not in section_fields:
            errors.append(f"{owner} in section '{section_key}' references undefined field '{name}'")


def _parse_dependencies(raw, fields_by_section, errors) -> Dict[str, Tuple[DependencyRule, ...]]:
    dependencies = {}
    
    for section_key, raw_rules in raw.items():
        section_fields = fields_by_section.get(section_key)
        if section_fields is None:
            errors.append(f"Dependencies declared for undefined section '{section_key}'")
            continue
        
        rules = []
        for raw_rule in raw_rules:
            dependent = raw_rule.get("field")
            trigger = raw_rule.get("depends_on")
            when = raw_rule.get("when", {})
            owner = f"Dependency '{dependent}'"
            
            if dependent not in section_fields:
                errors.append(f"{owner} in section '{section_key}' is not a declared field")
                continue
            if trigger not in section_fields:
                errors.append(f"{owner} in section '{section_key}' depends on undefined field '{trigger}'")
                continue
            if dependent == trigger:
                errors.append(f"{owner} in section '{section_key}' depends on itself")
                continue
            
            _check_condition(section_key, owner, when, section_fields, errors)
            rules.append(DependencyRule(section_key=section_key, field=dependent, depends_on=trigger, when=when))
        
        cycle = find_dependency_cycle(rules)
        if cycle:
            errors.append(f"Dependency cycle in section '{section_key}': {' -> '.join(cycle)}")
        
        dependencies[section_key] = tuple(rules)
    
    return dependencies


def find_dependency_cycle(rules) -> Optional[List[str]]:
    """
    Find a cycle in trigger -> dependent edges.
    
    Returns:
        The cycle as a list of field names (first == last), or None
    """
    graph: Dict[str, List[str]] = {}
    for rule in rules:
        graph.setdefault(rule.depends_on, []).append(rule.field)
    
    visiting, done = set(), set()
    path: List[str] = []
    
    def visit(node):
        visiting.add(node)
        path.append(node)
        for nxt in graph.get(node, []):
            if nxt in visiting:
                return path[path.index(nxt):] + [nxt]
            if nxt not in done:
                found = visit(nxt)
                if found:
                    return found
        visiting.discard(node)
        done.add(node)
        path.pop()
        return None
    
    for start in list(graph):
        if start not in done:
            found = visit(start)
            if found:
                return found
    return None


def _parse_validation(raw, fields_by_section, errors) -> Dict[str, Tuple[ValidationRule, ...]]:
    validation = {}
    
    for section_key, raw_rules in raw.items():
        section_fields = fields_by_section.get(section_key)
        if section_fields is None:
            errors.append(f"Validation declared for undefined section '{section_key}'")
            continue
        
        rules = []
        for i, raw_rule in enumerate(raw_rules):
            kind = raw_rule.get("kind")
            name = raw_rule.get("field")
            owner = f"Rule {i} ('{kind}' on '{name}')"
            
            if kind not in RULE_KINDS:
                errors.append(f"{owner} in section '{section_key}' has unknown kind")
                continue
            if name not in section_fields:
                errors.append(f"{owner} in section '{section_key}' references undefined field")
                continue
            if kind == "conditional_required":
                if not raw_rule.get("when"):
                    errors.append(f"{owner} in section '{section_key}' missing 'when'")
                    continue
                _check_condition(section_key, owner, raw_rule["when"], section_fields, errors)
            if kind == "format" and not (raw_rule.get("one_of") or raw_rule.get("pattern")):
                errors.append(f"{owner} in section '{section_key}' needs 'one_of' or 'pattern'")
                continue
            if kind == "range" and raw_rule.get("min") is None and raw_rule.get("max") is None:
                errors.append(f"{owner} in section '{section_key}' needs 'min' or 'max'")
                continue
            
            one_of = raw_rule.get("one_of")
            rules.append(ValidationRule(
                kind=kind,
                field=name,
                message=raw_rule.get("message"),
                when=raw_rule.get("when"),
                one_of=tuple(one_of) if one_of else None,
                pattern=raw_rule.get("pattern"),
                min=raw_rule.get("min"),
                max=raw_rule.get("max"),
            ))
        
        validation[section_key] = tuple(rules)
    
    return validation


def _parse_categories(raw, fields_by_section, errors) -> Dict[str, Tuple[CategorySpec, ...]]:
    categories = {}
    
    for section_key, raw_categories in raw.items():
        section_fields = fields_by_section.get(section_key)
        if section_fields is None:
            errors.append(f"Entity categories declared for undefined section '{section_key}'")
            continue
        
        specs = []
        for raw_category in raw_categories:
            key = raw_category.get("key")
            spec = section_fields.get(key)
            if spec is None:
                errors.append(f"Category '{key}' in section '{section_key}' is not a declared field")
                continue
            if spec.kind != FieldKind.ENTITY_LIST:
                errors.append(f"Category '{key}' in section '{section_key}' must be an entity_list field")
                continue
            cardinality = raw_category.get("cardinality", "multiple")
            if cardinality not in {c.value for c in Cardinality}:
                errors.append(f"Category '{key}' in section '{section_key}' has invalid cardinality '{cardinality}'")
                continue
            specs.append(CategorySpec(
                key=key,
                label=raw_category.get("label", key),
                cardinality=Cardinality(cardinality),
                required=bool(raw_category.get("required", False)),
            ))
        
        categories[section_key] = tuple(specs)
    
    # Every entity_list field needs a category (cardinality must be known)
    for section_key, section_fields in fields_by_section.items():
        declared = {spec.key for spec in categories.get(section_key, ())}
        for name, spec in section_fields.items():
            if spec.kind == FieldKind.ENTITY_LIST and name not in declared:
                errors.append(f"Entity list '{name}' in section '{section_key}' has no category declaration")
    
    return categories


def _parse_scores(raw_scores, fields_by_section, errors) -> Tuple[ScoreDefinition, ...]:
    scores = []
    seen = set()
    
    for raw_score in raw_scores:
        key = raw_score.get("key")
        section_key = raw_score.get("section")
        item_keys = tuple(raw_score.get("item_keys", []))
        method = raw_score.get("method", "sum")
        
        if not key or key in seen:
            errors.append(f"Score key missing or duplicated: '{key}'")
            continue
        seen.add(key)
        
        section_fields = fields_by_section.get(section_key)
        if section_fields is None:
            errors.append(f"Score '{key}' references undefined section '{section_key}'")
            continue
        if not item_keys:
            errors.append(f"Score '{key}' has no item_keys")
            continue
        missing = [name for name in item_keys if name not in section_fields]
        if missing:
            errors.append(f"Score '{key}' references undefined fields {missing}")
            continue
        if method not in SCORE_METHODS:
            errors.append(f"Score '{key}' has unknown method '{method}'")
            continue
        
        indicative = raw_score.get("indicative_answers")
        if method == "indicative_count" and (not indicative or len(indicative) != len(item_keys)):
            errors.append(f"Score '{key}' needs one indicative answer per item")
            continue
        
        scores.append(ScoreDefinition(
            key=key,
            section_key=section_key,
            label=raw_score.get("label", key),
            item_keys=item_keys,
            max_rating=1 if method == "indicative_count" else int(raw_score.get("max_rating", 1)),
            higher_is=raw_score.get("higher_is", ""),
            method=method,
            indicative_answers=tuple(indicative) if indicative else None,
            bands=tuple(tuple(band) for band in raw_score.get("bands", [])),
        ))
    
    return tuple(scores)
