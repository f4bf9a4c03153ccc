"""
Conditional Resolver - dependent-field clearing after every write

Responsibilities:
- Hold the static dependency table ("field B is only meaningful while
  condition on field A holds"), keyed by trigger field
- After a write, compute which dependent fields must be cleared

Design principles:
- Stateless between calls: all state comes from the data passed in
- Deterministic: dependents processed in declaration order, breadth-first
- One pass per triggering write; multi-hop chains (A -> B -> C) are followed
  inside that pass, each dependent visited at most once
- Never writes: returns the clears, the Field Store applies them through its
  normal write path (same gate, same audit hook)
- Acyclic tables are guaranteed by EngineConfig at load time
"""

import logging
from collections import deque
from typing import Any, Dict, List, Tuple

from intake_engine.contracts import DependencyRule
from intake_engine.utils.conditions import evaluate_condition
from intake_engine.utils.field_values import empty_value
from intake_engine.utils.helpers import is_empty_value

logger = logging.getLogger(__name__)


class ConditionalResolver:
    """
    Computes dependent-field clears for a section write.
    
    Example (cognitive section):
        memory_concerns: True, memory_concerns_frequency: 'Often'
        write memory_concerns = False
        on_field_changed(...) -> [('memory_concerns_frequency', '')]
    """
    
    def __init__(self, config):
        """
        Build trigger-keyed lookup tables from the template.
        
        Args:
            config: EngineConfig (dependency tables already validated acyclic)
        """
        self._rules_by_trigger: Dict[str, Dict[str, List[DependencyRule]]] = {}
        for section_key, rules in config.dependencies.items():
            table: Dict[str, List[DependencyRule]] = {}
            for rule in rules:
                table.setdefault(rule.depends_on, []).append(rule)
            self._rules_by_trigger[section_key] = table
        
        self._kinds = {
            section.key: {spec.name: spec.kind for spec in section.fields}
            for section in config.sections
        }
        
        rule_count = sum(len(rules) for rules in config.dependencies.values())
        logger.info(f"Conditional Resolver initialized with {rule_count} dependency rules")
    
    def dependents_of(self, section_key: str, field: str) -> Tuple[DependencyRule, ...]:
        """Rules whose trigger is `field`, in declaration order."""
        return tuple(self._rules_by_trigger.get(section_key, {}).get(field, ()))
    
    def on_field_changed(self, section_key: str, field: str, data: Dict[str, Any]) -> List[Tuple[str, Any]]:
        """
        Compute the clears caused by a write to `field`.
        
        Args:
            section_key: Section the write landed in
            field: Field that was written
            data: Section data AFTER the write (not modified)
            
        Returns:
            list: (dependent_field, empty_value) pairs in the order they must
            be applied. Dependents that are already empty are not listed,
            but their own dependents are still checked.
        """
        table = self._rules_by_trigger.get(section_key)
        if not table or field not in table:
            return []
        
        working = dict(data)
        clears: List[Tuple[str, Any]] = []
        visited = set()
        queue = deque([field])
        
        while queue:
            trigger = queue.popleft()
            for rule in table.get(trigger, ()):
                if rule.field in visited:
                    continue
                if evaluate_condition(rule.when, working):
                    continue
                
                visited.add(rule.field)
                queue.append(rule.field)
                
                if is_empty_value(working.get(rule.field)):
                    continue
                
                cleared = empty_value(self._kinds[section_key][rule.field])
                working[rule.field] = cleared
                clears.append((rule.field, cleared))
                logger.debug(
                    f"{section_key}: '{rule.field}' cleared "
                    f"('{trigger}' no longer satisfies its condition)"
                )
        
        return clears
