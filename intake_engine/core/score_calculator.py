"""
Score Calculator - derived numeric summaries from section data

Responsibilities:
- Sum integer ratings across a list of items (compute_score)
- Evaluate declared score definitions (ADL, IADL, GDS-15) with their
  documented maximum, meaning and interpretation bands

Design principles:
- Pure, stateless: scores are computed on demand, never stored
- Tolerant of missing data: missing, boolean, non-numeric or non-finite
  ratings count as 0 (the floor value) instead of failing

Declared scores (see assessment_template.json):
- adl_total:  6 activities x max rating 2 = 12, higher = more independent
- iadl_total: 8 activities x max rating 2 = 16, higher = more independent
- gds_15:     15 yes/no items, 1 point per depression-indicative answer,
              max 15, higher = more depressive symptoms
"""

import logging
import math
from typing import Any, Dict, Iterable

from intake_engine.contracts import ScoreDefinition, ScoreResult

logger = logging.getLogger(__name__)


def rating_value(value: Any) -> int:
    """
    Integer rating stored in a field, or 0.
    
    Examples:
        >>> rating_value(2)
        2
        >>> rating_value(None)
        0
        >>> rating_value('2')
        0
        >>> rating_value(True)
        0
        >>> rating_value(float("nan"))
        0
    """
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return 0


def compute_score(data: Dict[str, Any], item_keys: Iterable[str]) -> int:
    """
    Sum the integer ratings stored at each item field.
    
    Args:
        data: Section snapshot
        item_keys: Fields to sum
        
    Returns:
        int: Total (0 for an empty snapshot)
    """
    return sum(rating_value(data.get(key)) for key in item_keys)


def indicative_count(data: Dict[str, Any], item_keys: Iterable[str], indicative_answers: Iterable[Any]) -> int:
    """One point per item whose answer equals its indicative answer (unanswered scores 0)."""
    return sum(
        1 for key, indicative in zip(item_keys, indicative_answers)
        if key in data and data[key] is not None and data[key] == indicative
    )


class ScoreCalculator:
    """Evaluates declared score definitions against section snapshots"""
    
    def __init__(self, config):
        """
        Args:
            config: EngineConfig with score definitions
        """
        self.config = config
        logger.info(f"Score Calculator initialized with {len(config.scores)} score definitions")
    
    def score(self, score_key: str, data: Dict[str, Any]) -> ScoreResult:
        """
        Compute one declared score.
        
        Args:
            score_key: Score definition key (e.g. 'adl_total')
            data: Snapshot of the definition's section
            
        Raises:
            ValueError: If score_key is not declared
        """
        definition = self.config.get_score(score_key)
        value = self.evaluate(definition, data)
        
        return ScoreResult(
            key=definition.key,
            label=definition.label,
            score=value,
            max_score=definition.max_score,
            higher_is=definition.higher_is,
            interpretation=definition.interpret(value),
        )
    
    @staticmethod
    def evaluate(definition: ScoreDefinition, data: Dict[str, Any]) -> int:
        if definition.method == "indicative_count":
            return indicative_count(data, definition.item_keys, definition.indicative_answers)
        return compute_score(data, definition.item_keys)
