"""
Resource directory collaborator for sub-entity promotion.

The Sub-Entity Manager forwards saved providers that have a name and a
phone number to a resource directory. The engine only needs an object with
a callable promote(record, category_label); the return value is ignored and
failures are logged by the caller, never propagated.

LoggingResourceDirectory is the default collaborator: it logs each promotion
and keeps them in memory so a presentation layer (or a test) can show what
was forwarded.
"""

import logging
from typing import List, Tuple

from intake_engine.contracts import Provider

logger = logging.getLogger(__name__)


class LoggingResourceDirectory:
    """In-memory directory that records promotions"""
    
    def __init__(self):
        self.promoted: List[Tuple[str, Provider]] = []
    
    def promote(self, record: Provider, category_label: str) -> None:
        """
        Record a promoted provider.
        
        Args:
            record: Saved provider
            category_label: Label of the category it was saved under
        """
        self.promoted.append((category_label, record))
        logger.info(f"Promoted to resource directory: {record.display_name} ({category_label})")
