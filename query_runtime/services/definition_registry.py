import time
from typing import Callable, Dict, Iterable, List, Optional
import structlog

from query_runtime.models import QueryDefinition

logger = structlog.get_logger()


class DefinitionRegistry:
    """
    Catalog of known query definitions, in fetch order.

    The primary provider replaces the catalog wholesale; secondary providers
    (e.g. Graph API definitions) only add ids that are not known yet. A failed
    fetch leaves the last good catalog in place.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.by_id: Dict[str, QueryDefinition] = {}
        self.ids: List[str] = []
        self.loading = False
        self.error: Optional[str] = None
        self.last_fetch: Optional[float] = None
        self._clock = clock

    def mark_loading(self) -> None:
        self.loading = True
        self.error = None

    def record_error(self, message: str) -> None:
        self.loading = False
        self.error = message
        logger.warning("Definition fetch failed", error=message, retained=len(self.ids))

    def replace_all(self, definitions: Iterable[QueryDefinition]) -> None:
        by_id: Dict[str, QueryDefinition] = {}
        ids: List[str] = []
        for definition in definitions:
            if definition.id not in by_id:
                ids.append(definition.id)
            by_id[definition.id] = definition

        self.by_id = by_id
        self.ids = ids
        self._fetched()
        logger.info("Query definitions loaded", count=len(ids))

    def merge_in(self, definitions: Iterable[QueryDefinition]) -> int:
        """Add definitions whose ids are not yet present. Returns how many were added."""
        added = 0
        for definition in definitions:
            if definition.id in self.by_id:
                continue
            self.by_id[definition.id] = definition
            self.ids.append(definition.id)
            added += 1

        self._fetched()
        logger.info("Query definitions merged", added=added, total=len(self.ids))
        return added

    def get(self, definition_id: str) -> Optional[QueryDefinition]:
        return self.by_id.get(definition_id)

    def all(self) -> List[QueryDefinition]:
        return [self.by_id[definition_id] for definition_id in self.ids]

    def data_sources(self) -> List[str]:
        return sorted({definition.data_source for definition in self.by_id.values()})

    def clear(self) -> None:
        self.by_id = {}
        self.ids = []
        self.loading = False
        self.error = None
        self.last_fetch = None

    def __len__(self) -> int:
        return len(self.ids)

    def __contains__(self, definition_id: object) -> bool:
        return definition_id in self.by_id

    def _fetched(self) -> None:
        self.loading = False
        self.error = None
        self.last_fetch = self._clock()
