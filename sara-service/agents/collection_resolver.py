import logging
from typing import Dict, List, Optional, Sequence, Tuple

from config import settings

logger = logging.getLogger(__name__)

RoutingRule = Tuple[str, Sequence[str]]


class CollectionResolver:
    """
    Pick the target collection for a question by keyword substring.

    Rules are checked in order and the first keyword hit wins. This is a
    heuristic: a pipeline generated against another collection's fields will
    fail or come back empty.
    """

    def __init__(self, rules: Sequence[RoutingRule], default: str):
        self.rules: List[RoutingRule] = [(name, [k.lower() for k in keywords]) for name, keywords in rules]
        self.default = default

    @classmethod
    def from_settings(cls, routes: Optional[Dict[str, List[str]]] = None,
                      default: Optional[str] = None) -> "CollectionResolver":
        routes = settings.collection_routes if routes is None else routes
        return cls(list(routes.items()), default or settings.default_collection)

    def resolve(self, question: str) -> str:
        lowered = (question or "").lower()
        for collection, keywords in self.rules:
            if any(keyword in lowered for keyword in keywords):
                logger.debug("Routing question to '%s'", collection)
                return collection
        return self.default
