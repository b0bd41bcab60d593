import re
from typing import Callable, List, Tuple

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")

QueryRule = Tuple[str, Callable[[str], bool]]

# Evaluated in order; the first matching rule wins.
QUERY_TYPE_RULES: List[QueryRule] = [
    ("correlation", lambda q: "correlation" in q or "relationship" in q),
    ("department_comparison", lambda q: "department" in q and "compare" in q),
    ("ranking", lambda q: "top" in q or "best" in q or "highest" in q),
    ("aggregation", lambda q: "average" in q or "mean" in q),
    ("conditional_filtering", lambda q: "staff" in q and ("more than" in q or "above" in q)),
    ("grouping", lambda q: "group" in q or "by experience" in q),
    ("trend_analysis", lambda q: "drop" in q or "decrease" in q),
]

DEFAULT_QUERY_TYPE = "general_analysis"


class QueryProcessor:
    """
    Lightweight keyword analysis of user questions.

    Everything here is plain string matching: no models, no downloads.
    """

    def __init__(self, rules: List[QueryRule] = None):
        self.rules = rules or QUERY_TYPE_RULES

    def tokenize(self, text: str) -> List[str]:
        """Lowercase and split on runs of non-alphanumeric characters."""
        return [t for t in _TOKEN_SPLIT.split(str(text).lower()) if t]

    def classify(self, query: str) -> str:
        q = (query or "").lower()
        for query_type, matches in self.rules:
            if matches(q):
                return query_type
        return DEFAULT_QUERY_TYPE


# Global processor instance
processor = QueryProcessor()


def classify_query(query: str) -> str:
    return processor.classify(query)


def tokenize(text: str) -> List[str]:
    return processor.tokenize(text)
