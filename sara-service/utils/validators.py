import re
from typing import Any, Dict, List, Tuple
from config import settings
from models import ValidationResult

MIN_QUERY_LENGTH = 3
LONG_QUERY_WARNING_LENGTH = 5000

# (pattern, label) - label is reported back to the user
DESTRUCTIVE_PATTERNS: List[Tuple[str, str]] = [
    (r"\bdrop\s+table\b", "DROP TABLE"),
    (r"\bdelete\s+from\b", "DELETE FROM"),
    (r"\btruncate\b", "TRUNCATE"),
    (r"\balter\s+table\b", "ALTER TABLE"),
    (r"\bcreate\s+table\b", "CREATE TABLE"),
    (r"\binsert\s+into\b", "INSERT INTO"),
    (r"\bupdate\s+[\w.\[\]\"]+\s+set\b", "UPDATE ... SET"),
    (r"\bgrant\b", "GRANT"),
    (r"\brevoke\b", "REVOKE"),
    (r"\bexec\s*\(", "EXEC("),
    (r"\b(?:sp|xp)_\w+", "stored procedure call"),
    (r"--.*\b(?:drop|delete|truncate|alter|create|insert|update|grant|revoke|exec)\b", "SQL command in comment"),
]

INJECTION_PATTERNS: List[Tuple[str, str]] = [
    (r"\bunion\s+(?:all\s+)?select\b", "UNION SELECT"),
    (r"\bor\s+1\s*=\s*1\b", "OR 1=1"),
    (r"'\s*;\s*--", "'; --"),
    (r"/\*.*?\*/", "block comment"),
    (r"\bwaitfor\s+delay\b", "WAITFOR DELAY"),
]

NONSENSE_WORDS = [
    "asdf", "qwerty", "test", "lol", "blah", "foo", "xyz", "hmm",
    "idk", "whatever", "gibberish", "lorem", "ipsum", "jkl", "zzz",
]

DOMAIN_VOCABULARY = [
    "gift", "donor", "donat", "constituent", "address", "amount", "total",
    "average", "mean", "sum", "count", "number", "how many", "year", "month",
    "date", "top", "highest", "lowest", "most", "least", "appeal", "designation",
    "fund", "campaign", "payment", "source", "unit", "purpose", "giving",
    "alumni", "gender", "age", "volunteer", "wealth", "city", "state", "country",
    "staff", "department", "satisfaction", "experience", "overtime", "salary",
    "correlation", "relationship", "trend", "compare", "list", "show", "by",
]

SQL_KEYWORDS = r"\b(?:select|from|where|join|group by|order by|having|limit|offset)\b"
NATURAL_LANGUAGE_MARKERS = r"\b(?:show me|find|get)\b"

KEYBOARD_ROWS = ["qwertyuiop", "asdfghjkl", "zxcvbnm"]
KEYBOARD_WALK_LENGTH = 6

# Pipeline operators that write data or run server-side code
DANGEROUS_PIPELINE_OPERATORS = [
    "$out",
    "$merge",
    "$where",
    "$function",
    "$accumulator",
    "$eval",
    "$drop",
    "$dropDatabase",
]


def _dedupe(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


def _keyboard_position(char: str) -> Tuple[int, int]:
    for row_index, row in enumerate(KEYBOARD_ROWS):
        col = row.find(char)
        if col >= 0:
            return row_index, col
    return -1, -1


def _has_keyboard_walk(letters: str, min_length: int = KEYBOARD_WALK_LENGTH) -> bool:
    """True if ``letters`` has a run of horizontally adjacent keys (e.g. ``qwerty``)."""
    run = 1
    for prev, curr in zip(letters, letters[1:]):
        prev_row, prev_col = _keyboard_position(prev)
        curr_row, curr_col = _keyboard_position(curr)
        if prev_row >= 0 and prev_row == curr_row and abs(prev_col - curr_col) == 1:
            run += 1
            if run >= min_length:
                return True
        else:
            run = 1
    return False


def _detect_gibberish(text: str) -> str:
    """Return the first gibberish reason found, or an empty string."""
    lowered = text.lower()
    compact = re.sub(r"\s+", "", lowered)

    if re.fullmatch(r"(.{1,2})\1+", compact):
        return "Query is just a repeated character pattern"
    if re.fullmatch(r"(\w+)(?:\s+\1){2,}", lowered):
        return "Query is a single word repeated"
    if re.fullmatch(r"\d+", compact):
        return "Query contains only numbers"
    if re.fullmatch(r"[^\w]+", compact):
        return "Query contains only punctuation"
    if not re.search(r"[a-z]", compact):
        return "Query does not contain any letters"
    if re.fullmatch(r"[aeiou]+", compact):
        return "Query contains only vowels"
    if re.fullmatch(r"[bcdfghjklmnpqrstvwxz]+", compact):
        return "Query contains only consonants"
    for word in re.findall(r"[a-z]+", lowered):
        if _has_keyboard_walk(word) or re.search(r"([a-z]{3,5})\1{2,}", word):
            return "Query looks like keyboard mashing or a repeated letter run"
    return ""


def validate_natural_query(query: str) -> ValidationResult:
    """
    Validate a natural language question before it reaches the LLM or database.

    Returns:
        ValidationResult with deduplicated errors and warnings.
    """
    text = (query or "").strip()
    if not text:
        return ValidationResult(is_valid=False, errors=["Query cannot be empty"])
    if len(text) < MIN_QUERY_LENGTH:
        return ValidationResult(
            is_valid=False,
            errors=[f"Query must be at least {MIN_QUERY_LENGTH} characters long"]
        )

    errors: List[str] = []
    warnings: List[str] = []
    lowered = text.lower()

    for pattern, label in DESTRUCTIVE_PATTERNS:
        if re.search(pattern, lowered, re.DOTALL):
            errors.append(f"Query contains a destructive SQL command ({label}) and cannot be processed")

    for pattern, label in INJECTION_PATTERNS:
        if re.search(pattern, lowered, re.DOTALL):
            errors.append(f"Query contains a potential SQL injection pattern ({label})")

    gibberish = _detect_gibberish(text)
    if gibberish:
        errors.append(gibberish)

    nonsense_hits = [w for w in NONSENSE_WORDS if re.search(rf"\b{w}\b", lowered)]
    if nonsense_hits and len(text) > 5:
        errors.append(f"Query contains placeholder or nonsense words ({', '.join(nonsense_hits)})")

    if len(text.split()) < 2:
        errors.append("Please enter a complete question (at least 2 words)")

    if len(text) > LONG_QUERY_WARNING_LENGTH:
        warnings.append(f"Query is very long ({len(text)} characters); results may be less accurate")
    if re.search(r"(.)\1{20,}", text):
        warnings.append("Query contains a long run of repeated characters")
    if re.search(SQL_KEYWORDS, lowered) and not re.search(NATURAL_LANGUAGE_MARKERS, lowered):
        warnings.append("Query looks like raw SQL; try asking it as a question instead")
    if len(text) > 10 and not nonsense_hits and not any(word in lowered for word in DOMAIN_VOCABULARY):
        warnings.append("Query may not relate to the available gift, donor or address data")

    errors = _dedupe(errors)
    return ValidationResult(is_valid=not errors, errors=errors, warnings=_dedupe(warnings))


def validate_pipeline_safety(stages: Any) -> Tuple[bool, str]:
    """
    Validate an aggregation pipeline for dangerous operators.

    Returns:
        tuple: (is_safe, error_message)
    """
    def walk(node: Any):
        if isinstance(node, dict):
            for key, value in node.items():
                yield key
                yield from walk(value)
        elif isinstance(node, list):
            for item in node:
                yield from walk(item)

    blocked = {op.lower() for op in DANGEROUS_PIPELINE_OPERATORS}
    for key in walk(stages):
        if isinstance(key, str) and key.lower() in blocked:
            return False, f"Dangerous operation '{key}' is not allowed"

    return True, ""


def check_query_length(query: str) -> Tuple[bool, str]:
    if len(query) > settings.max_query_length:
        return False, f"Query cannot exceed {settings.max_query_length} characters"
    return True, ""


def sanitize_query(query: str) -> str:
    """
    Sanitize natural language query by removing potentially harmful characters.
    """
    # Remove control characters (tabs and newlines become spaces)
    query = re.sub(r'[\t\n\r]', ' ', query)
    query = re.sub(r'[\x00-\x1f\x7f-\x9f]', '', query)

    # Trim whitespace
    query = query.strip()

    return query
