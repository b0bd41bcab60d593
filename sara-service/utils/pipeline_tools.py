import json
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List

INVALID_PIPELINE_FORMAT = "Invalid aggregation pipeline format"

_LEADING_FENCE = re.compile(r"^```[A-Za-z]*\s*")
_DATE_OPERATORS = ("$gte", "$gt", "$lt", "$lte")


class PipelineFormatError(ValueError):
    """Raised when generated text is not a JSON array of stage objects."""


def clean_generated_text(text: str) -> str:
    """
    Strip the wrapping LLMs tend to add around a pipeline.

    Removes a leading ``sql`` token and markdown code fences.
    """
    cleaned = (text or "").strip()
    if cleaned.lower().startswith("sql"):
        cleaned = cleaned[3:].strip()
    if cleaned.startswith("```"):
        cleaned = _LEADING_FENCE.sub("", cleaned, count=1).strip()
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3].strip()
    return cleaned


def parse_pipeline(pipeline_text: str) -> List[Dict[str, Any]]:
    """
    Parse pipeline text into a list of stage mappings.

    Raises:
        PipelineFormatError: if the text is not a JSON array of objects.
    """
    try:
        stages = json.loads(pipeline_text)
    except (TypeError, ValueError) as e:
        raise PipelineFormatError(INVALID_PIPELINE_FORMAT) from e

    if not isinstance(stages, list) or not all(isinstance(s, dict) for s in stages):
        raise PipelineFormatError(INVALID_PIPELINE_FORMAT)
    return stages


def _parse_date(value: str) -> Any:
    """Parse an ISO date string; return the original value if it isn't one."""
    date_str = value
    if date_str.endswith("Z"):
        date_str = date_str[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(date_str)
    except ValueError:
        return value


def coerce_match_dates(stages: List[Dict[str, Any]], date_fields: Iterable[str]) -> List[Dict[str, Any]]:
    """
    Convert string bounds on date fields inside ``$match`` stages to datetimes.

    Every other stage, including ``$group`` accumulators such as
    ``{"$sum": {"$toDouble": ...}}``, passes through untouched.
    """
    fields = list(date_fields)
    for stage in stages:
        match = stage.get("$match")
        if not isinstance(match, dict):
            continue
        for field in fields:
            condition = match.get(field)
            if not isinstance(condition, dict):
                continue
            for op in _DATE_OPERATORS:
                if isinstance(condition.get(op), str):
                    condition[op] = _parse_date(condition[op])
    return stages


def has_count_stage(stages: List[Dict[str, Any]]) -> bool:
    return any("$count" in stage for stage in stages)


def format_pipeline_for_display(stages: Any) -> str:
    """Pretty-print a pipeline for logs and API responses."""
    try:
        return json.dumps(stages, indent=2, default=str)
    except (TypeError, ValueError):
        return str(stages)
