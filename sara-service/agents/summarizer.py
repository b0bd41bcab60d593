"""Natural-language summaries of query results.

Two paths: an LLM summary built from per-column insights, and a rule-based
fallback that needs no model. The LLM path is off unless
``enable_ai_summary`` is set.
"""

import logging
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from config import settings
from models import CategoricalInsight, NumericInsight, ResultAnalysis
from services.llm_service import CompletionError, complete
from agents.prompts import SUMMARY_SYSTEM_PROMPT, build_summary_prompt
from utils.formatting import column_keys, pretty, row_keys
from utils.nlp_processor import classify_query
from utils.statistics import (
    compute_correlation,
    compute_slope,
    correlation_strength,
    median,
    numeric_pairs,
    numeric_values,
)

logger = logging.getLogger(__name__)

CLOSING_NOTES = {
    "correlation": (
        "Keep in mind that correlation does not imply causation; other factors "
        "may also influence this relationship."
    ),
    "aggregation": (
        "These averages describe the overall pattern across the analyzed records; "
        "individual values may vary considerably."
    ),
}


def _fmt(value: float) -> str:
    return f"{value:g}" if float(value).is_integer() else f"{value:.2f}"


def find_column(keys: Sequence[str], hints: Sequence[str], exclude: Optional[str] = None) -> Optional[str]:
    """Exact (case-insensitive) hint matches first, then substring matches."""
    candidates = [k for k in keys if k != exclude]
    for hint in hints:
        for key in candidates:
            if key.lower() == hint.lower():
                return key
    for hint in hints:
        for key in candidates:
            if hint.lower() in key.lower():
                return key
    return None


def find_correlation_columns(keys: Sequence[str], x_hints: Sequence[str] = None,
                             y_hints: Sequence[str] = None) -> Tuple[Optional[str], Optional[str]]:
    x_key = find_column(keys, x_hints or settings.correlation_x_hints)
    y_key = find_column(keys, y_hints or settings.correlation_y_hints, exclude=x_key)
    return x_key, y_key


def describe_correlation(rows: List[Dict[str, Any]], x_key: str, y_key: str) -> str:
    """One sentence on the x/y relationship, or why it can't be computed."""
    pairs = numeric_pairs(rows, x_key, y_key)
    r = compute_correlation(pairs)
    x_name, y_name = pretty(x_key), pretty(y_key)
    if r is None:
        return (
            f"A correlation between {x_name} and {y_name} could not be computed "
            f"from the {len(pairs)} records with numeric values for both."
        )

    direction = "positive" if r >= 0 else "negative"
    sentence = (
        f"There is a {correlation_strength(r)} {direction} correlation (r = {r:.2f}) "
        f"between {x_name} and {y_name} across {len(pairs)} records."
    )
    slope = compute_slope(pairs)
    if slope is not None:
        sentence += (
            f" On average, each additional unit of {x_name} is associated with a "
            f"change of {slope:+.2f} in {y_name}."
        )
    return sentence


def analyze_results(rows: List[Dict[str, Any]], columns: Iterable[Any]) -> ResultAnalysis:
    """Per-column insights: numeric columns get statistics, text columns a distribution."""
    keys = column_keys(columns) or row_keys(rows)
    if not rows:
        return ResultAnalysis(count=0, columns=keys)

    insights = []
    numeric_columns = set()
    for key in keys:
        values = numeric_values(rows, key)
        if not values:
            continue
        numeric_columns.add(key)
        low, high = min(values), max(values)
        insights.append(NumericInsight(
            column=key,
            average=sum(values) / len(values),
            min=low,
            max=high,
            median=median(values),
            count=len(values),
            range=high - low,
        ))

    for key in keys:
        if key in numeric_columns:
            continue
        counts = Counter(row[key] for row in rows if isinstance(row.get(key), str))
        if not counts:
            continue
        # sorted() is stable, so ties keep first-seen order
        distribution = sorted(counts.items(), key=lambda item: item[1], reverse=True)
        insights.append(CategoricalInsight(
            column=key,
            distribution=[[value, count] for value, count in distribution],
            unique_values=len(distribution),
            most_common=distribution[0][0],
        ))

    return ResultAnalysis(count=len(rows), insights=insights, columns=keys)


def key_findings(analysis: ResultAnalysis) -> List[str]:
    numeric = {i.column: i for i in analysis.insights if isinstance(i, NumericInsight)}
    categorical = {i.column: i for i in analysis.insights if isinstance(i, CategoricalInsight)}
    findings = []

    satisfaction = find_column(list(numeric), ["satisfaction"])
    if satisfaction:
        findings.append(f"Average {pretty(satisfaction)}: {numeric[satisfaction].average:.2f}")

    experience = find_column(list(numeric), ["experience"])
    if experience:
        insight = numeric[experience]
        findings.append(f"{pretty(experience)} ranges from {_fmt(insight.min)} to {_fmt(insight.max)}")

    overtime = find_column(list(numeric), ["overtime"])
    if overtime:
        findings.append(f"Average {pretty(overtime)}: {numeric[overtime].average:.2f}")

    department = find_column(list(categorical), ["department"])
    if department:
        top_two = ", ".join(f"{value} ({count})" for value, count in categorical[department].distribution[:2])
        findings.append(f"Most represented {pretty(department)} values: {top_two}")

    return findings


class ResultSummarizer:
    """Summarizes a result set, with or without an LLM."""

    def __init__(self, llm: Any = None, enable_ai: Optional[bool] = None):
        self.llm = llm
        self.enable_ai = settings.enable_ai_summary if enable_ai is None else enable_ai

    def generate_fallback_summary(self, rows: List[Dict[str, Any]], analysis: ResultAnalysis,
                                  query_type: str) -> str:
        parts = []

        if query_type == "correlation":
            x_key, y_key = find_correlation_columns(analysis.columns)
            if x_key and y_key:
                parts.append(describe_correlation(rows, x_key, y_key))

        findings = key_findings(analysis)
        if findings:
            parts.append("Key Findings:\n" + "\n".join(f"• {finding}" for finding in findings))

        if not parts:
            return (
                f"The {analysis.count} records returned cannot conclusively answer this question. "
                "Try asking about specific columns, averages or comparisons."
            )

        closing = CLOSING_NOTES.get(query_type)
        if closing:
            parts.append(closing)
        return "\n\n".join(parts)

    def generate_summary(self, query: str, pipeline: Optional[str], rows: List[Dict[str, Any]],
                         columns: Iterable[Any]) -> Tuple[str, str]:
        """
        Returns:
            tuple: (summary text, "ai-generated" or "rule-based")
        """
        rows = rows or []
        analysis = analyze_results(rows, columns)
        query_type = classify_query(query)

        if self.enable_ai and self.llm is not None:
            prompt = build_summary_prompt(query, pipeline, analysis, query_type)
            try:
                return complete(self.llm, SUMMARY_SYSTEM_PROMPT, prompt), "ai-generated"
            except CompletionError as e:
                logger.warning("⚠️ AI summary failed, using rule-based summary: %s", e)

        return self.generate_fallback_summary(rows, analysis, query_type), "rule-based"

    def summarize(self, query: str, pipeline: Optional[str], rows: List[Dict[str, Any]],
                  columns: Iterable[Any]) -> str:
        summary, _ = self.generate_summary(query, pipeline, rows, columns)
        return summary
