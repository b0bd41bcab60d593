import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config import settings
from models import EvidencePack, EvidenceRow, SchemaField
from services.llm_service import CompletionError, complete
from agents.prompts import CHAT_SYSTEM_PROMPT, build_chat_prompt
from agents.summarizer import describe_correlation, find_correlation_columns
from utils.formatting import column_keys, pretty, row_keys
from utils.nlp_processor import tokenize
from utils.statistics import column_stats, is_number, numeric_values

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 20


def _cell_text(value: Any) -> str:
    return "" if value is None else str(value)


def score_row(query_tokens: set, row: Dict[str, Any]) -> int:
    """Number of query tokens that also appear among the row's value tokens."""
    row_text = " | ".join(_cell_text(v) for v in row.values())
    row_tokens = set(tokenize(row_text))
    return sum(1 for token in query_tokens if token in row_tokens)


def build_evidence_pack(question: str, rows: Sequence[Dict[str, Any]], keys: Sequence[str],
                        k: int = DEFAULT_TOP_K) -> EvidencePack:
    """
    Select the ``k`` rows most relevant to ``question`` by term overlap.

    Rows with equal scores keep their original order. Statistics cover every
    row, not just the selected ones.
    """
    query_tokens = set(tokenize(question))
    scored = [(score_row(query_tokens, row), index, row) for index, row in enumerate(rows)]
    ranked = sorted(scored, key=lambda item: item[0], reverse=True)

    return EvidencePack(
        schema=[SchemaField(key=key, label=pretty(key)) for key in keys],
        stats=column_stats(rows, keys),
        rows=[EvidenceRow(id=index, data=row) for _, index, row in ranked[:max(k, 0)]],
    )


def answer_with_context(message: str, rows: List[Dict[str, Any]], columns: Sequence[str]) -> str:
    """Rule-based answer used when no model is available."""
    msg = (message or "").lower()
    keys = row_keys(rows)

    if "correlation" in msg or "relationship" in msg:
        x_key, y_key = find_correlation_columns(keys)
        if x_key and y_key:
            return describe_correlation(rows, x_key, y_key)

    if "average" in msg or "mean" in msg:
        num_key = next((k for k in keys if is_number(rows[0].get(k))), None)
        if num_key:
            values = numeric_values(rows, num_key)
            avg = sum(values) / len(values)
            return f"Average {pretty(num_key)} is {avg:.2f} across {len(values)} records."

    sample = json.dumps(rows[:3], default=str)
    return (
        f"I analyzed {len(rows)} rows with columns {', '.join(columns)}. "
        "Ask about correlations, averages, comparisons between groups, or thresholds "
        f'(e.g., "gifts above 1000 from 2023"). Sample: {sample}'
    )


class DataChatAgent:
    """Answers follow-up questions about a result set the user already has."""

    def __init__(self, llm: Any = None, enable_ai: Optional[bool] = None, top_k: Optional[int] = None):
        self.llm = llm
        self.enable_ai = settings.enable_ai_chat if enable_ai is None else enable_ai
        self.top_k = settings.evidence_top_k if top_k is None else top_k

    def answer(self, history: Optional[List[Dict[str, str]]], context: Dict[str, Any]) -> Tuple[str, EvidencePack]:
        """
        Returns:
            tuple: (answer text, evidence pack the answer was grounded on)
        """
        history = history or []
        rows = context.get("results") or []
        keys = column_keys(context.get("columns") or []) or row_keys(rows)
        message = (history[-1].get("content") if history else None) or context.get("question") or ""

        evidence = build_evidence_pack(message, rows, keys, self.top_k)

        if self.enable_ai and self.llm is not None and rows:
            evidence_json = json.dumps(evidence.model_dump(by_alias=True), default=str)
            prompt = build_chat_prompt(message, evidence_json, history[:-1])
            try:
                return complete(self.llm, CHAT_SYSTEM_PROMPT, prompt), evidence
            except CompletionError as e:
                logger.warning("⚠️ AI chat failed, using rule-based answer: %s", e)

        if not rows:
            return "There are no results to discuss yet. Run a query first.", evidence
        return answer_with_context(message, rows, [pretty(k) for k in keys]), evidence
