import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from config import settings

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_TEXT = """
MongoDB Database Schema:

Collection: gifts
- giftId (string): Unique gift identifier.
- accountId (string): Donor account; joins to constituents.accountId.
- giftDate (date): The date the gift was received.
- giftAmount (string): The amount of the gift. Use {"$toDouble": "$giftAmount"} in calculations.
- transactionType (string): Type of transaction (e.g., Gift, Pledge).
- giftType (string): Type of gift (e.g., Single, Recurring).
- paymentMethod (string): Payment method (e.g., Credit Card, Check).
- softCreditIndicator (string): Whether the gift was soft-credited.
- softCreditAmount (string): Amount soft-credited.
- sourceCode (string): Campaign or appeal source, e.g. Phone Call, Direct Mail, Web Gift, Event, Email.
- designation (string): Fund or initiative the gift supports, e.g. "Student Bursaries Fund".
- unit (string): Department or division that received the gift.
- purposeCategory (string): Intent of the gift, e.g. Endowment, Operating, Capital Project.
- appeal (string): Fundraising appeal code.
- givingLevel (string): Dollar tier of the gift, e.g. "$100-$499.99".

Collection: constituents
- accountId (string): Donor account identifier.
- fullName (string): Donor full name.
- email (string): Email address.
- donorType (string): Donor classification.
- alumniType (string): Alumni classification, null for non-alumni.
- gender (string), age (number), volunteer (string: Yes/No), wealthScore (number).

Collection: addresses
- accountId (string): Donor account identifier.
- addressType (string), city (string), state (string), postalCode (string), country (string).

Relationships:
- gifts.accountId = constituents.accountId = addresses.accountId
"""

PIPELINE_INSTRUCTION = """
You are an assistant that converts natural language questions into MongoDB aggregation pipelines.
Rules:
1. Respond with a MongoDB aggregation pipeline only: a JSON array of stage objects.
2. Only use field names that appear in the schema above.
3. Never emit an empty $match stage; omit $match when there is nothing to filter.
4. Respond ONLY with the raw pipeline JSON. No explanation, no prose, no markdown.
5. For "top N" requests keep the grouping, sorting and projection logic the same and only change the $limit value to N.
6. When the question says "by FIELD" (e.g. "gifts by source"), add a $group stage keyed on that field and $sort the groups by an aggregate such as a total or count.
7. Dates are ISO strings, e.g. {"giftDate": {"$gte": "2023-01-01", "$lt": "2024-01-01"}}.
8. Only read data. Never use $out, $merge, $where or $function.
"""

PIPELINE_SYSTEM_PROMPT = "You translate analytics questions into MongoDB aggregation pipelines."

SUMMARY_SYSTEM_PROMPT = (
    "You are a data analyst. Summarize query results for a non-technical audience "
    "in a few short paragraphs. Only state facts supported by the numbers you are given."
)

CHAT_SYSTEM_PROMPT = (
    "You answer follow-up questions about a query result. Use only the evidence provided: "
    "the column list, the column statistics and the most relevant rows. "
    "If the evidence does not answer the question, say so."
)


def load_schema_text() -> str:
    """Schema description from settings, a schema file, or the bundled default."""
    if settings.schema_text:
        return settings.schema_text
    if settings.schema_file:
        try:
            return Path(settings.schema_file).read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("⚠️ Could not read schema file %s: %s", settings.schema_file, e)
    return DEFAULT_SCHEMA_TEXT


def build_prompt(schema_text: str, instruction_template: str, question: str) -> str:
    """Schema, then instructions, then the question. Empty schema is allowed."""
    return f"{(schema_text or '').strip()}\n\n{instruction_template.strip()}\n\nUser question: {question}\n\nPipeline:"


def build_summary_prompt(original_query: str, pipeline: Optional[str], analysis: Any, query_type: str) -> str:
    prompt = f'ORIGINAL QUERY: "{original_query}"\n\n'
    if pipeline:
        prompt += f"QUERY EXECUTED: {pipeline}\n\n"
    prompt += "RESULTS ANALYSIS:\n"
    prompt += f"- Total records analyzed: {analysis.count}\n\n"

    if analysis.insights:
        prompt += "KEY METRICS FOUND:\n"
        for insight in analysis.insights:
            if hasattr(insight, "average"):
                prompt += f"- {insight.column}: Average {insight.average:.2f}, Range {insight.min}-{insight.max}\n"
            else:
                prompt += f"- {insight.column}: {insight.unique_values} unique values\n"
                if insight.distribution:
                    top = ", ".join(f"{value} ({count})" for value, count in insight.distribution[:3])
                    prompt += f"  Top values: {top}\n"

    prompt += f"\nQUERY TYPE: {query_type}\n\n"
    prompt += "Please provide a summary that:\n"
    prompt += "1. Explains what the data shows in plain English\n"
    prompt += "2. Highlights the most important findings\n"
    prompt += "3. Mentions any notable patterns or outliers\n"
    prompt += f"4. Gives context about the scope of analysis ({analysis.count} records)"
    return prompt


def build_chat_prompt(question: str, evidence_json: str, history: Optional[List[Dict[str, str]]] = None) -> str:
    prompt = ""
    if history:
        prompt += "CONVERSATION SO FAR:\n"
        for msg in history[-6:]:
            prompt += f"{msg.get('role', 'user')}: {msg.get('content', '')}\n"
        prompt += "\n"
    prompt += f"EVIDENCE:\n{evidence_json}\n\n"
    prompt += f"QUESTION: {question}"
    return prompt
