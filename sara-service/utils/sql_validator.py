"""
Read-only SQL safety checks.

Used on the raw SQL path and as a second line of defence on anything an LLM
generates. Violations are always rejected, never rewritten.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Iterable, Optional

from config import settings
from models import SqlValidationResult

logger = logging.getLogger(__name__)

WRITE_OPERATIONS = [
    "INSERT",
    "UPDATE",
    "DELETE",
    "DROP",
    "TRUNCATE",
    "ALTER",
    "CREATE",
    "RENAME",
    "GRANT",
    "REVOKE",
]

WRITE_OPERATIONS_REGEX = re.compile(rf"\b({'|'.join(WRITE_OPERATIONS)})\b", re.IGNORECASE)

LOGGED_SQL_LENGTH = 200


def validate_sql_query(sql: str, read_only_tables: Optional[Iterable[str]] = None) -> SqlValidationResult:
    """Allow only non-destructive statements against business data."""
    upper_sql = (sql or "").upper()
    warnings = []
    tables = settings.read_only_tables if read_only_tables is None else read_only_tables

    if WRITE_OPERATIONS_REGEX.search(upper_sql):
        return SqlValidationResult(
            is_valid=False,
            error="WRITE OPERATION DETECTED: SQL contains a write operation. Only SELECT queries are allowed on business data."
        )

    if any(table.upper() in upper_sql for table in tables):
        if "WHERE" in upper_sql and "DELETE" in upper_sql:
            return SqlValidationResult(
                is_valid=False,
                error="DELETE OPERATION BLOCKED: Cannot delete from business data tables."
            )
        if "SET" in upper_sql and "UPDATE" in upper_sql:
            return SqlValidationResult(
                is_valid=False,
                error="UPDATE OPERATION BLOCKED: Cannot update business data tables."
            )
        if "INSERT" in upper_sql:
            return SqlValidationResult(
                is_valid=False,
                error="INSERT OPERATION BLOCKED: Cannot insert into business data tables."
            )

    if "INTO" in upper_sql and "SELECT" in upper_sql:
        warnings.append("SELECT INTO detected - ensure this is safe")

    if "EXEC" in upper_sql:
        # also covers EXECUTE
        return SqlValidationResult(
            is_valid=False,
            error="EXECUTE OPERATION BLOCKED: Cannot execute stored procedures on business data."
        )

    if "UNION" in upper_sql and "SELECT" not in upper_sql:
        warnings.append("UNION without SELECT detected")

    if "--" in upper_sql or "/*" in upper_sql:
        warnings.append("SQL comments detected")

    return SqlValidationResult(is_valid=True, warnings=warnings)


def validate_ai_generated_query(sql: str, original_question: str,
                                read_only_tables: Optional[Iterable[str]] = None) -> SqlValidationResult:
    """Stricter validation for SQL written by the LLM."""
    base = validate_sql_query(sql, read_only_tables)
    if not base.is_valid:
        return base

    upper_sql = (sql or "").upper()

    if not upper_sql.strip().startswith("SELECT"):
        return SqlValidationResult(
            is_valid=False,
            error="AI QUERY VALIDATION FAILED: AI-generated queries must be SELECT statements only."
        )

    if "INFORMATION_SCHEMA" in upper_sql or "SYS." in upper_sql:
        return SqlValidationResult(
            is_valid=False,
            error="SYSTEM TABLE ACCESS BLOCKED: Cannot access system tables."
        )

    return base


def log_validation_result(sql: str, result: SqlValidationResult, context: Optional[str] = None) -> dict:
    """Log a validation outcome for monitoring and return the logged record."""
    sql = sql or ""
    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "context": context or "SQL_VALIDATION",
        "sql": sql[:LOGGED_SQL_LENGTH] + ("..." if len(sql) > LOGGED_SQL_LENGTH else ""),
        "is_valid": result.is_valid,
        "error": result.error,
        "warnings": result.warnings,
    }

    logger.info("🔒 SQL Validation: %s", log_data)
    if not result.is_valid:
        logger.error("🚫 SQL VALIDATION FAILED: %s", result.error)

    return log_data
