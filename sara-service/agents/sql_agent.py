import logging
from typing import Any, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from config import settings
from models import QueryResult
from utils.formatting import columns_from_keys, to_json_safe
from utils.sql_validator import log_validation_result, validate_ai_generated_query, validate_sql_query

logger = logging.getLogger(__name__)


class SqlQueryAgent:
    """
    Raw SQL path against the relational business database.

    Every statement goes through the read-only validator before it reaches
    the engine.
    """

    def __init__(self, engine: Any):
        self.engine = engine

    @classmethod
    def from_settings(cls) -> Optional["SqlQueryAgent"]:
        if not settings.business_database_url:
            return None
        engine = create_engine(settings.business_database_url, echo=False, pool_pre_ping=True)
        logger.info("✅ SQL business database configured")
        return cls(engine)

    def execute(self, sql: str, original_question: Optional[str] = None) -> QueryResult:
        validation = (
            validate_ai_generated_query(sql, original_question)
            if original_question
            else validate_sql_query(sql)
        )
        log_validation_result(sql, validation, "AI_GENERATED" if original_question else "MANUAL")

        if not validation.is_valid:
            return QueryResult(success=False, error=validation.error or "Query validation failed", error_type="safety")
        if validation.warnings:
            logger.warning("⚠️ SQL Query Warnings: %s", validation.warnings)

        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(sql))
                keys = list(result.keys())
                rows = [dict(zip(keys, row)) for row in result.fetchall()]
        except SQLAlchemyError as e:
            logger.error("❌ SQL execution error: %s", e)
            error = str(e) if settings.detailed_errors else "Query execution failed"
            return QueryResult(success=False, error=error, error_type="execution")

        if not rows:
            return QueryResult(success=True, rows=[], columns=[])

        return QueryResult(success=True, rows=to_json_safe(rows), columns=columns_from_keys(keys))

    def close(self):
        self.engine.dispose()
