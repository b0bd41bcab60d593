import logging
from typing import Any, Dict, Optional

from pymongo import MongoClient

from config import settings
from models import GenerationResult, QueryResult
from services.llm_service import CompletionError, complete, create_llm
from agents.collection_resolver import CollectionResolver
from agents.prompts import PIPELINE_INSTRUCTION, PIPELINE_SYSTEM_PROMPT, build_prompt, load_schema_text
from utils.formatting import columns_from_keys, to_json_safe
from utils.pipeline_tools import (
    INVALID_PIPELINE_FORMAT,
    PipelineFormatError,
    clean_generated_text,
    coerce_match_dates,
    format_pipeline_for_display,
    has_count_stage,
    parse_pipeline,
)
from utils.validators import validate_pipeline_safety

logger = logging.getLogger(__name__)

GENERATION_FAILED = "Could not generate a query pipeline for this question"


class PipelineAgent:
    """
    Natural language to MongoDB aggregation agent.

    Generates a pipeline for a question with the configured LLM and runs
    pipelines against the database. Holds no per-request state.
    """

    def __init__(self, db: Any, llm: Any = None, llm_metadata: Optional[Dict[str, Any]] = None,
                 resolver: Optional[CollectionResolver] = None, schema_text: Optional[str] = None,
                 client: Optional[MongoClient] = None):
        """
        Args:
            db: pymongo Database (anything supporting ``db[name].aggregate``)
            llm: chat model exposing ``invoke(messages)``; None disables generation
            llm_metadata: provider/model description for health output
            resolver: question -> collection routing rules
            schema_text: schema description for prompts
            client: owning MongoClient, closed by ``close()``
        """
        self.db = db
        self.llm = llm
        self.llm_metadata = llm_metadata or {"provider": "none", "model": "none"}
        self.resolver = resolver or CollectionResolver.from_settings()
        self.schema_text = load_schema_text() if schema_text is None else schema_text
        self.client = client

    @classmethod
    def from_settings(cls) -> "PipelineAgent":
        """Connect to MongoDB and the configured LLM provider."""
        logger.info("🔧 Initializing pipeline agent for database: %s", settings.database_name)

        client = MongoClient(settings.mongodb_uri)
        db = client[settings.database_name]
        logger.info("✅ Connected to MongoDB database: %s", settings.database_name)

        try:
            llm, llm_metadata = create_llm()
        except Exception as e:
            # Execution and summaries still work without a model
            logger.error("❌ LLM unavailable, pipeline generation disabled: %s", e)
            llm, llm_metadata = None, None

        return cls(db, llm=llm, llm_metadata=llm_metadata, client=client)

    @property
    def database_name(self) -> str:
        return getattr(self.db, "name", settings.database_name)

    def build_prompt(self, question: str) -> str:
        return build_prompt(self.schema_text, PIPELINE_INSTRUCTION, question)

    def generate_pipeline(self, question: str) -> GenerationResult:
        """
        Ask the LLM for a pipeline answering ``question``.

        Empty output is a failure, never an empty pipeline.
        """
        collection = self.resolver.resolve(question)
        if self.llm is None:
            return GenerationResult(success=False, collection=collection, error="No language model is configured")

        prompt = self.build_prompt(question)
        try:
            raw = complete(self.llm, PIPELINE_SYSTEM_PROMPT, prompt)
        except CompletionError:
            logger.exception("❌ Pipeline generation failed")
            return GenerationResult(success=False, collection=collection, error=GENERATION_FAILED)

        pipeline = clean_generated_text(raw)
        if not pipeline:
            logger.warning("⚠️ LLM output was empty after cleanup")
            return GenerationResult(success=False, collection=collection, error=GENERATION_FAILED)

        logger.info("🧠 Generated pipeline for '%s' on %s", question, collection)
        return GenerationResult(success=True, pipeline=pipeline, collection=collection)

    def execute(self, question: str, pipeline_text: str) -> QueryResult:
        """Run a pipeline and reshape the documents into rows and columns."""
        collection_name = self.resolver.resolve(question)

        try:
            stages = parse_pipeline(pipeline_text)
        except PipelineFormatError:
            return QueryResult(success=False, collection=collection_name,
                               error=INVALID_PIPELINE_FORMAT, error_type="format")

        is_safe, error_msg = validate_pipeline_safety(stages)
        if not is_safe:
            logger.warning("🚫 Blocked pipeline: %s", error_msg)
            return QueryResult(success=False, collection=collection_name,
                               error=f"Query safety violation: {error_msg}", error_type="safety")

        stages = coerce_match_dates(stages, settings.date_fields)
        logger.debug("Executing on %s:\n%s", collection_name, format_pipeline_for_display(stages))

        try:
            documents = list(self.db[collection_name].aggregate(stages, maxTimeMS=settings.query_timeout_ms))
        except Exception as e:
            logger.exception("❌ Error executing aggregation on %s", collection_name)
            error = str(e) if settings.detailed_errors else "Query execution failed"
            return QueryResult(success=False, collection=collection_name, error=error, error_type="execution")

        if not documents:
            return QueryResult(success=True, collection=collection_name, rows=[], columns=[])

        documents = to_json_safe(documents)

        if has_count_stage(stages):
            # $count yields a single document holding the count
            count_doc = documents[0]
            return QueryResult(success=True, collection=collection_name,
                               rows=[count_doc], columns=columns_from_keys(count_doc.keys()))

        return QueryResult(success=True, collection=collection_name,
                           rows=documents, columns=columns_from_keys(documents[0].keys()))

    def close(self):
        """Close MongoDB connection"""
        if self.client is not None:
            self.client.close()
            logger.info("🔌 MongoDB connection closed")
