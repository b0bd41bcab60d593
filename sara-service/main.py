import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings
from models import ColumnSpec, EvidencePack
from agents.data_chat import DataChatAgent
from agents.pipeline_agent import PipelineAgent
from agents.sql_agent import SqlQueryAgent
from agents.summarizer import ResultSummarizer
from services.rate_limiter import (
    InMemoryRateLimiter,
    RateLimiter,
    client_id_from_headers,
    rate_limit_headers,
)
from utils.sql_validator import log_validation_result, validate_sql_query
from utils.validators import check_query_length, sanitize_query, validate_natural_query

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# Global collaborators, set up in lifespan
agent: Optional[PipelineAgent] = None
sql_agent: Optional[SqlQueryAgent] = None
summarizer = ResultSummarizer()
chat_agent = DataChatAgent()

rate_limiters: Dict[str, RateLimiter] = {
    # LLM calls are the expensive ones
    "ai": InMemoryRateLimiter(settings.ai_rate_limit_requests, settings.rate_limit_window_seconds),
    "query": InMemoryRateLimiter(settings.query_rate_limit_requests, settings.rate_limit_window_seconds),
    "general": InMemoryRateLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds),
}


class ApiError(Exception):
    """Error rendered as ``{"success": false, "error": ...}`` with a status code."""

    def __init__(self, status_code: int, message: str, headers: Optional[Dict[str, str]] = None, **payload):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.headers = headers
        self.payload = payload


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    global agent, sql_agent, summarizer, chat_agent

    logger.info("=" * 60)
    logger.info("Starting SARA query service")
    logger.info("Database: %s | LLM Provider: %s", settings.database_name, settings.llm_provider)
    logger.info("=" * 60)

    try:
        agent = PipelineAgent.from_settings()
    except Exception:
        logger.exception("Failed to initialize pipeline agent")
        raise

    sql_agent = SqlQueryAgent.from_settings()
    summarizer = ResultSummarizer(llm=agent.llm)
    chat_agent = DataChatAgent(llm=agent.llm)
    logger.info("Pipeline agent initialized successfully")

    yield

    # Shutdown
    if agent:
        agent.close()
    if sql_agent:
        sql_agent.close()
    logger.info("SARA query service shutting down")


# Create FastAPI app
app = FastAPI(
    title="SARA Query Service",
    description="Natural language analytics over MongoDB: pipeline generation, execution and summaries",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify exact origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, **exc.payload},
        headers=exc.headers
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(part) for part in err.get("loc", [])[1:]) for err in exc.errors()]
    fields = [f for f in fields if f]
    message = "Missing or invalid input"
    if fields:
        message += f": {', '.join(dict.fromkeys(fields))}"
    return JSONResponse(status_code=400, content={"success": False, "error": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unexpected error handling %s", request.url.path)
    message = str(exc) if settings.detailed_errors else "An unexpected error occurred"
    return JSONResponse(status_code=500, content={"success": False, "error": message})


# Dependencies
def get_agent() -> PipelineAgent:
    if not agent:
        raise ApiError(503, "Agent not initialized")
    return agent


def get_optional_agent() -> Optional[PipelineAgent]:
    return agent


def get_sql_agent() -> Optional[SqlQueryAgent]:
    return sql_agent


def get_summarizer() -> ResultSummarizer:
    return summarizer


def get_chat_agent() -> DataChatAgent:
    return chat_agent


def rate_limit(category: str) -> Callable[[Request, Response], None]:
    """Dependency enforcing the named limiter and setting X-RateLimit-* headers."""
    def dependency(request: Request, response: Response) -> None:
        if not settings.enable_rate_limiting:
            return
        fallback = request.client.host if request.client else None
        decision = rate_limiters[category].check(client_id_from_headers(request.headers, fallback))
        headers = rate_limit_headers(decision)
        if not decision.allowed:
            retry_after = decision.retry_after()
            raise ApiError(
                429,
                "Rate limit exceeded. Please try again later.",
                headers={**headers, "Retry-After": str(retry_after)},
                retryAfter=retry_after
            )
        response.headers.update(headers)
    return dependency


# Pydantic models
class QuestionRequest(BaseModel):
    question: str = Field(..., description="Natural language question", min_length=1)

    model_config = ConfigDict(
        json_schema_extra={"example": {"question": "Show me the top 10 donors by total gift amount in 2023"}}
    )


class ExecuteQueryRequest(BaseModel):
    sql: str = Field(..., description="Aggregation pipeline JSON or a read-only SQL statement", min_length=1)
    question: Optional[str] = Field(None, description="Question the query answers (drives collection routing)")


class SummarizeRequest(BaseModel):
    query: str = Field(..., description="Original natural language question", min_length=1)
    sql: Optional[str] = Field(None, description="Query that produced the results")
    results: List[Dict[str, Any]] = Field(..., description="Result rows")
    columns: List[Any] = Field(default_factory=list, description="Column keys or {key, name} objects")


class ChatContext(BaseModel):
    question: str = ""
    sql: str = ""
    results: List[Dict[str, Any]] = []
    columns: List[Any] = []


class DataChatRequest(BaseModel):
    history: List[Dict[str, str]] = []
    context: ChatContext = Field(default_factory=ChatContext)


class ValidateResponse(BaseModel):
    success: bool = True
    is_valid: bool
    errors: List[str] = []
    warnings: List[str] = []


class PipelineResponse(BaseModel):
    success: bool = True
    pipeline: str
    collection: Optional[str] = None
    warnings: List[str] = []


class QueryResponse(BaseModel):
    success: bool = True
    rows: List[Dict[str, Any]] = []
    columns: List[ColumnSpec] = []
    collection: Optional[str] = None


class SummaryResponse(BaseModel):
    success: bool = True
    summary: str
    processing: str


class ChatResponse(BaseModel):
    success: bool = True
    answer: str
    evidence: EvidencePack


class HealthResponse(BaseModel):
    status: str
    service: str
    llm_provider: str
    llm_model: str
    database: str
    sql_enabled: bool


# Routes
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint"""
    return {
        "service": "SARA Query Service",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "health": "/health",
            "validate-query": "/validate-query (POST)",
            "generate-pipeline": "/generate-pipeline (POST)",
            "query": "/query (POST)",
            "summarize-results": "/summarize-results (POST)",
            "data-chat": "/data-chat (POST)",
            "docs": "/docs"
        }
    }


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check(agent: PipelineAgent = Depends(get_agent)):
    """Health check endpoint"""
    return HealthResponse(
        status="healthy",
        service="SARA Query Service",
        llm_provider=agent.llm_metadata["provider"],
        llm_model=agent.llm_metadata["model"],
        database=agent.database_name,
        sql_enabled=sql_agent is not None
    )


@app.post("/validate-query", response_model=ValidateResponse, tags=["Query"],
          dependencies=[Depends(rate_limit("general"))])
def validate_query(request: QuestionRequest):
    """Check a question without generating anything."""
    validation = validate_natural_query(sanitize_query(request.question))
    return ValidateResponse(**validation.model_dump())


@app.post("/generate-pipeline", response_model=PipelineResponse, tags=["Query"],
          dependencies=[Depends(rate_limit("ai"))])
def generate_pipeline(request: QuestionRequest, agent: PipelineAgent = Depends(get_agent)):
    """
    Translate a natural language question into a MongoDB aggregation pipeline.
    """
    question = sanitize_query(request.question)

    within_limit, length_error = check_query_length(question)
    if not within_limit:
        raise ApiError(400, length_error)

    validation = validate_natural_query(question)
    if not validation.is_valid:
        logger.info("Rejected question %r: %s", question[:200], validation.errors)
        raise ApiError(400, validation.errors[0], errors=validation.errors, warnings=validation.warnings)

    if agent.llm is None:
        raise ApiError(503, "No language model is configured")

    result = agent.generate_pipeline(question)
    if not result.success:
        raise ApiError(500, result.error)

    return PipelineResponse(pipeline=result.pipeline, collection=result.collection, warnings=validation.warnings)


@app.post("/query", response_model=QueryResponse, tags=["Query"],
          dependencies=[Depends(rate_limit("query"))])
def run_query(request: ExecuteQueryRequest,
              agent: Optional[PipelineAgent] = Depends(get_optional_agent),
              sql_agent: Optional[SqlQueryAgent] = Depends(get_sql_agent)):
    """
    Execute an aggregation pipeline, or a read-only SQL statement when a
    business database is configured.
    """
    text = request.sql.strip()
    question = request.question or ""

    if text.startswith("[") or text.startswith("{"):
        if agent is None:
            raise ApiError(503, "Agent not initialized")
        result = agent.execute(question, text)
    elif sql_agent is not None:
        result = sql_agent.execute(text, question or None)
    else:
        validation = validate_sql_query(text)
        log_validation_result(text, validation, "UNSUPPORTED_SQL")
        if not validation.is_valid:
            raise ApiError(400, validation.error)
        raise ApiError(400, "SQL execution is not configured; submit an aggregation pipeline instead")

    if not result.success:
        status = 400 if result.error_type in ("format", "safety") else 500
        raise ApiError(status, result.error)

    return QueryResponse(rows=result.rows, columns=result.columns, collection=result.collection)


@app.post("/summarize-results", response_model=SummaryResponse, tags=["Analysis"],
          dependencies=[Depends(rate_limit("ai"))])
def summarize_results(request: SummarizeRequest, summarizer: ResultSummarizer = Depends(get_summarizer)):
    """Generate a natural language summary of a result set."""
    summary, processing = summarizer.generate_summary(request.query, request.sql, request.results, request.columns)
    return SummaryResponse(summary=summary, processing=processing)


@app.post("/data-chat", response_model=ChatResponse, tags=["Analysis"],
          dependencies=[Depends(rate_limit("ai"))])
def data_chat(request: DataChatRequest, chat_agent: DataChatAgent = Depends(get_chat_agent)):
    """Answer a follow-up question grounded on the current result set."""
    answer, evidence = chat_agent.answer(request.history, request.context.model_dump())
    return ChatResponse(answer=answer, evidence=evidence)


# Run server
if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
