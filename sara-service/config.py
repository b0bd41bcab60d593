from typing import Dict, List, Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # MongoDB Configuration
    mongodb_uri: str
    database_name: str = "sara"
    query_timeout_ms: int = 30000

    # Optional relational business database for raw SQL queries
    business_database_url: Optional[str] = None

    # LLM Provider Selection
    llm_provider: str = "openai"  # Options: openai, gemini, local, huggingface
    llm_temperature: float = 0.0
    llm_max_tokens: int = 2000
    llm_timeout: int = 120

    # OpenAI Configuration
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o"

    # Google Gemini Configuration
    google_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash-lite"

    # Hugging Face Configuration
    huggingface_api_key: Optional[str] = None
    huggingface_model: str = "openai/gpt-oss-120b"

    # Local LLM Configuration (any OpenAI-compatible server)
    local_llm_base_url: str = "http://localhost:1234/v1"
    local_llm_model: str = "google/gemma-3-27b"

    # Schema description used in the pipeline prompt
    schema_text: Optional[str] = None
    schema_file: Optional[str] = None

    # Collection routing: evaluated in order, first keyword hit wins
    collection_routes: Dict[str, List[str]] = {
        "constituents": ["constituent", "donor"],
        "addresses": ["address"],
    }
    default_collection: str = "gifts"
    date_fields: List[str] = ["giftDate"]

    # Tables the SQL validator treats as read-only
    read_only_tables: List[str] = ["gifts", "gift", "constituents"]

    # Summaries and chat
    enable_ai_summary: bool = False
    enable_ai_chat: bool = True
    evidence_top_k: int = 20
    correlation_x_hints: List[str] = ["Years_of_Experience", "experience", "years"]
    correlation_y_hints: List[str] = ["Satisfaction_Score", "satisfaction", "score"]

    # Rate limiting (in-memory, single instance only)
    enable_rate_limiting: bool = False
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 60
    ai_rate_limit_requests: int = 10
    query_rate_limit_requests: int = 50

    # Service Configuration
    environment: str = "development"
    port: int = 8000
    max_query_length: int = 5000
    log_level: str = "INFO"

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def detailed_errors(self) -> bool:
        """Expose underlying error messages outside production."""
        return self.environment.lower() != "production"

# Global settings instance
settings = Settings()
