# config.py
"""Application configuration"""
from pydantic_settings import BaseSettings
from utils.common import get_log_file_path

class Settings(BaseSettings):
    """Application configuration"""

    # Logger configuration
    LOG_FILE_PATH: str = get_log_file_path()
    LOGGER_NAME: str = "chemtutor"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./knowledge.db"

    # Document processing
    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 200
    FILE_PREVIEW_CHARS: int = 5000

    # ============= Embedding provider =============
    EMBED_URL: str = "https://openapi.youdao.com/textEmbedding/queryTextEmbeddings"
    EMBED_APP_KEY: str = ""
    EMBED_APP_SECRET: str = ""

    # Rate limiting and retry (seconds)
    EMBED_MIN_INTERVAL: float = 1.2   # Minimum gap between two outbound calls
    EMBED_TIMEOUT: float = 20.0
    EMBED_MAX_RETRIES: int = 8
    EMBED_BACKOFF_BASE: float = 1.0
    EMBED_MAX_BACKOFF: float = 30.0
    EMBED_JITTER_MAX: float = 0.4
    EMBED_QUOTA_PENALTY: float = 1.2  # Extra wait on quota/balance errors

    # ============= Chat-completion provider =============
    LLM_BASE_URL: str = "https://api.openai.com/v1"
    LLM_API_KEY: str = ""
    LLM_MODEL: str = "gpt-4o"
    LLM_VISION_MODEL: str = "gpt-4o"
    LLM_TEMPERATURE: float = 0.2
    RELEVANCE_TEMPERATURE: float = 0.1
    REQUEST_TIMEOUT: int = 60

    # ============= Search tiers =============
    SPECIALIZED_API_URL: str = "https://api.reaxys.com/v2/api"
    SPECIALIZED_API_KEY: str = ""
    TAVILY_API_URL: str = "https://api.tavily.com/search"
    TAVILY_API_KEY: str = ""
    SERPER_API_URL: str = "https://google.serper.dev/search"
    SERPER_API_KEY: str = ""
    SEARCH_TIMEOUT: int = 30
    SEARCH_MAX_RESULTS: int = 5

    # Search defaults
    TOP_K: int = 5
    TOP_K_MAX: int = 50
    SNIPPET_MAX_CHARS: int = 1200

    # Relevance gate: verdict used when the check fails or is ambiguous
    RELEVANCE_DEFAULT_ON_ERROR: bool = True

    # Conversation
    HISTORY_LIMIT: int = 10
    DEFAULT_SESSION_ID: str = "default"

    # Citations
    SOURCE_PREVIEW_CHARS: int = 80

    # Assistant persona
    ASSISTANT_DOMAIN: str = "organic chemistry"

    # App metadata
    APP_TITLE: str = "Cited Answer Assistant"
    APP_VERSION: str = "1.0.0"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

settings = Settings()
