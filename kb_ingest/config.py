from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """
    # App
    APP_NAME: str = "KB Ingest"
    APP_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"
    API_PREFIX: str = "/api"

    # Logging
    LOG_PATH: str = "logs/"

    # Job Store
    JOB_STORE_BACKEND: str = "memory" # "memory" or "redis"
    REDIS_URL: str = "redis://localhost:6379/0"

    # Job Processing
    MAX_CONCURRENT_JOBS: int = 5
    EMBEDDING_CONCURRENCY: int = 1 # 1 embeds chunks sequentially
    PROGRESS_REPORT_INTERVAL: int = 10 # Report embedding progress every N chunks

    # Chunking
    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 200
    CHUNK_MIN_SIZE: int = 100 # Shorter chunks are merged into the next one, 0 disables

    # Downloader
    DOWNLOAD_USER_AGENT: str = "Mozilla/5.0 (compatible; KBIngestBot/0.1)"
    DOWNLOAD_TIMEOUT_SECONDS: int = 30
    DOWNLOAD_MAX_RETRIES: int = 2

    # File Storage
    FILE_STORAGE_PATH: str = "./.file_storage"
    STORAGE_BUCKET: str = "source-documents"
    UPLOAD_PREFIX: str = "uploads/"
    MAX_UPLOAD_BYTES: int = 50 * 1024 * 1024 # 50MB

    # Knowledge Base
    KNOWLEDGE_BASE_BACKEND: str = "faiss" # "faiss" or "memory"
    VECTOR_STORE_PATH: str = "./.vector_store"

    # Embedding Providers
    EMBEDDING_PROVIDER: str = "http" # "openai", "http" or "local"
    EMBEDDING_TIMEOUT_SECONDS: int = 30
    EMBEDDING_RATE_LIMIT: int = 0 # Max embedding requests per minute, 0 disables

    # OpenAI
    OPENAI_API_KEY: str = ""
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"

    # OpenAI-compatible HTTP endpoint (e.g. Ollama)
    EMBEDDING_ENDPOINT: str = "http://localhost:11434/v1"
    EMBEDDING_API_KEY: str = ""
    EMBEDDING_MODEL: str = "nomic-embed-text"

    # Local SentenceTransformer
    LOCAL_EMBEDDING_MODEL: str = "all-MiniLM-L6-v2"

    # Watchdog for stuck jobs
    WATCHDOG_INTERVAL_SECONDS: int = 300 # How often the watchdog runs (5 minutes)
    WATCHDOG_THRESHOLD_SECONDS: int = 600 # How long a job can be inactive before watchdog marks it failed (10 minutes)

    class Config:
        case_sensitive = True

# Instantiate settings
settings = Settings()
