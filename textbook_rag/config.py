"""Configuration loader for the textbook RAG service."""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class AppInfo(BaseModel):
    """Application metadata."""

    name: str = "Textbook RAG"
    version: str = "1.0.0"


class ChunkingConfig(BaseModel):
    """Page-bounded chunking configuration."""

    target_tokens: int = Field(default=900, gt=0)
    max_tokens: int = Field(default=1200, gt=0)
    tokens_per_word: float = Field(default=1.3, gt=0)


class EmbeddingConfig(BaseModel):
    """Embedding provider configuration."""

    provider: str = "cohere"
    model: str = "embed-english-v3.0"
    base_url: str = "https://api.cohere.ai"
    batch_size: int = Field(default=10, gt=0)
    batch_delay_seconds: float = Field(default=0.1, ge=0)
    timeout_seconds: float = 30.0
    document_input_type: str = "search_document"
    query_input_type: str = "search_query"


class RetrievalConfig(BaseModel):
    """Retrieval configuration."""

    top_k: int = Field(default=5, gt=0)
    source_preview_chars: int = Field(default=200, gt=0)
    rerank: bool = False
    candidate_k: int = Field(default=50, gt=0)
    cosine_weight: float = Field(default=0.7, ge=0)
    keyword_weight: float = Field(default=0.3, ge=0)
    mmr_lambda: float = Field(default=0.5, ge=0, le=1)


class GenerationConfig(BaseModel):
    """LLM generation configuration."""

    provider: str = "groq"
    model: str = "llama3-8b-8192"
    base_url: str = "https://api.groq.com/openai/v1"
    temperature: float = 0.1
    max_tokens: int = 1000
    timeout_seconds: float = 60.0


class StorageConfig(BaseModel):
    """Storage paths configuration."""

    sqlite_path: str = "./db/rag.db"
    uploads_dir: str = "./data/uploads"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class AppConfig(BaseModel):
    """Root application configuration."""

    app: AppInfo = Field(default_factory=AppInfo)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # API keys loaded from environment
    cohere_api_key: str | None = None
    groq_api_key: str | None = None


def load_config(config_path: str | Path = "config.yaml") -> AppConfig:
    """Load configuration from YAML file and environment variables.

    Missing API keys are not an error here: the providers report them
    lazily so that the rest of the application stays usable.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Fully populated AppConfig instance.
    """
    load_dotenv()

    yaml_data: dict = {}
    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file) as f:
            yaml_data = yaml.safe_load(f) or {}

    config = AppConfig(**yaml_data)

    # Override API keys from environment
    config.cohere_api_key = os.getenv("COHERE_API_KEY")
    config.groq_api_key = os.getenv("GROQ_API_KEY")

    return config
