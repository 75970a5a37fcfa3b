"""Tests for configuration loading."""

import logging
from pathlib import Path

import pytest
import yaml

from textbook_rag.config import AppConfig, ChunkingConfig, LoggingConfig, load_config
from textbook_rag.logging_setup import setup_logging


class TestAppConfigDefaults:
    """Test that AppConfig provides sensible defaults."""

    def test_default_config_creates_successfully(self) -> None:
        config = AppConfig()
        assert config.app.name == "Textbook RAG"
        assert config.app.version == "1.0.0"

    def test_default_chunking_config(self) -> None:
        config = AppConfig()
        assert config.chunking.target_tokens == 900
        assert config.chunking.max_tokens == 1200
        assert config.chunking.tokens_per_word == 1.3

    def test_default_embedding_config(self) -> None:
        config = AppConfig()
        assert config.embedding.provider == "cohere"
        assert config.embedding.model == "embed-english-v3.0"
        assert config.embedding.batch_size == 10
        assert config.embedding.batch_delay_seconds == 0.1
        assert config.embedding.document_input_type == "search_document"
        assert config.embedding.query_input_type == "search_query"

    def test_default_retrieval_config(self) -> None:
        config = AppConfig()
        assert config.retrieval.top_k == 5
        assert config.retrieval.source_preview_chars == 200
        assert config.retrieval.rerank is False
        assert config.retrieval.candidate_k == 50
        assert (config.retrieval.cosine_weight, config.retrieval.keyword_weight) == (0.7, 0.3)
        assert config.retrieval.mmr_lambda == 0.5

    def test_default_generation_config(self) -> None:
        config = AppConfig()
        assert config.generation.provider == "groq"
        assert config.generation.model == "llama3-8b-8192"
        assert config.generation.temperature == 0.1
        assert config.generation.max_tokens == 1000

    def test_default_api_keys_are_none(self) -> None:
        config = AppConfig()
        assert config.cohere_api_key is None
        assert config.groq_api_key is None

    def test_rejects_non_positive_batch_size(self) -> None:
        with pytest.raises(ValueError):
            AppConfig(embedding={"batch_size": 0})

    def test_rejects_zero_max_tokens(self) -> None:
        with pytest.raises(ValueError):
            ChunkingConfig(max_tokens=0)


class TestLoadConfig:
    """Test loading config from YAML files."""

    def test_load_from_yaml(self, tmp_path: Path) -> None:
        yaml_data = {
            "app": {"name": "Test App", "version": "0.1.0"},
            "retrieval": {"top_k": 10},
        }
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.dump(yaml_data))

        config = load_config(config_file)
        assert config.app.name == "Test App"
        assert config.app.version == "0.1.0"
        assert config.retrieval.top_k == 10
        # Other fields keep defaults
        assert config.embedding.model == "embed-english-v3.0"

    def test_load_missing_yaml_uses_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path / "nonexistent.yaml")
        assert config.app.name == "Textbook RAG"

    def test_load_empty_yaml_uses_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")

        config = load_config(config_file)
        assert config.chunking.max_tokens == 1200

    def test_env_vars_set_api_keys(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("{}")

        monkeypatch.setenv("COHERE_API_KEY", "cohere-key-123")
        monkeypatch.setenv("GROQ_API_KEY", "groq-key-456")

        config = load_config(config_file)
        assert config.cohere_api_key == "cohere-key-123"
        assert config.groq_api_key == "groq-key-456"

    def test_missing_api_keys_do_not_fail(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("COHERE_API_KEY", raising=False)
        monkeypatch.delenv("GROQ_API_KEY", raising=False)
        monkeypatch.setattr("textbook_rag.config.load_dotenv", lambda: False)

        config = load_config(tmp_path / "config.yaml")
        assert config.cohere_api_key is None
        assert config.groq_api_key is None

    def test_load_project_config_yaml(self) -> None:
        """Test loading the actual project config.yaml."""
        config = load_config(Path(__file__).parent.parent / "config.yaml")
        assert config.app.name == "Textbook RAG"
        assert config.storage.sqlite_path == "./db/rag.db"
        assert config.embedding.batch_size == 10


class TestSetupLogging:
    def test_configures_root_level(self) -> None:
        setup_logging(LoggingConfig(level="debug"))
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.DEBUG

        setup_logging(LoggingConfig(level="INFO"))
        assert logging.getLogger().level == logging.INFO
        assert logging.getLogger("httpx").level == logging.WARNING
