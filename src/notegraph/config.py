"""Configuration module for the notegraph knowledge base."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the default log directory
_USER_ENV = Path.home() / ".notegraph" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

# Result-size and content-length limits
LIST_SNIPPET_CHARS = 300
SEARCH_RESULT_LIMIT = 50
INCLUDE_ALL_LIMIT = 50
CONTEXT_CONTENT_CHARS = 4000
DEFAULT_TOP_K = 5


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class NotegraphConfig(BaseModel):
    """Configuration for the knowledge base and its generation backend."""

    # Base directory that relative paths are resolved against
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTEGRAPH_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTEGRAPH_DATABASE_PATH", "data/notes.db")
        )
    )
    # When True the store lives in a throwaway file removed on close
    in_memory_db: bool = Field(
        default_factory=lambda: _env_flag("NOTEGRAPH_IN_MEMORY_DB", "false")
    )
    # Text-generation backend (Ollama-compatible /api/generate)
    ollama_url: str = Field(
        default_factory=lambda: os.getenv("OLLAMA_URL", "http://localhost:11434")
    )
    ollama_model: str = Field(
        default_factory=lambda: os.getenv("OLLAMA_MODEL", "llama3:latest")
    )
    # Seconds to wait for the generation backend before giving up
    generation_timeout: float = Field(
        default_factory=lambda: float(
            os.getenv("NOTEGRAPH_GENERATION_TIMEOUT", "120")
        )
    )
    # Logging configuration
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTEGRAPH_LOG_DIR"))
            if os.getenv("NOTEGRAPH_LOG_DIR")
            else None
        )
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("NOTEGRAPH_LOG_LEVEL", "INFO")
    )

    @model_validator(mode="after")
    def _validate_generation_config(self) -> "NotegraphConfig":
        """Reject settings the generation client cannot work with."""
        if self.generation_timeout <= 0:
            raise ValueError("generation_timeout must be > 0")
        if not self.ollama_url.startswith(("http://", "https://")):
            raise ValueError("ollama_url must be an http:// or https:// URL")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self, scratch_dir: Optional[Path] = None) -> str:
        """Get the database URL for SQLite.

        With ``in_memory_db`` the database file is placed in ``scratch_dir``,
        a temporary directory owned by the caller.
        """
        if self.in_memory_db:
            if scratch_dir is None:
                raise ValueError("in_memory_db requires a scratch directory")
            return f"sqlite:///{Path(scratch_dir) / 'notes.db'}"
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Default config instance used by the command line entry point
config = NotegraphConfig()
