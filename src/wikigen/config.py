"""Runtime configuration loaded from WIKIGEN_* environment variables or .env.

A single WikiSettings instance is built at the edge (the CLI) and handed to
the service factory, which passes the relevant values into each constructor.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_EXCLUDED_FILES = [
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "npm-shrinkwrap.json",
    "poetry.lock",
    "Pipfile.lock",
    "Cargo.lock",
    "composer.lock",
    "*.lock",
    ".DS_Store",
    "Thumbs.db",
    "desktop.ini",
    "*.lnk",
    ".env",
    ".env.*",
    "*.env",
    ".gitignore",
    ".gitattributes",
    ".gitmodules",
    "*.min.js",
    "*.min.css",
    "*.bundle.js",
    "*.bundle.css",
    "*.map",
    "*.gz",
    "*.zip",
    "*.tar",
    "*.tgz",
    "*.rar",
    "*.pyc",
    "*.pyo",
    "*.pyd",
    "*.so",
    "*.dll",
    "*.class",
    "*.exe",
    "*.o",
    "*.a",
    "*.jpg",
    "*.jpeg",
    "*.png",
    "*.gif",
    "*.ico",
    "*.svg",
    "*.webp",
    "*.mp3",
    "*.mp4",
    "*.wav",
    "*.avi",
    "*.mov",
    "*.webm",
    "*.csv",
    "*.tsv",
    "*.xls",
    "*.xlsx",
    "*.db",
    "*.sqlite",
    "*.sqlite3",
    "*.pdf",
    "*.docx",
    "*.pptx",
    "*.ppt",
    "*.nupkg",
    "*.jar",
    "*.log",
]

DEFAULT_EXCLUDED_FOLDERS = [
    "venv",
    "env",
    "virtualenv",
    "node_modules",
    "bower_components",
    "jspm_packages",
    "__pycache__",
    "dist",
    "build",
    "out",
    "target",
    "bin",
    "obj",
    "_site",
    "logs",
    "log",
    "tmp",
    "temp",
]


class WikiSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="WIKIGEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_path: Path = Path(".wikigen/wiki.db")
    repositories_dir: Path = Path(".wikigen/repositories")
    vector_store_dir: Path = Path(".wikigen/semantic")

    llm_endpoint: str = "https://api.openai.com/v1"
    llm_api_key: str = ""
    llm_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 120.0
    llm_max_retries: int = Field(default=3, ge=0)
    llm_max_tokens: int = Field(default=8192, gt=0)
    llm_temperature: float = 0.5
    # Unusable answers (bad envelope, wrong version) are asked for again.
    generation_attempts: int = Field(default=3, ge=1)
    generation_retry_delay_seconds: float = Field(default=2.0, ge=0)
    generate_missing_readme: bool = True
    language: str = "English"

    # Bounded LLM fan-out per sync run.
    max_concurrent_generations: int = Field(default=3, ge=1)
    max_catalog_depth: int = Field(default=4, ge=1)
    max_file_size_bytes: int = 1024 * 1024
    max_excerpt_chars: int = 6000
    max_excerpt_files: int = 15
    excluded_files: list[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDED_FILES))
    excluded_folders: list[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDED_FOLDERS))

    git_timeout_seconds: float = 600.0

    update_interval_days: int = Field(default=5, ge=0)
    scheduler_poll_seconds: float = 60.0
    sync_stale_after_minutes: int = 180

    embedding_enabled: bool = False
    embedding_chunk_size: int = 512
    embedding_chunk_overlap: int = 50
