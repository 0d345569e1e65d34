from __future__ import annotations

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

REPO_ROOT = Path(__file__).resolve().parents[2]
ENV_FILE = REPO_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE), env_file_encoding="utf-8", extra="ignore"
    )

    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # persistence directory (defaults to ~/.placebuddy-data)
    DATA_DIR: Path | None = None
    DATABASE_URL: str | None = None

    # CORS allow origins (comma-separated). Default empty (no cross-origin).
    CORS_ALLOW_ORIGINS: str = ""

    # Rate limiting (per hashed anonymous user)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_REQUESTS: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    # Salt for hashing anonymous client ids before they reach logs or storage
    ANON_ID_SALT: str = "placebuddy-dev-salt"

    # Remote tool catalog (JSON-RPC tools/list + tools/call)
    MCP_URL: str | None = None
    MCP_API_KEY: str | None = None
    MCP_TIMEOUT_SECONDS: float = 10.0
    MCP_TOOLS_TTL_SECONDS: float = 300.0
    MCP_RETRY_DELAY_SECONDS: float = 0.4

    # Language model
    OPENAI_API_KEY: str | None = None
    OPENAI_API_BASE: str = "https://api.openai.com/v1"
    OPENAI_CONNECT_TIMEOUT_SECONDS: float = 5.0
    LLM_ENABLED: bool = True
    LLM_MODEL: str = "gpt-4o-mini"
    CLASSIFIER_TIMEOUT_SECONDS: float = 1.5
    NARRATION_ENABLED: bool = True
    NARRATION_TIMEOUT_SECONDS: float = 2.8

    # Search
    DEFAULT_RADIUS_METERS: int = 1500
    MIN_RADIUS_METERS: int = 500
    MAX_RADIUS_METERS: int = 10_000
    RADIUS_LADDER: str = "3000,8000"
    MAX_DISTANCE_METERS: float = 3000.0
    MAX_RESULTS: int = 20
    DETAILS_LOOKUP_LIMIT: int = 3
    GEOCODE_CACHE_TTL_SECONDS: float = 600.0
    DEFAULT_REGION_HINT: str = "Yangon, Myanmar"

    # Per-turn deadlines
    TURN_TIMEOUT_SECONDS: float = 12.0
    TURN_EXTENDED_TIMEOUT_SECONDS: float = 25.0

    # A pending "where are you?" prompt is forgotten after this long
    PENDING_TTL_SECONDS: int = 900

    # Observability
    SENTRY_DSN: str | None = None
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_RELEASE: str | None = None
    SENTRY_TRACES_SAMPLE_RATE: float = 0.2

    @property
    def allow_origins(self) -> list[str]:
        s = (self.CORS_ALLOW_ORIGINS or "").strip()
        if s == "*":
            return ["*"]
        if s == "":
            return []
        return [part.strip() for part in s.split(",") if part.strip()]

    @property
    def data_dir(self) -> Path:
        # Blank DATA_DIR values count as unset; Path("") would point at the CWD.
        def _materialize(path: Path) -> Path:
            path.mkdir(parents=True, exist_ok=True)
            return path

        raw_env = os.getenv("DATA_DIR")
        if raw_env is not None:
            trimmed = raw_env.strip()
            if trimmed:
                return _materialize(Path(trimmed).expanduser().resolve())
            return _materialize(Path.home() / ".placebuddy-data")

        if self.DATA_DIR is not None:
            candidate = Path(self.DATA_DIR).expanduser()
            candidate_str = str(candidate).strip()
            if candidate_str and candidate_str not in {".", "./", ".\\"}:
                return _materialize(candidate.resolve())
        return _materialize(Path.home() / ".placebuddy-data")

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        default_path = self.data_dir / "placebuddy.db"
        return f"sqlite:///{default_path}"

    @property
    def async_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///"):
            return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

    @property
    def mcp_url(self) -> str | None:
        # Values pasted from dashboards often arrive wrapped in quotes.
        raw = (self.MCP_URL or "").strip().strip('"').strip()
        return raw or None

    @property
    def llm_available(self) -> bool:
        return bool(self.LLM_ENABLED and self.OPENAI_API_KEY)

    @property
    def radius_ladder(self) -> list[int]:
        steps: list[int] = []
        for part in (self.RADIUS_LADDER or "").split(","):
            part = part.strip()
            if not part:
                continue
            try:
                steps.append(int(float(part)))
            except ValueError:
                continue
        return steps


settings = Settings()
