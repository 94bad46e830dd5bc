from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "change-me-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment with defaults.

    Environment variable mapping follows pydantic-settings rules (e.g. APP_NAME,
    ENVIRONMENT, DATA_DIR, DB_FILENAME, JWT_SECRET, MASK_FOREIGN_EXPENSES).
    """

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore"
    )

    # Basic app metadata
    app_name: str = "Expense Manager API"
    debug: bool = False
    version: str = "1.0.0"
    environment: Literal["development", "production", "test"] = "development"
    api_prefix: str = "/v1"

    # Data & persistence
    data_dir: Path = Path("data")
    db_filename: str = "expenses.sqlite3"
    db_path: Optional[Path] = None  # derived if not provided
    db_busy_timeout_seconds: float = 5.0

    # Credentials / tokens
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    token_ttl_seconds: int = 3600  # 1 hour
    bcrypt_rounds: int = 12

    # HTTP
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Expense rules
    max_batch_size: int = 50
    # Answer 404 instead of 403 when an id belongs to another owner
    mask_foreign_expenses: bool = False

    def init_post_load(self) -> None:
        """Finalize derived fields and ensure directories exist."""
        if self.db_path is None:
            self.db_path = self.data_dir / self.db_filename
        self.data_dir.mkdir(parents=True, exist_ok=True)
        if self.environment == "production" and self.jwt_secret == DEFAULT_JWT_SECRET:
            raise ValueError("JWT_SECRET must be set when ENVIRONMENT=production")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError(f"bcrypt_rounds out of range: {self.bcrypt_rounds}")

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    settings.init_post_load()
    return settings
