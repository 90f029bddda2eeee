import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def load_env() -> None:
    """Load .env from the working directory if present.

    Variables already set in the environment win over the file.
    """
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=False)


@dataclass(frozen=True)
class Settings:
    db_path: Path
    log_level: str
    log_dir: Path
    notify_url: Optional[str]
    scoring_url: Optional[str]
    scoring_api_key: Optional[str]
    http_timeout: float


def load_settings() -> Settings:
    """Build Settings from PLACEMENTS_* environment variables."""
    timeout = os.getenv("PLACEMENTS_HTTP_TIMEOUT", "15")
    try:
        http_timeout = float(timeout)
    except ValueError:
        raise SystemExit(f"PLACEMENTS_HTTP_TIMEOUT must be a number of seconds, got {timeout!r}")

    return Settings(
        db_path=Path(os.getenv("PLACEMENTS_DB", "data/placements.db")),
        log_level=os.getenv("PLACEMENTS_LOG_LEVEL", "INFO"),
        log_dir=Path(os.getenv("PLACEMENTS_LOG_DIR", "logs")),
        notify_url=os.getenv("PLACEMENTS_NOTIFY_URL") or None,
        scoring_url=os.getenv("PLACEMENTS_SCORING_URL") or None,
        scoring_api_key=os.getenv("PLACEMENTS_SCORING_API_KEY") or None,
        http_timeout=http_timeout,
    )
