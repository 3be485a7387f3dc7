"""Consolidation job configuration.

Values come from environment variables (optionally loaded from a ``.env``
file by the entry point) and are passed explicitly into the job, so two
invocations never share hidden state.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".linz"
DEFAULT_MODEL = "llama-3.1-70b-versatile"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class ConsolidationConfig:
    """Settings for one consolidation job cycle.

    Attributes:
        db_path: SQLite database holding short-term records and facts.
        window_hours: Lookback window for unconsolidated conversations.
        batch_limit: Maximum conversation records loaded per cycle.
        retention_hours: Age after which consolidated records are purged.
        model: Extraction model identifier.
        api_key: Credential for the extraction model.
        request_timeout: Seconds to wait for one extraction call.
        default_confidence: Confidence stored when the model gives none.
        enabled: Whether the scheduler should run the job at all.
        interval_minutes: Minutes between scheduled cycles.
        log_dir: Directory for the JSONL event log.
    """

    db_path: Path | None = None
    window_hours: float = 6
    batch_limit: int = 500
    retention_hours: float = 6
    model: str = DEFAULT_MODEL
    api_key: str | None = None
    request_timeout: float = 60.0
    default_confidence: float = 0.9
    enabled: bool = False
    interval_minutes: int = 60
    log_dir: Path | None = None

    def __post_init__(self) -> None:
        """Validate config and set defaults."""
        if self.db_path is None:
            self.db_path = DEFAULT_HOME / "memory.db"

        if self.log_dir is None:
            self.log_dir = DEFAULT_HOME / "logs"

        if self.window_hours <= 0:
            raise ValueError("window_hours must be positive")
        if self.batch_limit < 1:
            raise ValueError("batch_limit must be at least 1")
        if self.retention_hours <= 0:
            raise ValueError("retention_hours must be positive")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        if not 0 <= self.default_confidence <= 1:
            raise ValueError("default_confidence must be between 0 and 1")
        if self.interval_minutes < 1:
            raise ValueError("interval_minutes must be at least 1")

    def require_api_key(self) -> str:
        """Return the model credential or raise ConfigurationError."""
        if not self.api_key:
            raise ConfigurationError(
                "GROQ_API_KEY is not configured; unable to run consolidation."
            )
        return self.api_key


def _read_number(env: Mapping[str, str], name: str, default: float, cast: type) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def config_from_env(environ: Mapping[str, str] | None = None) -> ConsolidationConfig:
    """Load configuration from environment variables.

    Args:
        environ: Mapping to read from. Uses ``os.environ`` if None.

    Returns:
        ConsolidationConfig instance with loaded values.

    Raises:
        ConfigurationError: If a value cannot be parsed or is out of range.
    """
    env = os.environ if environ is None else environ

    db_path = env.get("LINZ_DB_PATH")
    log_dir = env.get("LINZ_LOG_DIR")

    try:
        config = ConsolidationConfig(
            db_path=Path(db_path).expanduser() if db_path else None,
            window_hours=_read_number(env, "LINZ_WINDOW_HOURS", 6, float),
            batch_limit=int(_read_number(env, "LINZ_BATCH_LIMIT", 500, int)),
            retention_hours=_read_number(env, "LINZ_RETENTION_HOURS", 6, float),
            model=env.get("LINZ_CONSOLIDATION_MODEL") or DEFAULT_MODEL,
            api_key=env.get("GROQ_API_KEY") or None,
            request_timeout=_read_number(env, "LINZ_REQUEST_TIMEOUT", 60.0, float),
            enabled=env.get("ENABLE_LINZ_CONSOLIDATION_JOB", "false").strip().lower()
            in _TRUE_VALUES,
            interval_minutes=int(_read_number(env, "LINZ_INTERVAL_MINUTES", 60, int)),
            log_dir=Path(log_dir).expanduser() if log_dir else None,
        )
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    logger.debug(
        "Loaded consolidation config: db=%s window=%sh limit=%s retention=%sh model=%s",
        config.db_path,
        config.window_hours,
        config.batch_limit,
        config.retention_hours,
        config.model,
    )
    return config
