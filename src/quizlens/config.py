"""Configuration helpers for the Quizlens application."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Final, TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .observability import MetricsRecorder

load_dotenv()

_DEFAULT_DATA_DIR: Final[str] = "data"
_DEFAULT_DATABASE_PATH: Final[str] = "data/quizlens.sqlite"
_DEFAULT_USER_ID: Final[str] = "default-user"
_DEFAULT_PROGRESS_RECENT_LIMIT: Final[int] = 10
_DEFAULT_PROGRESS_CHART_TITLE_CHARS: Final[int] = 20
_DEFAULT_OBSERVABILITY_NAMESPACE: Final[str] = "quizlens"


def _env_optional_bool(name: str) -> bool | None:
    """Read an optional boolean environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    msg = f"Environment variable {name} must be a boolean value (true/false)."
    raise ValueError(msg)


def _env_optional_int(name: str) -> int | None:
    """Read an optional integer environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean environment variable with a fallback."""

    value = _env_optional_bool(name)
    if value is None:
        return default
    return value


def _env_int(name: str, default: int, *, min_value: int = 0) -> int:
    value = _env_optional_int(name)
    if value is None:
        return default
    return max(min_value, value)


@dataclass(slots=True)
class Settings:
    """Runtime settings loaded from environment variables."""

    data_dir: str = _DEFAULT_DATA_DIR
    database_path: str = _DEFAULT_DATABASE_PATH
    default_user_id: str = _DEFAULT_USER_ID
    require_user_id: bool = False
    progress_recent_limit: int = _DEFAULT_PROGRESS_RECENT_LIMIT
    progress_chart_title_chars: int = _DEFAULT_PROGRESS_CHART_TITLE_CHARS
    observability_metrics_enabled: bool = True
    observability_namespace: str = _DEFAULT_OBSERVABILITY_NAMESPACE
    observability_prometheus_enabled: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings by reading environment variables."""

        data_dir = os.getenv("DATA_DIR", _DEFAULT_DATA_DIR)
        database_path = os.getenv("DATABASE_PATH") or str(Path(data_dir) / "quizlens.sqlite")

        return cls(
            data_dir=data_dir,
            database_path=database_path,
            default_user_id=(os.getenv("DEFAULT_USER_ID") or _DEFAULT_USER_ID).strip(),
            require_user_id=_env_bool("REQUIRE_USER_ID", False),
            progress_recent_limit=_env_int(
                "PROGRESS_RECENT_LIMIT", _DEFAULT_PROGRESS_RECENT_LIMIT, min_value=1
            ),
            progress_chart_title_chars=_env_int(
                "PROGRESS_CHART_TITLE_CHARS", _DEFAULT_PROGRESS_CHART_TITLE_CHARS, min_value=1
            ),
            observability_metrics_enabled=_env_bool("OBSERVABILITY_METRICS_ENABLED", True),
            observability_namespace=os.getenv(
                "OBSERVABILITY_NAMESPACE", _DEFAULT_OBSERVABILITY_NAMESPACE
            ),
            observability_prometheus_enabled=_env_bool("OBSERVABILITY_PROMETHEUS_ENABLED", False),
        )

    def database_file(self) -> Path:
        return Path(self.database_path).resolve()

    def resolve_user_id(self, user_id: str | None) -> str | None:
        """Return the effective user id, or ``None`` when one is required but missing."""

        normalized = (user_id or "").strip()
        if normalized:
            return normalized
        if self.require_user_id:
            return None
        return self.default_user_id

    def build_metrics_recorder(self) -> "MetricsRecorder":
        from .observability import MetricsRecorder

        return MetricsRecorder(
            enabled=self.observability_metrics_enabled,
            namespace=self.observability_namespace,
            prometheus_enabled=self.observability_prometheus_enabled,
        )


__all__ = ["Settings"]
