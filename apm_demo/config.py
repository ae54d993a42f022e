"""Configuration management for the APM demo service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

import yaml

from .database import resolve_database_path

_ENVIRONMENTS = {"development", "production", "test"}
_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}

# Environment variable -> ServiceConfig field
_ENV_OVERRIDES: Tuple[Tuple[str, str], ...] = (
    ("APM_DEMO_HOST", "host"),
    ("PORT", "port"),
    ("APM_DEMO_DB_PATH", "database_path"),
    ("APM_DEMO_ENV", "environment"),
    ("LOG_LEVEL", "log_level"),
    ("APM_DEMO_CORS_ORIGINS", "cors_origins"),
    ("APM_DEMO_SEED", "seed_sample_data"),
)


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _non_negative_int(data: Mapping[str, object], key: str, default: int) -> int:
    raw = data.get(key, default)
    try:
        value = int(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Configuration field '{key}' must be an integer") from exc
    if value < 0:
        raise ValueError(f"Configuration field '{key}' must not be negative")
    return value


@dataclass(frozen=True)
class ServiceConfig:
    """Runtime settings for the HTTP service and its demo endpoints."""

    host: str = "0.0.0.0"
    port: int = 3000
    database_path: Path = field(default_factory=lambda: resolve_database_path(None))
    environment: str = "production"
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    seed_sample_data: bool = True
    default_slow_delay_ms: int = 3000
    max_delay_ms: int = 60_000
    default_allocation_size: int = 1_000_000
    max_allocation_size: int = 5_000_000
    external_call_delay_ms: int = 1500
    complex_step_delay_ms: int = 500

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "ServiceConfig":
        """Create a :class:`ServiceConfig` from raw dictionary data."""

        known = {item.name for item in fields(ServiceConfig)}
        unknown = set(data.keys()) - known
        if unknown:
            raise ValueError(f"Unknown configuration fields: {', '.join(sorted(unknown))}")

        defaults = ServiceConfig()

        raw_db_path = data.get("database_path")
        if raw_db_path:
            candidate = Path(str(raw_db_path)).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            database_path = candidate.resolve(strict=False)
        else:
            database_path = defaults.database_path

        environment = str(data.get("environment", defaults.environment)).strip().lower()
        if environment not in _ENVIRONMENTS:
            raise ValueError(
                f"Unsupported environment '{environment}'. Expected one of: {', '.join(sorted(_ENVIRONMENTS))}"
            )

        log_level = str(data.get("log_level", defaults.log_level)).strip().upper()
        if log_level not in _LOG_LEVELS:
            raise ValueError(f"Unsupported log level '{log_level}'")

        raw_origins = data.get("cors_origins", defaults.cors_origins)
        if isinstance(raw_origins, str):
            origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
        else:
            origins = [str(origin).strip() for origin in raw_origins or [] if str(origin).strip()]  # type: ignore[union-attr]

        raw_seed = data.get("seed_sample_data", defaults.seed_sample_data)
        seed = _env_flag(raw_seed, True) if isinstance(raw_seed, str) else bool(raw_seed)

        port = _non_negative_int(data, "port", defaults.port)
        if not 0 < port <= 65535:
            raise ValueError("Configuration field 'port' must be between 1 and 65535")

        return ServiceConfig(
            host=str(data.get("host", defaults.host)),
            port=port,
            database_path=database_path,
            environment=environment,
            log_level=log_level,
            cors_origins=origins or ["*"],
            seed_sample_data=seed,
            default_slow_delay_ms=_non_negative_int(data, "default_slow_delay_ms", defaults.default_slow_delay_ms),
            max_delay_ms=_non_negative_int(data, "max_delay_ms", defaults.max_delay_ms),
            default_allocation_size=_non_negative_int(
                data, "default_allocation_size", defaults.default_allocation_size
            ),
            max_allocation_size=_non_negative_int(data, "max_allocation_size", defaults.max_allocation_size),
            external_call_delay_ms=_non_negative_int(
                data, "external_call_delay_ms", defaults.external_call_delay_ms
            ),
            complex_step_delay_ms=_non_negative_int(data, "complex_step_delay_ms", defaults.complex_step_delay_ms),
        )


def _environment_overrides(environ: Mapping[str, str]) -> Dict[str, object]:
    overrides: Dict[str, object] = {}
    for variable, key in _ENV_OVERRIDES:
        value = environ.get(variable)
        if value is not None and value.strip():
            overrides[key] = value.strip()
    return overrides


def load_service_config(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> ServiceConfig:
    """Load settings from a YAML file (if present) and apply environment overrides."""

    env = os.environ if environ is None else environ
    explicit = config_path is not None or bool(env.get("APM_DEMO_CONFIG"))
    path = config_path or resolve_config_path(env.get("APM_DEMO_CONFIG"))

    raw: Dict[str, object] = {}
    base_path: Path | None = None
    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        raw.update(loaded)
        base_path = path.parent
    elif explicit:
        raise FileNotFoundError(f"Configuration file {path} does not exist")

    overrides = _environment_overrides(env)
    if "database_path" in overrides:
        # Paths from the environment are resolved against the working directory.
        raw["database_path"] = str(resolve_database_path(str(overrides.pop("database_path"))))
    raw.update(overrides)
    return ServiceConfig.from_dict(raw, base_path=base_path)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "service.yaml").resolve(strict=False)
    return candidate


__all__ = ["ServiceConfig", "load_service_config", "resolve_config_path"]
