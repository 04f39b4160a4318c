"""Configuration management for the Spark parking service."""
from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

DEFAULT_OVERPASS_URL = "https://overpass-api.de/api/interpreter"
DEFAULT_NOMINATIM_URL = "https://nominatim.openstreetmap.org"
DEFAULT_USER_AGENT = "spark-parking/1.0"


@dataclass(frozen=True)
class SparkConfig:
    """Runtime settings for the upstream services and the parking lookup."""

    backend_url: str = ""
    backend_key: str = ""
    overpass_url: str = DEFAULT_OVERPASS_URL
    nominatim_url: str = DEFAULT_NOMINATIM_URL
    user_agent: str = DEFAULT_USER_AGENT
    search_radius: float = 1000.0
    result_limit: int = 30
    walking_speed: float = 5.0
    location_min_distance: float = 10.0
    http_timeout: float = 10.0
    session_ttl_hours: float = 8.0
    password_reset_redirect: str = "sparkapp://reset"

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "SparkConfig":
        """Create a :class:`SparkConfig` from raw dictionary data."""
        known = {field.name: field for field in fields(SparkConfig)}
        unknown = set(data.keys()) - known.keys()
        if unknown:
            raise ValueError(f"Unknown configuration fields: {', '.join(sorted(unknown))}")

        values: Dict[str, object] = {}
        for name, value in data.items():
            if value is None:
                continue
            values[name] = _coerce(name, known[name].type, value)

        config = SparkConfig(**values)
        config.validate()
        return config

    def validate(self) -> None:
        if self.search_radius <= 0:
            raise ValueError("search_radius must be positive")
        if self.result_limit < 1:
            raise ValueError("result_limit must be at least 1")
        if self.walking_speed <= 0:
            raise ValueError("walking_speed must be positive")
        if self.location_min_distance < 0:
            raise ValueError("location_min_distance must not be negative")
        if self.http_timeout <= 0:
            raise ValueError("http_timeout must be positive")
        if self.session_ttl_hours <= 0:
            raise ValueError("session_ttl_hours must be positive")


def _coerce(name: str, annotation: object, value: object) -> object:
    kind = str(annotation)
    try:
        if kind == "float":
            return float(value)  # type: ignore[arg-type]
        if kind == "int":
            return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid value for {name}: {value!r}") from exc
    return str(value).strip()


_ENV_OVERRIDES = {
    "SPARK_BACKEND_URL": "backend_url",
    "SPARK_BACKEND_KEY": "backend_key",
    "SPARK_OVERPASS_URL": "overpass_url",
    "SPARK_NOMINATIM_URL": "nominatim_url",
    "SPARK_USER_AGENT": "user_agent",
    "SPARK_SEARCH_RADIUS": "search_radius",
    "SPARK_RESULT_LIMIT": "result_limit",
    "SPARK_SESSION_TTL_HOURS": "session_ttl_hours",
    "SPARK_PASSWORD_RESET_REDIRECT": "password_reset_redirect",
}


def load_config(config_path: Optional[Path] = None, *, environ: Optional[Mapping[str, str]] = None) -> SparkConfig:
    """Load settings from a YAML file and apply ``SPARK_*`` environment overrides."""
    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = resolve_config_path(env.get("SPARK_CONFIG"))

    raw: Dict[str, object] = {}
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")
        raw.update(loaded)

    for variable, name in _ENV_OVERRIDES.items():
        value = env.get(variable)
        if value is not None and value.strip():
            raw[name] = value

    return SparkConfig.from_dict(raw)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "spark.yaml").resolve(strict=False)
    return candidate


__all__ = ["SparkConfig", "load_config", "resolve_config_path"]
