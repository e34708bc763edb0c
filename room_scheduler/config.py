from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
TRAVEL_FALLBACKS = ("default", "estimate")


@dataclass(frozen=True)
class MapsConfig:
    api_key: str


@dataclass(frozen=True)
class RuntimeConfig:
    artifact_root: Path
    distance_matrix_url: str
    http_timeout_s: float
    maps_language: str
    travel_default_minutes: int
    travel_fallback: str


@dataclass(frozen=True)
class SchedulingDefaults:
    min_hours_per_week: float
    num_weeks: int
    min_class_duration_minutes: int


def load_env(dotenv_path: str | Path | None = None) -> None:
    path = Path(dotenv_path) if dotenv_path else None
    if path and path.exists():
        load_dotenv(path)
        return
    load_dotenv()


def _env_number(name: str, default: str, cast):
    raw = os.getenv(name, default).strip() or default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from None


def runtime_config() -> RuntimeConfig:
    artifact_root = Path(os.getenv("ROOM_SCHEDULER_ARTIFACT_DIR", "./artifacts")).expanduser().resolve()
    artifact_root.mkdir(parents=True, exist_ok=True)
    fallback = os.getenv("ROOM_SCHEDULER_TRAVEL_FALLBACK", "default").strip().lower() or "default"
    if fallback not in TRAVEL_FALLBACKS:
        raise ValueError(f"Unknown travel fallback: {fallback!r}. Choose from {TRAVEL_FALLBACKS}")
    return RuntimeConfig(
        artifact_root=artifact_root,
        distance_matrix_url=os.getenv("ROOM_SCHEDULER_DISTANCE_MATRIX_URL", DEFAULT_DISTANCE_MATRIX_URL).rstrip("/"),
        http_timeout_s=_env_number("ROOM_SCHEDULER_HTTP_TIMEOUT", "30", float),
        maps_language=os.getenv("ROOM_SCHEDULER_MAPS_LANGUAGE", "ko"),
        travel_default_minutes=_env_number("ROOM_SCHEDULER_TRAVEL_DEFAULT_MINUTES", "60", int),
        travel_fallback=fallback,
    )


def maps_configured() -> bool:
    return bool(os.getenv("GOOGLE_MAPS_API_KEY", "").strip())


def get_maps_config() -> MapsConfig:
    api_key = os.getenv("GOOGLE_MAPS_API_KEY", "").strip()
    if not api_key:
        raise ValueError(
            "Missing distance-matrix credentials. Expected env var GOOGLE_MAPS_API_KEY. "
            "Without it travel times fall back to ROOM_SCHEDULER_TRAVEL_FALLBACK."
        )
    return MapsConfig(api_key=api_key)


def scheduling_defaults() -> SchedulingDefaults:
    return SchedulingDefaults(
        min_hours_per_week=_env_number("ROOM_SCHEDULER_MIN_HOURS_PER_WEEK", "3", float),
        num_weeks=_env_number("ROOM_SCHEDULER_NUM_WEEKS", "2", int),
        min_class_duration_minutes=_env_number("ROOM_SCHEDULER_MIN_CLASS_MINUTES", "60", int),
    )
