from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from .utils import now_utc_iso

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class VersionConflictError(RuntimeError):
    """The stored room changed since it was loaded."""

    def __init__(self, room_id: str, expected: int, actual: int):
        super().__init__(f"room {room_id}: expected version {expected}, found {actual}")
        self.room_id = room_id
        self.expected = expected
        self.actual = actual


def _json_dump(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, ensure_ascii=False)


def _json_load(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _checked_id(value: str, *, kind: str) -> str:
    value = str(value or "").strip()
    if not _SAFE_ID.match(value):
        raise ValueError(f"invalid {kind} id: {value!r}")
    return value


def room_root(artifact_root: Path) -> Path:
    path = artifact_root / "rooms"
    path.mkdir(parents=True, exist_ok=True)
    return path


def result_root(artifact_root: Path) -> Path:
    path = artifact_root / "results"
    path.mkdir(parents=True, exist_ok=True)
    return path


# ---- Rooms -----------------------------------------------------------------

def list_rooms(artifact_root: Path) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for path in sorted(room_root(artifact_root).glob("*.json")):
        try:
            room = _json_load(path)
        except (OSError, ValueError) as exc:
            logger.warning("skipping unreadable room file %s: %s", path.name, exc)
            continue
        rows.append(
            {
                "id": room.get("id", path.stem),
                "name": room.get("name", ""),
                "members": len(room.get("members") or []),
                "version": int(room.get("version") or 0),
                "updated_at": room.get("updated_at"),
            }
        )
    return rows


def load_room(artifact_root: Path, room_id: str) -> dict[str, Any]:
    path = room_root(artifact_root) / f"{_checked_id(room_id, kind='room')}.json"
    if not path.exists():
        raise FileNotFoundError(f"room not found: {room_id}")
    room = _json_load(path)
    room.setdefault("version", 0)
    return room


def save_room(
    artifact_root: Path,
    room: dict[str, Any],
    *,
    expected_version: int | None = None,
) -> dict[str, Any]:
    """Write a room, bumping its version.

    With ``expected_version`` the write only happens when the stored version
    still matches; otherwise VersionConflictError is raised.
    """
    room_id = _checked_id(room.get("id"), kind="room")
    path = room_root(artifact_root) / f"{room_id}.json"
    current = int(_json_load(path).get("version") or 0) if path.exists() else 0
    if expected_version is not None and int(expected_version) != current:
        raise VersionConflictError(room_id, int(expected_version), current)

    stored = dict(room)
    stored["version"] = current + 1
    stored["updated_at"] = now_utc_iso()
    _json_dump(path, stored)
    return stored


# ---- Results ---------------------------------------------------------------

def save_result(artifact_root: Path, result: dict[str, Any], *, room_id: str | None = None) -> Path:
    root = result_root(artifact_root)
    rid = _checked_id(result["run_id"], kind="run")
    target = root / rid
    target.mkdir(parents=True, exist_ok=True)
    _json_dump(target / "result.json", result)

    assignments = result.get("assignments") or {}
    options = result.get("options") or {}
    manifest = {
        "run_id": rid,
        "room_id": room_id,
        "generated_at": result.get("generated_at"),
        "start_date": options.get("start_date"),
        "num_weeks": options.get("num_weeks"),
        "transport_mode": options.get("transport_mode"),
        "counts": {
            "members": len(assignments),
            "assigned_slots": sum(int(a.get("assigned_slot_count") or 0) for a in assignments.values()),
            "warnings": len(result.get("warnings") or []),
            "carry_over_entries": len(result.get("carry_over_entries") or []),
        },
        "path": str(target.resolve()),
    }
    _json_dump(target / "manifest.json", manifest)
    _json_dump(root / "latest.json", manifest)
    return target


def list_results(
    artifact_root: Path,
    limit: int = 20,
    *,
    room_id: str | None = None,
) -> list[dict[str, Any]]:
    manifests: list[dict[str, Any]] = []
    for child in result_root(artifact_root).iterdir():
        if not child.is_dir():
            continue
        manifest_file = child / "manifest.json"
        if not manifest_file.exists():
            continue
        try:
            manifest = _json_load(manifest_file)
        except (OSError, ValueError) as exc:
            logger.warning("skipping unreadable result manifest %s: %s", child.name, exc)
            continue
        if room_id and manifest.get("room_id") != room_id:
            continue
        manifests.append(manifest)
    manifests.sort(key=lambda row: row.get("generated_at") or "", reverse=True)
    return manifests[:limit]


def load_result(artifact_root: Path, run_id: str | None = None) -> dict[str, Any]:
    root = result_root(artifact_root)
    if run_id:
        manifest_path = root / _checked_id(run_id, kind="run") / "manifest.json"
    else:
        manifest_path = root / "latest.json"
    if not manifest_path.exists():
        raise FileNotFoundError("result manifest not found")
    manifest = _json_load(manifest_path)
    rid = manifest["run_id"]
    path = root / rid / "result.json"
    if not path.exists():
        raise FileNotFoundError(f"result payload not found: {rid}")
    result = _json_load(path)
    result.setdefault("room_id", manifest.get("room_id"))
    return result
