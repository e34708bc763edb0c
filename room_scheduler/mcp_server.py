"""room-scheduler MCP server.

Exposes tools for room persistence, automatic slot scheduling (via
scheduling_core), result evaluation, and writing results back to rooms.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from scheduling_core import InMemoryTravelTimeCache, TravelTimeProvider, run_schedule

from .config import get_maps_config, load_env, maps_configured, runtime_config, scheduling_defaults
from .distance_client import DistanceMatrixClient
from .ingest import build_schedule_inputs
from .storage import (
    list_results as _list_results,
    list_rooms as _list_rooms,
    load_result as _load_result,
    load_room as _load_room,
    save_result as _save_result,
    save_room as _save_room,
)
from .summary import evaluate_result as _evaluate_result, format_decision_log
from .transactions import apply_result_to_room

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "room-scheduler",
    host=os.getenv("HOST", "127.0.0.1"),
    port=int(os.getenv("PORT", "8000")),
    instructions=(
        "Automatic 10-minute slot scheduling for shared rooms. "
        "Loads rooms, assigns members by preferred time or by travel order, "
        "defers unmet hours as carry-over, and writes results back to rooms."
    ),
)

_ENV_FILE: str | None = None
_TRAVEL_CACHE = InMemoryTravelTimeCache()
_DISTANCE_CLIENT: DistanceMatrixClient | None = None

DECISION_LOG_LIMIT = 200


def _artifact_root() -> Path:
    load_env(_ENV_FILE or os.getenv("ROOM_SCHEDULER_ENV_FILE"))
    return runtime_config().artifact_root


def _travel_provider() -> TravelTimeProvider:
    global _DISTANCE_CLIENT
    load_env(_ENV_FILE or os.getenv("ROOM_SCHEDULER_ENV_FILE"))
    cfg = runtime_config()
    if _DISTANCE_CLIENT is None and maps_configured():
        _DISTANCE_CLIENT = DistanceMatrixClient(
            api_key=get_maps_config().api_key,
            base_url=cfg.distance_matrix_url,
            language=cfg.maps_language,
            timeout_s=cfg.http_timeout_s,
        )
    if _DISTANCE_CLIENT is None:
        logger.warning("GOOGLE_MAPS_API_KEY not set, travel times use the %s fallback", cfg.travel_fallback)
    return TravelTimeProvider(
        _DISTANCE_CLIENT,
        cache=_TRAVEL_CACHE,
        default_minutes=cfg.travel_default_minutes,
        estimate_on_failure=cfg.travel_fallback == "estimate",
    )


def _summary(result: dict[str, Any]) -> dict[str, Any]:
    summary = {k: v for k, v in result.items() if k != "events"}
    summary["decision_log"] = format_decision_log(result.get("events") or [])[:DECISION_LOG_LIMIT]
    return summary


# -- Rooms --

@mcp.tool()
def list_rooms() -> list[dict[str, Any]]:
    """List stored rooms with member count and version."""
    return _list_rooms(_artifact_root())


@mcp.tool()
def load_room(room_id: str) -> dict[str, Any]:
    """Load a full room document by ID."""
    return _load_room(_artifact_root(), room_id)


@mcp.tool()
def save_room(room_json: str, expected_version: int | None = None) -> dict[str, Any]:
    """Store a room document given as a JSON string.

    With expected_version the save fails if the room changed in the meantime.
    Returns the room id and its new version.
    """
    room = json.loads(room_json)
    stored = _save_room(_artifact_root(), room, expected_version=expected_version)
    return {"room_id": stored["id"], "version": stored["version"], "updated_at": stored["updated_at"]}


# -- Scheduling --

@mcp.tool()
def run_auto_schedule(
    room_id: str,
    start_date: str | None = None,
    num_weeks: int | None = None,
    min_hours_per_week: float | None = None,
    assignment_mode: str | None = None,
    transport_mode: str | None = None,
    range_start: str | None = None,
    range_end: str | None = None,
    deferred_json: str | None = None,
    apply: bool = False,
) -> dict[str, Any]:
    """Run automatic scheduling for a room and store the result.

    Options left empty come from the room settings, then from the env
    defaults. deferred_json is a JSON list of {member_id, needed_hours}
    placed before the main pass. With apply=True the new slots and
    carry-over are written to the room under optimistic concurrency.
    """
    root = _artifact_root()
    room = _load_room(root, room_id)
    overrides: dict[str, Any] = {
        "start_date": start_date,
        "num_weeks": num_weeks,
        "min_hours_per_week": min_hours_per_week,
        "assignment_mode": assignment_mode,
        "transport_mode": transport_mode,
        "range_start": range_start,
        "range_end": range_end,
    }
    if deferred_json:
        overrides["deferred"] = json.loads(deferred_json)
    inputs = build_schedule_inputs(room, overrides, defaults=scheduling_defaults())

    provider = _travel_provider() if inputs.options.transport_mode.uses_travel else None
    result = run_schedule(
        inputs.members,
        inputs.owner,
        inputs.options,
        inputs.room_settings,
        travel_time_provider=provider,
        existing_slots=inputs.existing_slots,
        deferred=inputs.deferred,
    ).to_dict()
    result["room_id"] = room_id
    target = _save_result(root, result, room_id=room_id)

    summary = _summary(result)
    summary["path"] = str(target)
    if apply:
        summary["applied"] = apply_result_to_room(root, room_id, result)
    return summary


# -- Result CRUD --

@mcp.tool()
def list_results(limit: int = 20, room_id: str | None = None) -> list[dict[str, Any]]:
    """List stored schedule result manifests, newest first."""
    return _list_results(_artifact_root(), limit=limit, room_id=room_id)


@mcp.tool()
def load_result(run_id: str | None = None) -> dict[str, Any]:
    """Load a full schedule result by run ID (or latest if omitted)."""
    return _load_result(_artifact_root(), run_id=run_id)


@mcp.tool()
def evaluate_result(run_id: str | None = None) -> dict[str, Any]:
    """Quality metrics for a result: fill rate, fairness, warnings, carry-over.

    Uses the latest result if run_id is omitted.
    """
    return _evaluate_result(_load_result(_artifact_root(), run_id=run_id))


@mcp.tool()
def apply_result(run_id: str, room_id: str | None = None) -> dict[str, Any]:
    """Write a stored result's slots and carry-over onto its room.

    Applying the same run twice changes nothing.
    """
    root = _artifact_root()
    result = _load_result(root, run_id=run_id)
    target_room = room_id or result.get("room_id")
    if not target_room:
        raise ValueError(f"result {run_id} has no room_id; pass room_id explicitly")
    return apply_result_to_room(root, target_room, result)


# -- Server entrypoints --

async def _run_http() -> None:
    import uvicorn
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.responses import JSONResponse, PlainTextResponse
    from starlette.routing import Route

    api_key = os.getenv("MCP_API_KEY")

    class BearerAuth(BaseHTTPMiddleware):
        async def dispatch(self, request, call_next):
            if request.url.path == "/health":
                return await call_next(request)
            auth = request.headers.get("authorization", "")
            if not auth.startswith("Bearer ") or auth[7:] != api_key:
                return JSONResponse({"error": "unauthorized"}, status_code=401)
            return await call_next(request)

    app = mcp.streamable_http_app()
    if api_key:
        app.add_middleware(BearerAuth)
    app.routes.append(Route("/health", lambda r: PlainTextResponse("ok")))

    config = uvicorn.Config(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
        log_level="info",
    )
    await uvicorn.Server(config).serve()


def main() -> None:
    global _ENV_FILE

    parser = argparse.ArgumentParser(description="Run the room-scheduler MCP server")
    parser.add_argument("--env-file", default=None, help="Path to .env file")
    parser.add_argument(
        "--transport",
        default=None,
        choices=["stdio", "sse", "streamable-http"],
        help="MCP transport (default: streamable-http when PORT is set, else stdio)",
    )
    args = parser.parse_args()
    _ENV_FILE = args.env_file
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

    transport = args.transport or ("streamable-http" if os.getenv("PORT") else "stdio")
    if transport == "streamable-http":
        import anyio
        anyio.run(_run_http)
    else:
        mcp.run(transport=transport)


if __name__ == "__main__":
    main()
