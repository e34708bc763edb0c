from __future__ import annotations

import logging
import math
from time import sleep
from typing import Any

import httpx

from scheduling_core.errors import TravelTimeLookupError
from scheduling_core.models import Location, TransportMode

from .config import DEFAULT_DISTANCE_MATRIX_URL

logger = logging.getLogger(__name__)

STATUS_OK = "OK"


class DistanceMatrixClient:
    """Distance-matrix HTTP client used as the travel-time backend.

    One request answers one origin against up to 25 destinations. Network
    failures and non-OK responses surface as TravelTimeLookupError so the
    travel-time provider can fall back.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = DEFAULT_DISTANCE_MATRIX_URL,
        language: str = "ko",
        timeout_s: float = 30.0,
        retries: int = 3,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.language = language
        self.retries = max(1, retries)
        self._http = httpx.Client(timeout=timeout_s, transport=transport)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "DistanceMatrixClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _request(self, params: dict[str, str]) -> httpx.Response:
        last_exc: Exception | None = None
        for attempt in range(self.retries):
            try:
                resp = self._http.get(self.base_url, params=params)
                if resp.status_code >= 500 and attempt < self.retries - 1:
                    logger.warning("distance matrix returned %d, retrying", resp.status_code)
                    sleep(2**attempt)
                    continue
                resp.raise_for_status()
                return resp
            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_exc = exc
                if attempt < self.retries - 1:
                    logger.warning("distance matrix request failed (%s), retrying", exc)
                    sleep(2**attempt)
                    continue
                raise
        if last_exc:
            raise last_exc
        raise RuntimeError("request failed without an explicit exception")

    def _params(self, origin: Location, destinations: list[Location], mode: TransportMode) -> dict[str, str]:
        return {
            "origins": origin.key,
            "destinations": "|".join(d.key for d in destinations),
            "mode": mode.value,
            "language": self.language,
            "key": self.api_key,
        }

    def durations(
        self,
        origin: Location,
        destinations: list[Location],
        mode: TransportMode,
    ) -> list[int | None]:
        """Travel minutes (rounded up) from ``origin`` to each destination, None where no route exists."""
        if not destinations:
            return []
        try:
            resp = self._request(self._params(origin, destinations, mode))
            payload = resp.json()
        except httpx.HTTPError as exc:
            raise TravelTimeLookupError(f"distance matrix request failed: {exc}") from exc
        except ValueError as exc:
            raise TravelTimeLookupError(f"distance matrix returned invalid JSON: {exc}") from exc

        status = payload.get("status") if isinstance(payload, dict) else None
        if status != STATUS_OK:
            message = payload.get("error_message", "") if isinstance(payload, dict) else ""
            detail = f": {message}" if message else ""
            raise TravelTimeLookupError(f"distance matrix status {status!r}{detail}")

        rows = payload.get("rows") or []
        elements = (rows[0].get("elements") or []) if rows else []
        minutes: list[int | None] = []
        for index in range(len(destinations)):
            element = elements[index] if index < len(elements) else {}
            duration = element.get("duration") or {}
            if element.get("status") != STATUS_OK or "value" not in duration:
                minutes.append(None)
                continue
            minutes.append(int(math.ceil(float(duration["value"]) / 60)))
        return minutes
