import logging
from dataclasses import dataclass, field
from typing import Any

import requests

from config import PLACEHOLDER_API_KEY
from errors import ConfigurationError, UpstreamError
from services.cache import CostCache, make_key
from services.polyline import decode_polyline

logger = logging.getLogger(__name__)

DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"
GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"

MODES = ("driving", "walking", "transit")
MAX_ROUTES = 3  # Directions API returns at most 3 routes per request

# Two routes closer than this are considered the same route
SAME_ROUTE_SECONDS = 30
SAME_ROUTE_METERS = 500


@dataclass
class RouteMeasurement:
    route_index: int
    duration_seconds: int | None
    distance_meters: int | None
    summary: str | None = None
    steps: list[dict[str, Any]] = field(default_factory=list)
    points: list[tuple[float, float]] = field(default_factory=list)

    def details(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "steps": self.steps,
            "points": [list(p) for p in self.points],
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "route_index": self.route_index,
            "duration_seconds": self.duration_seconds,
            "distance_meters": self.distance_meters,
            **self.details(),
        }


def resolve_mode(mode: str | None) -> str:
    return mode if mode in MODES else "driving"


def is_coordinate_pair(text: str | None) -> bool:
    try:
        parts = (text or "").split(",")
        if len(parts) != 2:
            return False
        lat, lng = map(float, parts)
        return -90 <= lat <= 90 and -180 <= lng <= 180
    except ValueError:
        return False


def _value(obj: dict | None) -> int | None:
    if not obj:
        return None
    return obj.get("value")


def parse_route(raw: dict[str, Any], route_index: int, mode: str) -> RouteMeasurement:
    leg = (raw.get("legs") or [{}])[0]

    duration = _value(leg.get("duration"))
    if mode == "driving":
        duration = _value(leg.get("duration_in_traffic")) or duration

    steps = [
        {
            "instruction": s.get("html_instructions"),
            "duration": _value(s.get("duration")),
            "distance": _value(s.get("distance")),
            "polyline": (s.get("polyline") or {}).get("points"),
        }
        for s in leg.get("steps") or []
    ]
    encoded = (raw.get("overview_polyline") or {}).get("points")

    return RouteMeasurement(
        route_index=route_index,
        duration_seconds=duration,
        distance_meters=_value(leg.get("distance")),
        summary=raw.get("summary"),
        steps=steps,
        points=decode_polyline(encoded) if encoded else [],
    )


def _is_different(kept: list[RouteMeasurement], candidate: RouteMeasurement) -> bool:
    return not any(
        abs((r.duration_seconds or 0) - (candidate.duration_seconds or 0)) < SAME_ROUTE_SECONDS
        and abs((r.distance_meters or 0) - (candidate.distance_meters or 0)) < SAME_ROUTE_METERS
        for r in kept
    )


class DirectionsClient:
    """Google Directions / Geocoding client.

    The collection path (``get_routes``) always hits the API. Only interactive
    previews (``get_route_preview``) and geocoding go through the caches.
    """

    def __init__(
        self,
        api_key: str | None,
        session: requests.Session | None = None,
        timeout: int = 10,
        geocode_cache: CostCache | None = None,
        reverse_geocode_cache: CostCache | None = None,
        preview_cache: CostCache | None = None,
    ):
        self.api_key = (api_key or "").strip()
        self.session = session or requests.Session()
        self.timeout = timeout
        self.geocode_cache = geocode_cache or CostCache(ttl_seconds=24 * 3600)
        self.reverse_geocode_cache = reverse_geocode_cache or CostCache(ttl_seconds=24 * 3600)
        self.preview_cache = preview_cache or CostCache(ttl_seconds=5 * 60)

    @classmethod
    def from_settings(cls, s) -> "DirectionsClient":
        return cls(
            s.GOOGLE_MAPS_API_KEY,
            timeout=s.HTTP_TIMEOUT_SECONDS,
            geocode_cache=CostCache(s.GEOCODE_CACHE_TTL_SECONDS, s.CACHE_MAX_ENTRIES),
            reverse_geocode_cache=CostCache(s.GEOCODE_CACHE_TTL_SECONDS, s.CACHE_MAX_ENTRIES),
            preview_cache=CostCache(s.ROUTE_PREVIEW_CACHE_TTL_SECONDS, s.CACHE_MAX_ENTRIES),
        )

    def ensure_configured(self) -> None:
        if not self.api_key or self.api_key == PLACEHOLDER_API_KEY:
            raise ConfigurationError("GOOGLE_MAPS_API_KEY not set in .env")

    def _get_json(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        r = self.session.get(url, params={**params, "key": self.api_key}, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    # ----------------
    # Directions
    # ----------------
    def fetch_directions(
        self,
        origin: str,
        destination: str,
        mode: str = "driving",
        avoid_highways: bool = False,
        avoid_tolls: bool = False,
        alternatives: bool = False,
    ) -> list[dict[str, Any]]:
        """One Directions request. Returns the raw routes, ``[]`` on ZERO_RESULTS."""
        self.ensure_configured()
        mode = resolve_mode(mode)
        params: dict[str, Any] = {
            "origin": origin,
            "destination": destination,
            "mode": mode,
            "alternatives": "true" if alternatives else "false",
        }
        if mode == "driving":
            avoid = []
            if avoid_highways:
                avoid.append("highways")
            if avoid_tolls:
                avoid.append("tolls")
            if avoid:
                params["avoid"] = "|".join(avoid)
        if mode in ("driving", "transit"):
            params["departure_time"] = "now"

        data = self._get_json(DIRECTIONS_URL, params)
        status = data.get("status")
        if status == "ZERO_RESULTS":
            return []
        if status != "OK":
            raise UpstreamError(status, data.get("error_message"))
        return data.get("routes") or []

    def get_routes(
        self,
        origin: str,
        destination: str,
        mode: str = "driving",
        avoid_highways: bool = False,
        avoid_tolls: bool = False,
        alternatives: int = 0,
        max_fallback_depth: int = 1,
    ) -> list[RouteMeasurement]:
        self.ensure_configured()
        mode = resolve_mode(mode)
        wanted = 1 + min(max(alternatives or 0, 0), MAX_ROUTES - 1)

        primary = self.fetch_directions(origin, destination, mode, avoid_highways, avoid_tolls, alternatives=wanted > 1)

        depth = 0
        while not primary and depth < max_fallback_depth:
            if is_coordinate_pair(origin) and is_coordinate_pair(destination):
                return []
            resolved_origin = self._resolve_endpoint(origin)
            resolved_destination = self._resolve_endpoint(destination)
            if resolved_origin is None or resolved_destination is None:
                logger.warning("Could not geocode %r -> %r, no route", origin, destination)
                return []
            origin, destination = resolved_origin, resolved_destination
            depth += 1
            logger.info("No route found, retrying with coordinates %s -> %s", origin, destination)
            primary = self.fetch_directions(origin, destination, mode, avoid_highways, avoid_tolls, alternatives=wanted > 1)

        if not primary:
            return []

        routes = [parse_route(raw, i, mode) for i, raw in enumerate(primary[:wanted])]

        # Ask again with different avoid flags to find distinct alternatives
        if mode == "driving":
            variants = []
            if not avoid_highways:
                variants.append((True, avoid_tolls))
            if not avoid_tolls:
                variants.append((avoid_highways, True))
            for avoid_h, avoid_t in variants:
                if len(routes) >= wanted:
                    break
                alt = self.fetch_directions(origin, destination, mode, avoid_h, avoid_t, alternatives=False)
                if not alt:
                    continue
                candidate = parse_route(alt[0], len(routes), mode)
                if _is_different(routes, candidate):
                    routes.append(candidate)

        return routes

    def get_route_preview(
        self,
        origin: str,
        destination: str,
        mode: str = "driving",
        avoid_highways: bool = False,
        avoid_tolls: bool = False,
        alternatives: int = 0,
    ) -> list[RouteMeasurement]:
        """Routes for map display, served from the short-lived preview cache."""
        mode = resolve_mode(mode)
        # Beyond origin|destination|mode|avoidHighways|avoidTolls the key also
        # carries the alternatives count, so previews of 1 and 3 routes differ
        key = make_key(origin, destination, mode, bool(avoid_highways), bool(avoid_tolls), alternatives)
        cached = self.preview_cache.get(key)
        if cached is not None:
            return cached

        routes = self.get_routes(origin, destination, mode, avoid_highways, avoid_tolls, alternatives)
        if routes:
            self.preview_cache.set(key, routes)
        return routes

    # ----------------
    # Geocoding
    # ----------------
    def _resolve_endpoint(self, location: str) -> str | None:
        if is_coordinate_pair(location):
            return location.replace(" ", "")
        coords = self.geocode(location)
        if coords is None:
            return None
        return f"{coords[0]},{coords[1]}"

    def geocode(self, address: str) -> tuple[float, float] | None:
        key = (address or "").strip().lower()
        if not key:
            return None
        cached = self.geocode_cache.get(key)
        if cached is not None:
            return cached

        self.ensure_configured()
        data = self._get_json(GEOCODE_URL, {"address": address.strip()})
        status = data.get("status")
        if status == "ZERO_RESULTS":
            return None
        if status != "OK":
            raise UpstreamError(status, data.get("error_message"))

        results = data.get("results") or []
        if not results:
            return None
        loc = results[0]["geometry"]["location"]
        coords = (float(loc["lat"]), float(loc["lng"]))
        self.geocode_cache.set(key, coords)
        return coords

    def reverse_geocode(self, lat: float, lng: float) -> str | None:
        key = f"{round(lat, 5)},{round(lng, 5)}"
        cached = self.reverse_geocode_cache.get(key)
        if cached is not None:
            return cached

        self.ensure_configured()
        data = self._get_json(GEOCODE_URL, {"latlng": key})
        status = data.get("status")
        if status == "ZERO_RESULTS":
            return None
        if status != "OK":
            raise UpstreamError(status, data.get("error_message"))

        results = data.get("results") or []
        if not results:
            return None
        address = results[0].get("formatted_address")
        if address:
            self.reverse_geocode_cache.set(key, address)
        return address
