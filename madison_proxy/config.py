"""Feed types, candidate URL lists and environment-driven settings."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping

from . import __version__

UPSTREAM_HOST = "https://transitdata.cityofmadison.com"

DEFAULT_PORT = 10000
DEFAULT_HOST = "0.0.0.0"
DEFAULT_FEED_TIMEOUT = 10.0
DEFAULT_DISCOVERY_TIMEOUT = 5.0
DEFAULT_USER_AGENT = f"Madison-Metro-Proxy/{__version__}"


class FeedType(str, Enum):
    TRIP_UPDATES = "trip_updates"
    VEHICLE_POSITIONS = "vehicle_positions"
    ALERTS = "alerts"

    @property
    def label(self) -> str:
        return FEED_LABELS[self]

    @property
    def slug(self) -> str:
        return FEED_SLUGS[self]

    @property
    def discovery_key(self) -> str:
        return DISCOVERY_KEYS[self]

    @property
    def env_var(self) -> str:
        return f"{self.value.upper()}_URLS"


FEED_LABELS = {
    FeedType.TRIP_UPDATES: "trip updates",
    FeedType.VEHICLE_POSITIONS: "vehicle positions",
    FeedType.ALERTS: "service alerts",
}

FEED_SLUGS = {
    FeedType.TRIP_UPDATES: "trip-updates",
    FeedType.VEHICLE_POSITIONS: "vehicle-positions",
    FeedType.ALERTS: "service-alerts",
}

DISCOVERY_KEYS = {
    FeedType.TRIP_UPDATES: "tripUpdates",
    FeedType.VEHICLE_POSITIONS: "vehiclePositions",
    FeedType.ALERTS: "alerts",
}

# Order is fallback priority: the first URL that yields a decodable feed wins.
DEFAULT_CANDIDATES: dict[FeedType, tuple[str, ...]] = {
    FeedType.TRIP_UPDATES: (
        f"{UPSTREAM_HOST}/TripUpdates.pb",
        f"{UPSTREAM_HOST}/gtfs-rt/TripUpdates.pb",
        f"{UPSTREAM_HOST}/gtfsrt/TripUpdate/TripUpdate.pb",
    ),
    FeedType.VEHICLE_POSITIONS: (
        f"{UPSTREAM_HOST}/VehiclePositions.pb",
        f"{UPSTREAM_HOST}/gtfs-rt/VehiclePositions.pb",
        f"{UPSTREAM_HOST}/gtfsrt/VehiclePosition/VehiclePosition.pb",
    ),
    FeedType.ALERTS: (
        f"{UPSTREAM_HOST}/Alerts.pb",
        f"{UPSTREAM_HOST}/gtfs-rt/Alerts.pb",
        f"{UPSTREAM_HOST}/gtfsrt/Alert/Alert.pb",
    ),
}


@dataclass(frozen=True)
class ProxySettings:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    feed_timeout: float = DEFAULT_FEED_TIMEOUT
    discovery_timeout: float = DEFAULT_DISCOVERY_TIMEOUT
    user_agent: str = DEFAULT_USER_AGENT
    preserve_proto_field_names: bool = False
    candidates: Mapping[FeedType, tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_CANDIDATES)
    )

    def candidates_for(self, feed_type: FeedType) -> tuple[str, ...]:
        return tuple(self.candidates.get(feed_type, ()))


def dedupe_urls(urls: Iterable[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    deduped: list[str] = []
    for url in urls:
        url = url.strip()
        if url and url not in seen:
            seen.add(url)
            deduped.append(url)
    return tuple(deduped)


def resolve_candidates(
    feed_type: FeedType,
    env: Mapping[str, str],
) -> tuple[str, ...]:
    """Return the candidate list for ``feed_type``.

    A comma-separated ``<FEED>_URLS`` variable replaces the built-in list
    entirely; its order is kept and repeated URLs are dropped.
    """
    env_value = env.get(feed_type.env_var, "")
    if env_value.strip():
        candidates = dedupe_urls(env_value.split(","))
    else:
        candidates = dedupe_urls(DEFAULT_CANDIDATES[feed_type])
    if not candidates:
        raise SystemExit(f"No candidate URLs configured for {feed_type.label}.")
    return candidates


def _to_bool(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _positive_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise SystemExit(f"Invalid {name} value: {raw!r}. Provide a number of seconds.") from exc
    if value <= 0:
        raise SystemExit(f"{name} must be greater than zero.")
    return value


def _port(env: Mapping[str, str]) -> int:
    raw = env.get("PORT")
    if not raw:
        return DEFAULT_PORT
    try:
        port = int(raw)
    except ValueError as exc:
        raise SystemExit(f"Invalid PORT value: {raw!r}. Provide an integer port.") from exc
    if not 0 < port < 65536:
        raise SystemExit(f"PORT out of range: {port}")
    return port


def load_settings(env: Mapping[str, str] | None = None) -> ProxySettings:
    if env is None:
        env = os.environ
    return ProxySettings(
        host=env.get("HOST") or DEFAULT_HOST,
        port=_port(env),
        feed_timeout=_positive_float(env, "FEED_HTTP_TIMEOUT", DEFAULT_FEED_TIMEOUT),
        discovery_timeout=_positive_float(
            env, "DISCOVERY_HTTP_TIMEOUT", DEFAULT_DISCOVERY_TIMEOUT
        ),
        user_agent=env.get("PROXY_USER_AGENT") or DEFAULT_USER_AGENT,
        preserve_proto_field_names=_to_bool(env.get("PRESERVE_PROTO_FIELD_NAMES")),
        candidates={feed_type: resolve_candidates(feed_type, env) for feed_type in FeedType},
    )
