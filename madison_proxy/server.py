"""Flask application serving Madison Metro GTFS-RT feeds as JSON."""
from __future__ import annotations

import argparse
import dataclasses
import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask, Response, current_app, jsonify
from werkzeug.exceptions import HTTPException

from .config import FeedType, ProxySettings, load_settings
from .discover_urls import discover
from .fetch_feed import Fetcher, make_fetcher
from .resolve_feed import Decoded, Exhausted, feed_to_dict, resolve_feed

LOGGER = logging.getLogger(__name__)

GTFS_RT_DOCS = "https://gtfs.org/documentation/realtime/"
STATIC_DATA_PAGE = "https://www.cityofmadison.com/metro/planning/transit-data"

FAILURE_MESSAGES = {
    FeedType.TRIP_UPDATES: "Failed to retrieve data from Madison Metro API",
    FeedType.VEHICLE_POSITIONS: "Failed to retrieve vehicle positions data",
    FeedType.ALERTS: "Failed to retrieve service alerts data",
}

FEED_DESCRIPTIONS = {
    FeedType.TRIP_UPDATES: "Real-time arrival predictions",
    FeedType.VEHICLE_POSITIONS: "Current vehicle locations",
    FeedType.ALERTS: "Service disruptions and alerts",
}

URL_CHANGE_SUGGESTION = (
    "Madison Metro may have changed their GTFS-Realtime feed URLs "
    "or implemented access controls"
)


class FeedConfigError(RuntimeError):
    """Raised when a feed endpoint has no candidate URLs to try."""


def _settings() -> ProxySettings:
    return current_app.config["PROXY_SETTINGS"]


def _fetcher() -> Fetcher:
    return current_app.config["PROXY_FETCHER"]


def service_info() -> Response:
    endpoints = {
        "/": "This API information",
        "/test": "Test if the API is working",
        "/static/feeds": "Where to find the GTFS static schedule",
    }
    for feed_type in FeedType:
        endpoints[f"/realtime/{feed_type.slug}"] = FEED_DESCRIPTIONS[feed_type]
    endpoints["/discover-urls"] = "Check which upstream GTFS-RT URLs respond"
    return jsonify(
        {
            "status": "ok",
            "message": "Madison Metro GTFS-Realtime Proxy API",
            "description": "Converts Madison Metro GTFS-Realtime Protocol Buffer feeds to JSON",
            "endpoints": endpoints,
            "documentation": GTFS_RT_DOCS,
        }
    )


def liveness() -> Response:
    return jsonify({"status": "ok", "message": "API test endpoint is working!"})


def static_feeds() -> Response:
    return jsonify(
        {
            "status": "info",
            "message": (
                "Madison Metro GTFS static data should be available at their official website"
            ),
            "possibleUrl": STATIC_DATA_PAGE,
            "note": "This endpoint is informational only and does not fetch actual data",
        }
    )


def realtime_feed(feed_type: FeedType):
    settings = _settings()
    candidates = settings.candidates_for(feed_type)
    if not candidates:
        raise FeedConfigError(f"No candidate URLs configured for {feed_type.label}")

    result = resolve_feed(feed_type, candidates, settings.feed_timeout, fetcher=_fetcher())
    if isinstance(result, Decoded):
        response = jsonify(
            feed_to_dict(
                result.message,
                preserving_proto_field_name=settings.preserve_proto_field_names,
            )
        )
        response.headers["X-Feed-Source"] = result.url
        return response

    return exhausted_response(result)


def exhausted_response(result: Exhausted):
    payload: dict[str, object] = {
        "error": FAILURE_MESSAGES[result.feed_type],
        "status": 404,
        "message": "Not Found",
        "details": result.summary(),
        "attempts": [outcome.as_dict() for outcome in result.attempts],
    }
    if result.feed_type is FeedType.TRIP_UPDATES:
        payload["suggestion"] = URL_CHANGE_SUGGESTION
    return jsonify(payload), 404


def discover_urls() -> Response:
    settings = _settings()
    report = discover(settings.candidates, settings.discovery_timeout, _fetcher())
    return jsonify(report.as_dict())


def add_cors_headers(resp: Response) -> Response:
    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Headers"] = (
        "Origin, X-Requested-With, Content-Type, Accept"
    )
    return resp


def http_error(exc: HTTPException):
    return jsonify({"error": exc.name, "status": exc.code, "message": exc.description}), exc.code


def internal_error(exc: Exception):
    LOGGER.exception("Unhandled error while serving request: %s", exc)
    return (
        jsonify(
            {
                "error": "Internal server error",
                "status": 500,
                "message": "The proxy failed unexpectedly while handling the request",
            }
        ),
        500,
    )


def create_app(
    settings: ProxySettings | None = None,
    fetcher: Fetcher | None = None,
) -> Flask:
    if settings is None:
        settings = load_settings()
    if fetcher is None:
        fetcher = make_fetcher(settings.user_agent)

    app = Flask(__name__)
    app.config["PROXY_SETTINGS"] = settings
    app.config["PROXY_FETCHER"] = fetcher

    app.add_url_rule("/", "service_info", service_info)
    app.add_url_rule("/test", "liveness", liveness)
    app.add_url_rule("/static/feeds", "static_feeds", static_feeds)
    for feed_type in FeedType:
        app.add_url_rule(
            f"/realtime/{feed_type.slug}",
            f"realtime_{feed_type.value}",
            realtime_feed,
            defaults={"feed_type": feed_type},
        )
    app.add_url_rule("/discover-urls", "discover_urls", discover_urls)

    app.after_request(add_cors_headers)
    app.register_error_handler(HTTPException, http_error)
    app.register_error_handler(Exception, internal_error)
    return app


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Serve Madison Metro GTFS-Realtime feeds as JSON."
    )
    parser.add_argument("--host", help="Interface to bind (default: HOST or 0.0.0.0).")
    parser.add_argument("--port", type=int, help="Port to listen on (default: PORT or 10000).")
    parser.add_argument(
        "--http-timeout",
        type=float,
        help="Seconds to wait for each upstream candidate (default: FEED_HTTP_TIMEOUT or 10).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Run Flask in debug mode with verbose logging.",
    )
    return parser.parse_args()


def main() -> None:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(dotenv_path=project_root / ".env")

    args = parse_args()
    log_level = "DEBUG" if args.debug else os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )

    settings = load_settings()
    overrides: dict[str, object] = {}
    if args.host:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.http_timeout is not None:
        if args.http_timeout <= 0:
            raise SystemExit("HTTP timeout must be greater than zero.")
        overrides["feed_timeout"] = args.http_timeout
    if overrides:
        settings = dataclasses.replace(settings, **overrides)

    app = create_app(settings)
    LOGGER.info("Proxy API listening on port %s", settings.port)
    app.run(host=settings.host, port=settings.port, debug=args.debug)


if __name__ == "__main__":
    main()
