"""Probe every known Madison Metro GTFS-RT candidate URL and report which respond."""
from __future__ import annotations

import argparse
import json
import logging
from dataclasses import dataclass
from itertools import zip_longest
from pathlib import Path
from typing import Mapping, Sequence

from dotenv import load_dotenv

from .config import FeedType, load_settings
from .fetch_feed import FetchOutcome, Fetcher, make_fetcher

LOGGER = logging.getLogger(__name__)

NONE_FOUND = "None found"


@dataclass
class DiscoveryReport:
    url_checks: dict[str, FetchOutcome]
    working_urls: dict[FeedType, list[str]]
    recommended: dict[FeedType, str]

    def as_dict(self) -> dict[str, object]:
        checks = {}
        for url, outcome in self.url_checks.items():
            projection = outcome.as_dict()
            projection.pop("url")
            checks[url] = projection
        return {
            "message": "URL discovery results",
            "urlChecks": checks,
            "workingUrls": {
                feed_type.discovery_key: urls for feed_type, urls in self.working_urls.items()
            },
            "recommendedEndpoints": {
                feed_type.discovery_key: url for feed_type, url in self.recommended.items()
            },
        }


def probe_order(candidates: Mapping[FeedType, Sequence[str]]) -> list[str]:
    """Flatten candidate lists pattern by pattern, each URL once."""
    ordered: list[str] = []
    seen: set[str] = set()
    for row in zip_longest(*candidates.values()):
        for url in row:
            if url is not None and url not in seen:
                seen.add(url)
                ordered.append(url)
    return ordered


def discover(
    candidates: Mapping[FeedType, Sequence[str]],
    timeout: float,
    fetcher: Fetcher,
) -> DiscoveryReport:
    url_checks: dict[str, FetchOutcome] = {}
    for url in probe_order(candidates):
        LOGGER.info("Checking URL: %s", url)
        url_checks[url] = fetcher(url, timeout)

    working_urls: dict[FeedType, list[str]] = {}
    recommended: dict[FeedType, str] = {}
    for feed_type, urls in candidates.items():
        working = [url for url in urls if url_checks[url].working]
        working_urls[feed_type] = working
        recommended[feed_type] = working[0] if working else NONE_FOUND
        LOGGER.info("Recommended %s endpoint: %s", feed_type.label, recommended[feed_type])

    return DiscoveryReport(url_checks=url_checks, working_urls=working_urls, recommended=recommended)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Check which Madison Metro GTFS-RT candidate URLs currently respond."
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for each probe (default: DISCOVERY_HTTP_TIMEOUT or 5).",
    )
    parser.add_argument(
        "--indent",
        type=int,
        default=2,
        help="JSON indentation for the printed report (default: 2).",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(dotenv_path=project_root / ".env")

    settings = load_settings()
    timeout = args.timeout if args.timeout is not None else settings.discovery_timeout
    if timeout <= 0:
        raise SystemExit("Probe timeout must be greater than zero.")

    report = discover(settings.candidates, timeout, make_fetcher(settings.user_agent))
    print(json.dumps(report.as_dict(), indent=args.indent))


if __name__ == "__main__":
    main()
