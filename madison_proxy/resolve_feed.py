"""Resolve a feed type to a decoded GTFS-RT message by trying candidates in order."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Sequence, Union

from google.protobuf.json_format import MessageToDict
from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from .config import FeedType
from .fetch_feed import FetchOutcome, Fetcher, HttpError, Success, TransportError, fetch_feed

LOGGER = logging.getLogger(__name__)

Decoder = Callable[[bytes], gtfs_realtime_pb2.FeedMessage]


@dataclass(frozen=True)
class DecodeFailure:
    """A candidate answered 2xx but the body is not a valid FeedMessage."""

    url: str
    message: str
    status_code: int = 200

    working = False

    @property
    def status(self) -> str:
        return "decode_error"

    def as_dict(self) -> dict[str, object]:
        return {
            "url": self.url,
            "status": "decode_error",
            "statusText": self.message,
            "working": False,
        }


AttemptOutcome = Union[HttpError, TransportError, DecodeFailure]


@dataclass
class Decoded:
    feed_type: FeedType
    url: str
    message: gtfs_realtime_pb2.FeedMessage
    attempts: list[AttemptOutcome] = field(default_factory=list)


@dataclass
class Exhausted:
    feed_type: FeedType
    attempts: list[AttemptOutcome]

    def status_codes(self) -> list[str]:
        return [str(outcome.status) for outcome in self.attempts]

    def summary(self) -> str:
        if not self.attempts:
            return f"No Madison Metro {self.feed_type.label} URLs were tried."
        return (
            f"All Madison Metro {self.feed_type.label} URLs failed. "
            f"Status codes: {', '.join(self.status_codes())}"
        )


FeedResult = Union[Decoded, Exhausted]


def decode_feed(content: bytes) -> gtfs_realtime_pb2.FeedMessage:
    feed_message = gtfs_realtime_pb2.FeedMessage()
    feed_message.ParseFromString(content)
    if not feed_message.IsInitialized():
        missing = ", ".join(feed_message.FindInitializationErrors())
        raise DecodeError(f"FeedMessage is missing required fields: {missing}")
    return feed_message


def feed_to_dict(
    feed_message: gtfs_realtime_pb2.FeedMessage,
    preserving_proto_field_name: bool = False,
) -> dict:
    return MessageToDict(
        feed_message,
        preserving_proto_field_name=preserving_proto_field_name,
    )


def count_entities(feed_message: gtfs_realtime_pb2.FeedMessage) -> dict[str, int]:
    return {
        "entities": len(feed_message.entity),
        "trip_updates": sum(1 for entity in feed_message.entity if entity.HasField("trip_update")),
        "vehicle_positions": sum(1 for entity in feed_message.entity if entity.HasField("vehicle")),
        "alerts": sum(1 for entity in feed_message.entity if entity.HasField("alert")),
    }


def resolve_feed(
    feed_type: FeedType,
    candidates: Sequence[str],
    timeout: float,
    fetcher: Fetcher = fetch_feed,
    decoder: Decoder = decode_feed,
) -> FeedResult:
    """Return the first candidate, in list order, whose body decodes.

    HTTP failures, transport failures and undecodable bodies are recorded and
    the next candidate is tried. Each URL is contacted at most once.
    """
    attempts: list[AttemptOutcome] = []
    tried: set[str] = set()

    for position, url in enumerate(candidates, start=1):
        if url in tried:
            continue
        tried.add(url)

        outcome: FetchOutcome = fetcher(url, timeout)
        if isinstance(outcome, Success):
            try:
                feed_message = decoder(outcome.content)
            except DecodeError as exc:
                LOGGER.warning(
                    "Attempt %d for %s returned undecodable data from %s: %s",
                    position,
                    feed_type.label,
                    url,
                    exc,
                )
                attempts.append(
                    DecodeFailure(url=url, message=str(exc), status_code=outcome.status_code)
                )
                continue

            counts = count_entities(feed_message)
            LOGGER.info(
                "Fetched %s from %s (entities=%d, trip_updates=%d, vehicles=%d, alerts=%d)",
                feed_type.label,
                url,
                counts["entities"],
                counts["trip_updates"],
                counts["vehicle_positions"],
                counts["alerts"],
            )
            return Decoded(feed_type=feed_type, url=url, message=feed_message, attempts=attempts)

        attempts.append(outcome)
        LOGGER.warning(
            "Attempt %d for %s failed with %s",
            position,
            feed_type.label,
            outcome.status,
        )

    LOGGER.error(
        "All %d candidate URLs for %s failed",
        len(attempts),
        feed_type.label,
    )
    return Exhausted(feed_type=feed_type, attempts=attempts)
