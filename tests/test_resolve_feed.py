import json
import sys
import unittest
from pathlib import Path

from google.protobuf.json_format import ParseDict
from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from madison_proxy.config import FeedType
from madison_proxy.fetch_feed import HttpError, Success, TransportError
from madison_proxy.resolve_feed import (
    DecodeFailure,
    Decoded,
    Exhausted,
    count_entities,
    decode_feed,
    feed_to_dict,
    resolve_feed,
)

DATA_DIR = Path(__file__).resolve().parent / "data"


def sample_feed_bytes(name: str = "trip_updates_sample.json") -> bytes:
    with (DATA_DIR / name).open() as fh:
        payload = json.load(fh)
    message = gtfs_realtime_pb2.FeedMessage()
    ParseDict(payload, message)
    return message.SerializeToString()


class StubFetcher:
    """Returns canned outcomes per URL and records every call in order."""

    def __init__(self, outcomes):
        self.outcomes = outcomes
        self.calls: list[tuple[str, float]] = []

    def __call__(self, url, timeout):
        self.calls.append((url, timeout))
        return self.outcomes[url]

    @property
    def urls(self) -> list[str]:
        return [url for url, _timeout in self.calls]


class ResolveFeedTest(unittest.TestCase):
    def setUp(self):
        self.feed_bytes = sample_feed_bytes()

    def test_stops_at_first_success_in_list_order(self):
        fetcher = StubFetcher(
            {
                "A": HttpError(url="A", status_code=404, status_text="Not Found"),
                "B": Success(url="B", content=self.feed_bytes),
                "C": Success(url="C", content=self.feed_bytes),
            }
        )

        result = resolve_feed(FeedType.TRIP_UPDATES, ["A", "B", "C"], 10.0, fetcher=fetcher)

        self.assertIsInstance(result, Decoded)
        self.assertEqual(result.url, "B")
        self.assertEqual(fetcher.urls, ["A", "B"])
        self.assertEqual(len(result.message.entity), 2)
        self.assertEqual([outcome.url for outcome in result.attempts], ["A"])

    def test_unreachable_tail_is_never_contacted(self):
        fetcher = StubFetcher(
            {
                "U1": HttpError(url="U1", status_code=503, status_text="Service Unavailable"),
                "U2": Success(url="U2", content=self.feed_bytes),
                "U3": TransportError(url="U3", message="connection refused"),
            }
        )

        result = resolve_feed(FeedType.TRIP_UPDATES, ["U1", "U2", "U3"], 10.0, fetcher=fetcher)

        self.assertIsInstance(result, Decoded)
        self.assertEqual(result.url, "U2")
        self.assertNotIn("U3", fetcher.urls)

    def test_exhaustion_records_one_outcome_per_candidate_in_order(self):
        fetcher = StubFetcher(
            {
                "A": HttpError(url="A", status_code=404, status_text="Not Found"),
                "B": TransportError(url="B", message="timed out"),
                "C": HttpError(url="C", status_code=503, status_text="Service Unavailable"),
            }
        )

        result = resolve_feed(FeedType.ALERTS, ["A", "B", "C"], 5.0, fetcher=fetcher)

        self.assertIsInstance(result, Exhausted)
        self.assertEqual([outcome.url for outcome in result.attempts], ["A", "B", "C"])
        self.assertEqual(result.status_codes(), ["404", "error", "503"])
        self.assertEqual(
            result.summary(),
            "All Madison Metro service alerts URLs failed. Status codes: 404, error, 503",
        )
        self.assertEqual([timeout for _url, timeout in fetcher.calls], [5.0, 5.0, 5.0])

    def test_decode_failure_falls_back_to_next_candidate(self):
        fetcher = StubFetcher(
            {
                "A": Success(url="A", content=b"\xff\xff\xff\xff"),
                "B": Success(url="B", content=self.feed_bytes),
            }
        )

        result = resolve_feed(FeedType.TRIP_UPDATES, ["A", "B"], 10.0, fetcher=fetcher)

        self.assertIsInstance(result, Decoded)
        self.assertEqual(result.url, "B")
        self.assertEqual(len(result.attempts), 1)
        self.assertIsInstance(result.attempts[0], DecodeFailure)

    def test_decode_failure_alone_is_not_success(self):
        def failing_decoder(_content):
            raise DecodeError("Error parsing message")

        fetcher = StubFetcher({"A": Success(url="A", content=b"<html>")})

        result = resolve_feed(
            FeedType.VEHICLE_POSITIONS, ["A"], 10.0, fetcher=fetcher, decoder=failing_decoder
        )

        self.assertIsInstance(result, Exhausted)
        self.assertEqual(result.status_codes(), ["decode_error"])
        self.assertFalse(result.attempts[0].working)
        self.assertEqual(result.attempts[0].as_dict()["statusText"], "Error parsing message")

    def test_duplicate_candidates_are_contacted_once(self):
        fetcher = StubFetcher(
            {"A": HttpError(url="A", status_code=500, status_text="Internal Server Error")}
        )

        result = resolve_feed(FeedType.ALERTS, ["A", "A"], 10.0, fetcher=fetcher)

        self.assertIsInstance(result, Exhausted)
        self.assertEqual(fetcher.urls, ["A"])
        self.assertEqual(len(result.attempts), 1)

    def test_failed_candidates_are_logged_as_warnings(self):
        fetcher = StubFetcher(
            {
                "A": HttpError(url="A", status_code=404, status_text="Not Found"),
                "B": Success(url="B", content=self.feed_bytes),
            }
        )

        with self.assertLogs("madison_proxy.resolve_feed", level="WARNING") as logs:
            resolve_feed(FeedType.TRIP_UPDATES, ["A", "B"], 10.0, fetcher=fetcher)

        self.assertEqual(len(logs.records), 1)
        self.assertEqual(logs.records[0].levelname, "WARNING")
        self.assertIn("Attempt 1 for trip updates failed with 404", logs.output[0])


class DecodeFeedTest(unittest.TestCase):
    def test_decodes_valid_feed(self):
        message = decode_feed(sample_feed_bytes("vehicle_positions_sample.json"))

        self.assertEqual(message.header.gtfs_realtime_version, "2.0")
        self.assertEqual(
            count_entities(message),
            {"entities": 1, "trip_updates": 0, "vehicle_positions": 1, "alerts": 0},
        )

    def test_rejects_truncated_bytes(self):
        with self.assertRaises(DecodeError):
            decode_feed(b"\xff\xff\xff\xff")

    def test_rejects_missing_required_header(self):
        with self.assertRaises(DecodeError):
            decode_feed(b"")

    def test_json_projection_mirrors_schema_names(self):
        message = decode_feed(sample_feed_bytes())

        camel = feed_to_dict(message)
        snake = feed_to_dict(message, preserving_proto_field_name=True)

        self.assertEqual(camel["header"]["gtfsRealtimeVersion"], "2.0")
        self.assertEqual(camel["entity"][0]["tripUpdate"]["trip"]["tripId"], "1001")
        self.assertEqual(snake["entity"][0]["trip_update"]["stop_time_update"][0]["stop_id"], "0100")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
