"""Fetch a single GTFS-RT candidate URL and classify the outcome."""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, Union

import requests

from .config import DEFAULT_USER_AGENT

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Success:
    url: str
    content: bytes
    status_code: int = 200
    status_text: str = "OK"

    working = True

    @property
    def status(self) -> int:
        return self.status_code

    def as_dict(self) -> dict[str, object]:
        return {
            "url": self.url,
            "status": self.status_code,
            "statusText": self.status_text,
            "working": True,
        }


@dataclass(frozen=True)
class HttpError:
    url: str
    status_code: int
    status_text: str

    working = False

    @property
    def status(self) -> int:
        return self.status_code

    def as_dict(self) -> dict[str, object]:
        return {
            "url": self.url,
            "status": self.status_code,
            "statusText": self.status_text,
            "working": False,
        }


@dataclass(frozen=True)
class TransportError:
    url: str
    message: str

    working = False

    @property
    def status(self) -> str:
        return "error"

    def as_dict(self) -> dict[str, object]:
        return {
            "url": self.url,
            "status": "error",
            "statusText": self.message,
            "working": False,
        }


FetchOutcome = Union[Success, HttpError, TransportError]
Fetcher = Callable[[str, float], FetchOutcome]


CHUNK_SIZE = 1 << 16


def _download(
    url: str,
    timeout: float,
    user_agent: str,
    deadline: float,
) -> FetchOutcome:
    try:
        with requests.get(
            url,
            headers={"User-Agent": user_agent},
            timeout=timeout,
            stream=True,
        ) as response:
            status_text = response.reason or ""
            if not 200 <= response.status_code < 300:
                LOGGER.warning("Fetching %s returned %s %s", url, response.status_code, status_text)
                return HttpError(url=url, status_code=response.status_code, status_text=status_text)

            chunks: list[bytes] = []
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if chunk:
                    chunks.append(chunk)
                if time.monotonic() > deadline:
                    return TransportError(url=url, message=f"Timed out after {timeout:g}s")
            content = b"".join(chunks)
    except requests.Timeout as exc:
        LOGGER.warning("Timed out after %.1fs fetching %s", timeout, url)
        return TransportError(url=url, message=f"Timed out after {timeout:g}s: {exc}")
    except requests.RequestException as exc:
        LOGGER.warning("Transport error while fetching %s: %s", url, exc)
        return TransportError(url=url, message=str(exc))

    LOGGER.debug("Fetched %d bytes from %s", len(content), url)
    return Success(
        url=url,
        content=content,
        status_code=response.status_code,
        status_text=status_text,
    )


def fetch_feed(
    url: str,
    timeout: float,
    user_agent: str = DEFAULT_USER_AGENT,
) -> FetchOutcome:
    """GET ``url`` once and report what happened.

    Non-2xx responses and network failures are returned as values rather than
    raised; no retries are attempted here. ``timeout`` caps the whole fetch,
    body included. A download still running at the deadline is abandoned on
    its daemon thread, which owns and closes the connection.
    """
    LOGGER.debug("Requesting %s", url)
    deadline = time.monotonic() + timeout
    future: Future[FetchOutcome] = Future()

    def run() -> None:
        try:
            future.set_result(_download(url, timeout, user_agent, deadline))
        except BaseException as exc:
            future.set_exception(exc)

    threading.Thread(target=run, name=f"fetch-feed {url}", daemon=True).start()
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        LOGGER.warning("Timed out after %.1fs fetching %s", timeout, url)
        return TransportError(url=url, message=f"Timed out after {timeout:g}s")


def make_fetcher(user_agent: str = DEFAULT_USER_AGENT) -> Fetcher:
    def fetcher(url: str, timeout: float) -> FetchOutcome:
        return fetch_feed(url, timeout, user_agent=user_agent)

    return fetcher
