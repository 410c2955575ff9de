"""
Loading survey tables and keeping the latest one current.

Sources are the published Google Sheets CSV export (fetched with requests)
or a CSV file on disk / from the Streamlit uploader. Refreshes go through a
``SnapshotStore`` so that a slow, older fetch can never overwrite the table a
newer fetch already installed.
"""
from __future__ import annotations

import io
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Callable, Optional, TextIO, Union

import pandas as pd
import requests

logger = logging.getLogger(__name__)

CsvSource = Union[str, Path, BinaryIO, TextIO]

HTML_MARKERS = ("<!doctype html", "<html")

SHARING_HINT = (
    "CSV 대신 HTML 페이지가 돌아왔습니다. 구글 시트의 공유 설정을 "
    "'링크가 있는 모든 사용자(뷰어)'로 바꾸거나 '웹에 게시'를 확인하세요."
)


class SurveyLoadError(RuntimeError):
    """Raised when a survey table cannot be produced from its source."""


class SheetFetchError(SurveyLoadError):
    """Raised when the CSV export cannot be downloaded."""


class SheetAccessError(SheetFetchError):
    """Raised when the export answers with an HTML page instead of CSV."""


def looks_like_html(body: str, content_type: str = "") -> bool:
    if "text/html" in (content_type or "").lower():
        return True
    head = body.lstrip().lower()
    return any(head.startswith(marker) for marker in HTML_MARKERS)


def _drop_blank_rows(frame: pd.DataFrame) -> pd.DataFrame:
    if frame.empty:
        return frame
    stripped = frame.apply(lambda column: column.astype(str).str.strip())
    keep = (stripped != "").any(axis=1)
    return frame.loc[keep].reset_index(drop=True)


def read_table(csv_source: CsvSource) -> pd.DataFrame:
    """Read a CSV with a header row into an all-string frame, skipping blank rows."""
    try:
        frame = pd.read_csv(
            csv_source,
            encoding="utf-8-sig",
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError:
        return pd.DataFrame()
    except (pd.errors.ParserError, UnicodeDecodeError, OSError) as exc:
        raise SurveyLoadError(f"Could not read CSV: {exc}") from exc
    frame.columns = [str(column).strip() for column in frame.columns]
    return _drop_blank_rows(frame)


def fetch_csv_text(
    url: str,
    timeout: float = 10.0,
    session: Optional[requests.Session] = None,
) -> str:
    client = session or requests
    logger.debug("Fetching survey CSV from %s", url)
    try:
        response = client.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise SheetFetchError(f"Failed to fetch {url}: {exc}") from exc

    body = response.content.decode("utf-8-sig", errors="replace")
    if looks_like_html(body, response.headers.get("Content-Type", "")):
        raise SheetAccessError(SHARING_HINT)
    return body


def load_sheet(
    url: str,
    timeout: float = 10.0,
    session: Optional[requests.Session] = None,
) -> pd.DataFrame:
    text = fetch_csv_text(url, timeout=timeout, session=session)
    return read_table(io.StringIO(text))


@dataclass(frozen=True)
class Snapshot:
    table: Optional[pd.DataFrame]
    error: Optional[Exception]
    loaded_at: Optional[datetime]
    source: str
    token: int


class SnapshotStore:
    """Latest-table holder guarded by monotonically increasing request tokens.

    ``begin`` hands out a token per refresh. Only the most recent token may
    install a table or report an error; completions carrying an older token
    are discarded. A failed refresh keeps the last good table.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._issued = 0
        self._table: Optional[pd.DataFrame] = None
        self._error: Optional[Exception] = None
        self._loaded_at: Optional[datetime] = None
        self._source = ""
        self._token = 0

    def begin(self) -> int:
        with self._lock:
            self._issued += 1
            return self._issued

    @property
    def latest_token(self) -> int:
        with self._lock:
            return self._issued

    def complete(self, token: int, table: pd.DataFrame, source: str = "") -> bool:
        with self._lock:
            if token != self._issued:
                logger.info("Discarding stale refresh %d (latest is %d)", token, self._issued)
                return False
            self._table = table
            self._error = None
            self._loaded_at = datetime.now()
            self._source = source
            self._token = token
            return True

    def fail(self, token: int, error: Exception) -> bool:
        with self._lock:
            if token != self._issued:
                logger.info("Ignoring failure of stale refresh %d", token)
                return False
            self._error = error
            return True

    def snapshot(self) -> Snapshot:
        with self._lock:
            return Snapshot(
                table=self._table,
                error=self._error,
                loaded_at=self._loaded_at,
                source=self._source,
                token=self._token,
            )


def refresh(
    store: SnapshotStore,
    loader: Callable[[], pd.DataFrame],
    source: str = "",
) -> bool:
    """Run one refresh cycle; returns True when the new table was installed."""
    token = store.begin()
    try:
        table = loader()
    except SurveyLoadError as exc:
        logger.warning("Refresh %d failed: %s", token, exc)
        store.fail(token, exc)
        return False
    return store.complete(token, table, source)


class RefreshScheduler:
    """Run ``callback`` now and then every ``interval`` seconds until stopped."""

    def __init__(self, callback: Callable[[], object], interval: float) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval!r}")
        self.callback = callback
        self.interval = interval
        self._wake = threading.Event()
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stopped.clear()
        self._thread = threading.Thread(
            target=self._run, name="survey-refresh", daemon=True
        )
        self._thread.start()

    def trigger(self) -> None:
        self._wake.set()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stopped.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _tick(self) -> None:
        try:
            self.callback()
        except Exception:  # noqa: BLE001
            logger.exception("Scheduled refresh raised")

    def _run(self) -> None:
        while not self._stopped.is_set():
            self._tick()
            self._wake.wait(self.interval)
            self._wake.clear()

    def __enter__(self) -> "RefreshScheduler":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()
