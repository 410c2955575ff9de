"""Tests for CSV loading, sheet fetching and the refresh machinery."""

import io
import threading

import pandas as pd
import pytest
import requests

from conftest import FakeResponse, FakeSession
from survey_source import (
    RefreshScheduler,
    SheetAccessError,
    SheetFetchError,
    SnapshotStore,
    SurveyLoadError,
    fetch_csv_text,
    load_sheet,
    looks_like_html,
    read_table,
    refresh,
)

URL = "https://docs.google.com/spreadsheets/d/abc/export?format=csv&gid=0"


class TestReadTable:
    def test_reads_strings_and_skips_blank_rows(self):
        text = "Q1. 소속,Q3. 전공\n신입,CS\n,\n\n기존,\n"
        frame = read_table(io.StringIO(text))
        assert frame.to_dict("records") == [
            {"Q1. 소속": "신입", "Q3. 전공": "CS"},
            {"Q1. 소속": "기존", "Q3. 전공": ""},
        ]

    def test_strips_bom_and_header_whitespace(self, tmp_path):
        path = tmp_path / "responses.csv"
        path.write_bytes("\ufeff Q1. 소속 ,Q3. 전공\n신입,CS\n".encode("utf-8"))
        frame = read_table(path)
        assert list(frame.columns) == ["Q1. 소속", "Q3. 전공"]

    def test_keeps_na_like_text(self):
        frame = read_table(io.StringIO("Q3. 전공\nNA\nNone\n"))
        assert frame["Q3. 전공"].tolist() == ["NA", "None"]

    def test_empty_input_is_empty_frame(self):
        assert read_table(io.StringIO("")).empty

    def test_missing_file_raises_load_error(self, tmp_path):
        with pytest.raises(SurveyLoadError):
            read_table(tmp_path / "missing.csv")


class TestFetch:
    def test_returns_body(self, survey_csv_text):
        session = FakeSession(FakeResponse(survey_csv_text))
        assert fetch_csv_text(URL, timeout=3, session=session) == survey_csv_text
        assert session.calls == [(URL, 3)]

    def test_html_body_is_access_error(self):
        session = FakeSession(
            FakeResponse("<!DOCTYPE html><html><body>Sign in</body></html>", content_type="text/plain")
        )
        with pytest.raises(SheetAccessError):
            fetch_csv_text(URL, session=session)

    def test_html_content_type_is_access_error(self):
        session = FakeSession(FakeResponse("a,b\n1,2\n", content_type="text/html; charset=utf-8"))
        with pytest.raises(SheetAccessError):
            fetch_csv_text(URL, session=session)

    def test_http_error(self):
        session = FakeSession(FakeResponse("nope", status_code=404))
        with pytest.raises(SheetFetchError):
            fetch_csv_text(URL, session=session)

    def test_transport_error(self):
        session = FakeSession(requests.ConnectionError("offline"))
        with pytest.raises(SheetFetchError) as excinfo:
            fetch_csv_text(URL, session=session)
        assert not isinstance(excinfo.value, SheetAccessError)

    def test_load_sheet_parses_frame(self, survey_csv_text, survey_frame):
        session = FakeSession(FakeResponse(survey_csv_text))
        frame = load_sheet(URL, session=session)
        assert list(frame.columns) == list(survey_frame.columns)
        assert frame.to_dict("records") == survey_frame.to_dict("records")

    @pytest.mark.parametrize(
        "body, content_type, expected",
        [
            ("  <html lang='ko'>", "", True),
            ("a,b\n<html>,x", "text/csv", False),
            ("a,b", "TEXT/HTML", True),
        ],
    )
    def test_looks_like_html(self, body, content_type, expected):
        assert looks_like_html(body, content_type) is expected


class TestSnapshotStore:
    def test_latest_token_wins(self):
        store = SnapshotStore()
        first = store.begin()
        second = store.begin()
        newer = pd.DataFrame({"a": ["new"]})
        older = pd.DataFrame({"a": ["old"]})

        assert store.complete(second, newer, source="second") is True
        assert store.complete(first, older, source="first") is False

        snapshot = store.snapshot()
        assert snapshot.table is newer
        assert snapshot.source == "second"
        assert snapshot.token == second

    def test_failure_keeps_last_good_table(self):
        store = SnapshotStore()
        table = pd.DataFrame({"a": ["x"]})
        store.complete(store.begin(), table)

        error = SheetFetchError("boom")
        assert store.fail(store.begin(), error) is True
        snapshot = store.snapshot()
        assert snapshot.table is table
        assert snapshot.error is error

    def test_stale_failure_ignored(self):
        store = SnapshotStore()
        stale = store.begin()
        store.complete(store.begin(), pd.DataFrame())
        assert store.fail(stale, SheetFetchError("late")) is False
        assert store.snapshot().error is None

    def test_success_clears_error(self):
        store = SnapshotStore()
        store.fail(store.begin(), SheetFetchError("boom"))
        store.complete(store.begin(), pd.DataFrame())
        assert store.snapshot().error is None

    def test_refresh_helper(self):
        store = SnapshotStore()
        table = pd.DataFrame({"a": ["x"]})
        assert refresh(store, lambda: table, source="disk") is True
        assert store.snapshot().table is table

        def broken():
            raise SheetAccessError("html")

        assert refresh(store, broken) is False
        assert isinstance(store.snapshot().error, SheetAccessError)
        assert store.snapshot().table is table


class TestRefreshScheduler:
    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            RefreshScheduler(lambda: None, 0)

    def test_runs_immediately_and_on_trigger(self):
        calls = []
        first = threading.Event()
        second = threading.Event()

        def callback():
            calls.append(len(calls))
            (second if first.is_set() else first).set()

        scheduler = RefreshScheduler(callback, interval=3600)
        scheduler.start()
        try:
            assert first.wait(5)
            scheduler.trigger()
            assert second.wait(5)
        finally:
            scheduler.stop(timeout=5)

        assert not scheduler.running
        assert len(calls) >= 2

    def test_callback_errors_do_not_stop_schedule(self):
        ticks = []
        done = threading.Event()

        def callback():
            ticks.append(1)
            if len(ticks) >= 2:
                done.set()
            raise RuntimeError("tick failed")

        with RefreshScheduler(callback, interval=0.01) as scheduler:
            assert done.wait(5)
        assert not scheduler.running


class TestLooksLikeHtml:
    def test_long_preamble_before_markup_is_html(self):
        body = " " * 2048 + "<!DOCTYPE html><html></html>"
        assert looks_like_html(body) is True
