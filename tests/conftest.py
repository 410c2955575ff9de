"""Shared pytest fixtures for the survey dashboard tests."""

import pandas as pd
import pytest
import requests


SURVEY_HEADERS = [
    "타임스탬프",
    "Q1. 소속",
    "Q3. 전공",
    "Q4. 사용 중인 대화형 AI",
    "Q5. 유료 결제 중인 AI",
]


class FakeResponse:
    def __init__(self, body, status_code=200, content_type="text/csv; charset=utf-8"):
        self.content = body.encode("utf-8") if isinstance(body, str) else body
        self.status_code = status_code
        self.headers = {"Content-Type": content_type}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")


class FakeSession:
    """Stands in for requests.Session; records calls and replays responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def example_rows():
    """Two-row table from the worked example, with short header names."""
    return [
        {"aff": "신입", "major": "CS", "use": "ChatGPT,Claude", "paid": "ChatGPT"},
        {"aff": "기존", "major": "CS", "use": "Claude", "paid": ""},
    ]


@pytest.fixture
def survey_frame():
    rows = [
        ["2026-03-02 09:00", "신입사원", "컴퓨터공학", "ChatGPT, Claude", "ChatGPT"],
        ["2026-03-02 09:05", "기존직원", "경영학", "ChatGPT / Gemini", ""],
        ["2026-03-02 09:10", "신입사원", "컴퓨터공학", "Claude", "Claude"],
        ["2026-03-02 09:12", "기존직원", "", "", ""],
        ["2026-03-02 09:20", "외부 파견", "통계학", "Gemini", "Gemini, ChatGPT"],
    ]
    return pd.DataFrame(rows, columns=SURVEY_HEADERS)


@pytest.fixture
def survey_csv_text(survey_frame):
    return survey_frame.to_csv(index=False)
