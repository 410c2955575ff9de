#!/usr/bin/env python3
"""
Print the KPC survey summary from a CSV export or the published sheet.

Usage:
    python summarize_survey.py --csv responses.csv
    python summarize_survey.py --url https://docs.google.com/... --json
    python summarize_survey.py --watch --interval 60   # press Enter to refresh now
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from pathlib import Path
from typing import Callable, List, Optional, TextIO

import pandas as pd

from dashboard_config import DashboardSettings
from survey_aggregator import SurveySummary, summarize
from survey_source import (
    RefreshScheduler,
    SnapshotStore,
    SurveyLoadError,
    load_sheet,
    read_table,
    refresh,
)

logger = logging.getLogger("summarize_survey")


def format_summary(summary: SurveySummary) -> str:
    lines: List[str] = [
        f"총 응답자 수: {summary.total}",
        f"신입사원: {summary.new_count} | 기존직원: {summary.existing_count} | "
        f"미분류: {summary.unknown_count}",
        "",
        "대화형 AI 사용 (신입 / 기존 / 전체)",
    ]
    for entry in summary.tool_usage:
        lines.append(f"  {entry.tool}: {entry.new} / {entry.existing} / {entry.used}")

    lines += ["", "전공 분포 (상위)"]
    for name, value in summary.top_categories:
        lines.append(f"  {name}: {value}")

    lines += ["", "AI 도구별 유료 전환율"]
    for entry in summary.conversion:
        lines.append(f"  {entry.tool}: {entry.paid}/{entry.users} · {entry.rate:g}%")
    return "\n".join(lines)


def emit(summary: SurveySummary, as_json: bool, stream: TextIO) -> None:
    if as_json:
        stream.write(json.dumps(summary.to_dict(), ensure_ascii=False, indent=2))
    else:
        stream.write(format_summary(summary))
    stream.write("\n")
    stream.flush()


def build_loader(args: argparse.Namespace, settings: DashboardSettings) -> Callable[[], pd.DataFrame]:
    if args.csv is not None:
        return lambda: read_table(args.csv)
    url = args.url or settings.csv_url
    return lambda: load_sheet(url, timeout=settings.fetch_timeout)


def run_once(args: argparse.Namespace, settings: DashboardSettings, stream: TextIO) -> int:
    try:
        table = build_loader(args, settings)()
    except SurveyLoadError as exc:
        logger.error("%s", exc)
        return 1
    summary = summarize(table, top_n=settings.top_n, rate_decimals=settings.rate_decimals)
    emit(summary, args.json, stream)
    return 0


def _trigger_on_lines(commands: TextIO, scheduler: RefreshScheduler) -> None:
    for _ in commands:
        logger.info("Manual refresh requested")
        scheduler.trigger()


def run_watch(
    args: argparse.Namespace,
    settings: DashboardSettings,
    stream: TextIO,
    stop_event: Optional[threading.Event] = None,
    commands: Optional[TextIO] = None,
) -> int:
    """Re-summarise every interval; each line read from ``commands`` refreshes at once."""
    store = SnapshotStore()
    loader = build_loader(args, settings)
    source = str(args.csv) if args.csv is not None else (args.url or settings.csv_url)
    interval = args.interval or settings.refresh_seconds or 60

    def tick() -> None:
        if refresh(store, loader, source=source):
            snapshot = store.snapshot()
            summary = summarize(
                snapshot.table, top_n=settings.top_n, rate_decimals=settings.rate_decimals
            )
            emit(summary, args.json, stream)

    stop_event = stop_event or threading.Event()
    with RefreshScheduler(tick, interval) as scheduler:
        if commands is not None:
            threading.Thread(
                target=_trigger_on_lines,
                args=(commands, scheduler),
                name="survey-refresh-input",
                daemon=True,
            ).start()
        try:
            stop_event.wait()
        except KeyboardInterrupt:
            logger.info("Stopping watch")
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Summarise KPC AI survey responses.")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--csv", type=Path, default=None, help="CSV export on disk.")
    source.add_argument("--url", default=None, help="Published CSV export URL.")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of text.")
    parser.add_argument("--watch", action="store_true", help="Re-load on a fixed interval.")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between reloads.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    arguments = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if arguments.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if arguments.csv is not None and not arguments.csv.exists():
        raise SystemExit(f"CSV file not found: {arguments.csv}")
    try:
        settings = DashboardSettings.from_env()
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    if arguments.watch:
        commands = sys.stdin if sys.stdin.isatty() else None
        return run_watch(arguments, settings, sys.stdout, commands=commands)
    return run_once(arguments, settings, sys.stdout)


if __name__ == "__main__":
    sys.exit(main())
