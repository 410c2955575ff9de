"""
Aggregation of AI-tool survey responses.

Everything here is a pure function of the response table: resolve the
columns once, walk the rows once, hand back a ``SurveySummary`` that the
Streamlit page and the command-line summary both render.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

UNRESPONDED = "미응답"

NEW_HIRE_MARKER = "신입"
EXISTING_MARKER = "기존"

AFFILIATION_CANDIDATES = ("Q1", "소속", "구분")
MAJOR_CANDIDATES = ("Q3", "전공")
USAGE_CANDIDATES = ("Q4", "대화형", "사용")
PAID_CANDIDATES = ("Q5", "유료", "결제")

MULTI_VALUE_PATTERN = re.compile(r"[,;/|·•\r\n]")

Table = Union[pd.DataFrame, Sequence[Mapping[str, object]]]


class Group(str, Enum):
    NEW = "new"
    EXISTING = "existing"
    UNKNOWN = "unknown"


GROUP_LABELS = {
    Group.NEW: "신입",
    Group.EXISTING: "기존",
    Group.UNKNOWN: "미분류",
}


@dataclass(frozen=True)
class ColumnCandidates:
    """Prioritised header aliases for the four logical survey fields."""

    affiliation: Tuple[str, ...] = AFFILIATION_CANDIDATES
    major: Tuple[str, ...] = MAJOR_CANDIDATES
    usage: Tuple[str, ...] = USAGE_CANDIDATES
    paid: Tuple[str, ...] = PAID_CANDIDATES


DEFAULT_COLUMNS = ColumnCandidates()


@dataclass(frozen=True)
class ResolvedColumns:
    affiliation: Optional[str] = None
    major: Optional[str] = None
    usage: Optional[str] = None
    paid: Optional[str] = None

    def missing(self) -> List[str]:
        return [
            name
            for name in ("affiliation", "major", "usage", "paid")
            if getattr(self, name) is None
        ]


@dataclass
class ToolUsage:
    tool: str
    used: int = 0
    new: int = 0
    existing: int = 0


@dataclass
class Conversion:
    tool: str
    users: int
    paid: int
    rate: float


@dataclass
class SurveySummary:
    total: int = 0
    group_counts: Dict[Group, int] = field(
        default_factory=lambda: {group: 0 for group in Group}
    )
    tool_usage: List[ToolUsage] = field(default_factory=list)
    major_counts: Dict[str, int] = field(default_factory=dict)
    top_categories: List[Tuple[str, int]] = field(default_factory=list)
    paid_counts: Dict[str, int] = field(default_factory=dict)
    conversion: List[Conversion] = field(default_factory=list)
    columns: ResolvedColumns = field(default_factory=ResolvedColumns)

    @property
    def new_count(self) -> int:
        return self.group_counts[Group.NEW]

    @property
    def existing_count(self) -> int:
        return self.group_counts[Group.EXISTING]

    @property
    def unknown_count(self) -> int:
        return self.group_counts[Group.UNKNOWN]

    def tool_usage_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "tool": entry.tool,
                    GROUP_LABELS[Group.NEW]: entry.new,
                    GROUP_LABELS[Group.EXISTING]: entry.existing,
                    "total": entry.used,
                }
                for entry in self.tool_usage
            ],
            columns=["tool", GROUP_LABELS[Group.NEW], GROUP_LABELS[Group.EXISTING], "total"],
        )

    def major_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.top_categories, columns=["name", "value"])

    def conversion_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {"tool": c.tool, "users": c.users, "paid": c.paid, "rate": c.rate}
                for c in self.conversion
            ],
            columns=["tool", "users", "paid", "rate"],
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "total": self.total,
            "groups": {group.value: count for group, count in self.group_counts.items()},
            "tools": [
                {
                    "tool": entry.tool,
                    "used": entry.used,
                    "new": entry.new,
                    "existing": entry.existing,
                }
                for entry in self.tool_usage
            ],
            "majors": [{"name": name, "value": value} for name, value in self.top_categories],
            "conversion": [
                {"tool": c.tool, "users": c.users, "paid": c.paid, "rate": c.rate}
                for c in self.conversion
            ],
            "columns": {
                "affiliation": self.columns.affiliation,
                "major": self.columns.major,
                "usage": self.columns.usage,
                "paid": self.columns.paid,
            },
        }


def _cell_text(value: object) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value)


def resolve_field(headers: Iterable[str], candidates: Sequence[str]) -> Optional[str]:
    """Return the header matching the highest-priority candidate.

    An exact header match beats a substring match for the same candidate;
    a later candidate is only tried when the earlier one matched nothing.
    """
    keys = [str(header) for header in headers]
    for candidate in candidates:
        if not candidate:
            continue
        if candidate in keys:
            return candidate
        for key in keys:
            if candidate in key:
                return key
    return None


def _headers_of(table: Table) -> List[str]:
    if isinstance(table, pd.DataFrame):
        return [str(column) for column in table.columns]
    if not table:
        return []
    return [str(key) for key in table[0].keys()]


def resolve_columns(table: Table, columns: ColumnCandidates = DEFAULT_COLUMNS) -> ResolvedColumns:
    headers = _headers_of(table)
    return ResolvedColumns(
        affiliation=resolve_field(headers, columns.affiliation),
        major=resolve_field(headers, columns.major),
        usage=resolve_field(headers, columns.usage),
        paid=resolve_field(headers, columns.paid),
    )


def split_multi(value: object) -> List[str]:
    text = _cell_text(value)
    if not text.strip():
        return []
    parts = (part.strip() for part in MULTI_VALUE_PATTERN.split(text))
    return [part for part in parts if part]


def distinct_values(value: object) -> List[str]:
    """Split a multi-value cell and drop repeats, keeping first-seen order."""
    return list(dict.fromkeys(split_multi(value)))


def classify_group(value: object) -> Group:
    text = _cell_text(value)
    if NEW_HIRE_MARKER in text:
        return Group.NEW
    if EXISTING_MARKER in text:
        return Group.EXISTING
    return Group.UNKNOWN


def round_half_up(value: Union[float, Decimal], decimals: int = 1) -> float:
    exact = value if isinstance(value, Decimal) else Decimal(str(value))
    quantum = Decimal(1).scaleb(-decimals)
    return float(exact.quantize(quantum, rounding=ROUND_HALF_UP))


def conversion_rate(paid: int, used: int, decimals: int = 1) -> float:
    if used <= 0:
        return 0.0
    rate = round_half_up(Decimal(paid) * 100 / Decimal(used), decimals)
    return max(0.0, min(100.0, rate))


def rank_categories(counts: Mapping[str, int], top_n: int = 10) -> List[Tuple[str, int]]:
    """Largest counts first; equal counts keep their first-seen order."""
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return ranked[: max(top_n, 0)]


def _iter_rows(table: Table) -> Iterable[Mapping[str, object]]:
    if isinstance(table, pd.DataFrame):
        return table.to_dict("records")
    return table


def summarize(
    table: Table,
    columns: ColumnCandidates = DEFAULT_COLUMNS,
    *,
    top_n: int = 10,
    rate_decimals: int = 1,
    known_tools: Sequence[str] = (),
) -> SurveySummary:
    resolved = resolve_columns(table, columns)
    summary = SurveySummary(columns=resolved)

    usage: Dict[str, ToolUsage] = {tool: ToolUsage(tool) for tool in known_tools}

    for row in _iter_rows(table):
        summary.total += 1

        affiliation = row.get(resolved.affiliation) if resolved.affiliation else None
        group = classify_group(affiliation)
        summary.group_counts[group] += 1

        major = _cell_text(row.get(resolved.major)).strip() if resolved.major else ""
        major = major or UNRESPONDED
        summary.major_counts[major] = summary.major_counts.get(major, 0) + 1

        tools = distinct_values(row.get(resolved.usage)) if resolved.usage else []
        for tool in tools or [UNRESPONDED]:
            entry = usage.setdefault(tool, ToolUsage(tool))
            entry.used += 1
            if group is Group.NEW:
                entry.new += 1
            elif group is Group.EXISTING:
                entry.existing += 1

        paid_tools = distinct_values(row.get(resolved.paid)) if resolved.paid else []
        for tool in paid_tools:
            summary.paid_counts[tool] = summary.paid_counts.get(tool, 0) + 1

    summary.tool_usage = list(usage.values())
    summary.top_categories = rank_categories(summary.major_counts, top_n)

    conversion = [
        Conversion(
            tool=entry.tool,
            users=entry.used,
            paid=summary.paid_counts.get(entry.tool, 0),
            rate=conversion_rate(
                summary.paid_counts.get(entry.tool, 0), entry.used, rate_decimals
            ),
        )
        for entry in summary.tool_usage
    ]
    summary.conversion = sorted(conversion, key=lambda c: c.rate, reverse=True)
    return summary
