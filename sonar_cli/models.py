"""Data models for SonarQube API responses.

Each model is a dataclass built from the raw JSON via ``from_api``. Required
keys are indexed directly, so a body of the wrong shape raises ``KeyError`` /
``TypeError`` / ``ValueError``; ``SonarClient`` turns those into
``DeserializeError``. ``to_dict`` gives the JSON-ready form used by the CLI.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class _Model:
    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------

class PagedResult(list):
    """Items aggregated across pages, in server order.

    ``truncated`` is True when the page ceiling stopped the fetch before the
    server-reported end of the result set.
    """

    def __init__(self, items=(), *, total: int | None = None,
                 pages_fetched: int = 0, truncated: bool = False) -> None:
        super().__init__(items)
        self.total = total
        self.pages_fetched = pages_fetched
        self.truncated = truncated


# ---------------------------------------------------------------------------
# Server / projects / rules / sources
# ---------------------------------------------------------------------------

@dataclass
class SystemStatus(_Model):
    status: str
    version: str | None = None
    id: str | None = None

    @property
    def is_up(self) -> bool:
        return self.status == "UP"

    @classmethod
    def from_api(cls, raw: dict) -> "SystemStatus":
        return cls(status=str(raw["status"]), version=raw.get("version"), id=raw.get("id"))


@dataclass
class Project(_Model):
    key: str
    name: str
    qualifier: str | None = None
    visibility: str | None = None
    last_analysis_date: str | None = None

    @classmethod
    def from_api(cls, raw: dict) -> "Project":
        return cls(
            key=raw["key"],
            name=raw["name"],
            qualifier=raw.get("qualifier"),
            visibility=raw.get("visibility"),
            last_analysis_date=raw.get("lastAnalysisDate"),
        )


@dataclass
class Rule(_Model):
    key: str
    name: str
    severity: str | None = None
    type: str | None = None
    lang: str | None = None
    lang_name: str | None = None
    status: str | None = None

    @classmethod
    def from_api(cls, raw: dict) -> "Rule":
        return cls(
            key=raw["key"],
            name=raw["name"],
            severity=raw.get("severity"),
            type=raw.get("type"),
            lang=raw.get("lang"),
            lang_name=raw.get("langName"),
            status=raw.get("status"),
        )


@dataclass
class SourceLine(_Model):
    line: int
    code: str


# ---------------------------------------------------------------------------
# Issues
# ---------------------------------------------------------------------------

SEVERITIES = ("INFO", "MINOR", "MAJOR", "CRITICAL", "BLOCKER")


def severities_at_or_above(minimum: str) -> list[str]:
    """Return every severity at or above *minimum*, least severe first.

    >>> severities_at_or_above("critical")
    ['CRITICAL', 'BLOCKER']
    """
    minimum = minimum.upper()
    if minimum not in SEVERITIES:
        raise ValueError(f"Unknown severity '{minimum}'. Expected one of {', '.join(SEVERITIES)}")
    return list(SEVERITIES[SEVERITIES.index(minimum):])


@dataclass
class Issue(_Model):
    key: str
    rule: str
    severity: str
    component: str
    message: str
    type: str
    status: str
    project: str | None = None
    line: int | None = None
    resolution: str | None = None
    effort: str | None = None
    debt: str | None = None
    assignee: str | None = None
    creation_date: str | None = None
    tags: list[str] = field(default_factory=list)
    text_range: dict | None = None

    @classmethod
    def from_api(cls, raw: dict) -> "Issue":
        return cls(
            key=raw["key"],
            rule=raw["rule"],
            severity=raw["severity"],
            component=raw["component"],
            message=raw.get("message", ""),
            type=raw["type"],
            status=raw["status"],
            project=raw.get("project"),
            line=raw.get("line"),
            resolution=raw.get("resolution"),
            effort=raw.get("effort"),
            debt=raw.get("debt"),
            assignee=raw.get("assignee"),
            creation_date=raw.get("creationDate"),
            tags=list(raw.get("tags") or []),
            text_range=raw.get("textRange"),
        )


# ---------------------------------------------------------------------------
# Quality gate
# ---------------------------------------------------------------------------

@dataclass
class QualityGateCondition(_Model):
    status: str
    metric_key: str
    comparator: str | None = None
    error_threshold: str | None = None
    actual_value: str | None = None

    @classmethod
    def from_api(cls, raw: dict) -> "QualityGateCondition":
        return cls(
            status=raw["status"],
            metric_key=raw["metricKey"],
            comparator=raw.get("comparator"),
            error_threshold=raw.get("errorThreshold"),
            actual_value=raw.get("actualValue"),
        )


@dataclass
class QualityGateResult(_Model):
    status: str
    conditions: list[QualityGateCondition] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status == "OK"

    @classmethod
    def from_api(cls, raw: dict) -> "QualityGateResult":
        status = raw["projectStatus"]
        return cls(
            status=status["status"],
            conditions=[QualityGateCondition.from_api(c) for c in status.get("conditions") or []],
        )


# ---------------------------------------------------------------------------
# Measures
# ---------------------------------------------------------------------------

@dataclass
class Measure(_Model):
    metric: str
    value: str | None = None
    period_value: str | None = None

    @classmethod
    def from_api(cls, raw: dict) -> "Measure":
        period = raw.get("period")
        if period is None and raw.get("periods"):
            period = raw["periods"][0]
        return cls(
            metric=raw["metric"],
            value=raw.get("value"),
            period_value=period.get("value") if isinstance(period, dict) else None,
        )


def measure_value(measures: list[Measure], metric: str, default: float = 0.0) -> float:
    """Return the numeric value of *metric*, or *default* if absent or not a number."""
    for m in measures:
        if m.metric == metric and m.value is not None:
            try:
                return float(m.value)
            except ValueError:
                return default
    return default


@dataclass
class HistoryPoint(_Model):
    date: str
    value: str | None = None

    @classmethod
    def from_api(cls, raw: dict) -> "HistoryPoint":
        return cls(date=raw["date"], value=raw.get("value"))


@dataclass
class MeasureHistory(_Model):
    metric: str
    history: list[HistoryPoint] = field(default_factory=list)

    @classmethod
    def from_api(cls, raw: dict) -> "MeasureHistory":
        return cls(
            metric=raw["metric"],
            history=[HistoryPoint.from_api(h) for h in raw.get("history") or []],
        )


@dataclass
class TreeComponent(_Model):
    """A file returned by ``/api/measures/component_tree``."""

    key: str
    name: str | None = None
    path: str | None = None
    qualifier: str | None = None
    measures: list[Measure] = field(default_factory=list)

    @classmethod
    def from_api(cls, raw: dict) -> "TreeComponent":
        return cls(
            key=raw["key"],
            name=raw.get("name"),
            path=raw.get("path"),
            qualifier=raw.get("qualifier"),
            measures=[Measure.from_api(m) for m in raw.get("measures") or []],
        )


# ---------------------------------------------------------------------------
# Coverage / duplications / hotspots
# ---------------------------------------------------------------------------

@dataclass
class FileCoverage(_Model):
    file: str
    coverage_percent: float
    uncovered_lines: int
    lines_to_cover: int


@dataclass
class DuplicationBlock(_Model):
    from_line: int
    size: int
    duplicated_in: str
    duplicated_in_line: int


@dataclass
class FileDuplication(_Model):
    file: str
    duplicated_lines: int
    duplicated_density: float
    blocks: list[DuplicationBlock] = field(default_factory=list)


@dataclass
class Hotspot(_Model):
    key: str
    component: str
    security_category: str
    vulnerability_probability: str
    status: str
    message: str
    rule_key: str
    project: str | None = None
    line: int | None = None

    @classmethod
    def from_api(cls, raw: dict) -> "Hotspot":
        return cls(
            key=raw["key"],
            component=raw["component"],
            security_category=raw["securityCategory"],
            vulnerability_probability=raw["vulnerabilityProbability"],
            status=raw["status"],
            message=raw.get("message", ""),
            rule_key=raw["ruleKey"],
            project=raw.get("project"),
            line=raw.get("line"),
        )


# ---------------------------------------------------------------------------
# Background (CE) tasks
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    @property
    def is_terminal(self) -> bool:
        return self not in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)


@dataclass
class AnalysisTask(_Model):
    id: str
    status: TaskStatus
    type: str | None = None
    component_key: str | None = None
    submitted_at: str | None = None
    executed_at: str | None = None
    analysis_id: str | None = None
    error_message: str | None = None

    @classmethod
    def from_api(cls, raw: dict) -> "AnalysisTask":
        task = raw["task"]
        return cls(
            id=task["id"],
            status=TaskStatus(task["status"]),
            type=task.get("type"),
            component_key=task.get("componentKey"),
            submitted_at=task.get("submittedAt"),
            executed_at=task.get("executedAt"),
            analysis_id=task.get("analysisId"),
            error_message=task.get("errorMessage"),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data
