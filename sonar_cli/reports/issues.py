"""Issue report generator.

Functions:
    get_issues_report(client, **filters)  -> dict
"""

from typing import Any

from sonar_cli.client import SonarClient
from sonar_cli.models import SEVERITIES, Issue
from sonar_cli.reports import base_report

# Fields to keep from each issue
_ISSUE_FIELDS = (
    "key", "rule", "severity", "type", "component", "line",
    "message", "effort", "status", "assignee", "tags", "creation_date",
)

_TYPES = ("BUG", "VULNERABILITY", "CODE_SMELL")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def get_issues_report(client: SonarClient, **filters: Any) -> dict:
    """Return the open issues of the configured project with a summary.

    *filters* are passed to ``SonarClient.search_issues`` (severity, status,
    language, created_after, issue_type, limit).
    """
    issues = client.search_issues(**filters)
    cleaned = [_extract_issue(i) for i in issues]
    return base_report(
        "issues",
        client.config,
        filters={k: v for k, v in filters.items() if v is not None},
        truncated=issues.truncated,
        summary=_build_summary(cleaned),
        issues=cleaned,
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _extract_issue(issue: Issue) -> dict[str, Any]:
    """Keep only the fields we care about from an issue."""
    return {field: getattr(issue, field) for field in _ISSUE_FIELDS}


def _build_summary(issues: list[dict]) -> dict:
    by_severity = {s: 0 for s in reversed(SEVERITIES)}
    by_type     = {t: 0 for t in _TYPES}

    for issue in issues:
        sev = issue.get("severity")
        typ = issue.get("type")
        if sev in by_severity:
            by_severity[sev] += 1
        if typ in by_type:
            by_type[typ] += 1

    return {
        "total":       len(issues),
        "by_severity": by_severity,
        "by_type":     by_type,
    }
