"""JSON report builders used by the CLI commands."""

from datetime import datetime, timezone
from typing import Any

from sonar_cli.config import ClientConfig


def base_report(report_type: str, config: ClientConfig, **extra: Any) -> dict:
    """Return the header shared by every report.

    ``project_key`` and ``branch`` are included only when configured.
    """
    report: dict[str, Any] = {"report_type": report_type}
    if config.project_key:
        report["project_key"] = config.project_key
    if config.branch:
        report["branch"] = config.branch
    report["generated_at"] = datetime.now(timezone.utc).isoformat()
    report.update(extra)
    return report
