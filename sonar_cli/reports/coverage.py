"""Coverage report generator.

Functions:
    get_coverage_report(client, min_coverage, sort)  -> dict

Queries ``/api/measures/component_tree`` through ``SonarClient.get_coverage``
and returns one entry per file plus project-wide totals.
"""

from sonar_cli.client import SonarClient
from sonar_cli.reports import base_report


def get_coverage_report(
    client: SonarClient,
    min_coverage: float | None = None,
    sort: str = "coverage",
) -> dict:
    """Per-file coverage for the configured project.

    With *min_coverage*, only files strictly below that percentage are listed
    and the summary covers those files only.
    """
    files = client.get_coverage(min_coverage=min_coverage, sort=sort)

    lines_to_cover = sum(f.lines_to_cover for f in files)
    uncovered = sum(f.uncovered_lines for f in files)

    return base_report(
        "coverage",
        client.config,
        min_coverage=min_coverage,
        sort=sort,
        truncated=files.truncated,
        summary={
            "files": len(files),
            "lines_to_cover": lines_to_cover,
            "uncovered_lines": uncovered,
            "coverage": _ratio(lines_to_cover, uncovered),
        },
        files=[f.to_dict() for f in files],
    )


def _ratio(lines_to_cover: int, uncovered: int) -> float | None:
    """Covered share of *lines_to_cover* as a percentage rounded to 0.1."""
    if lines_to_cover <= 0:
        return None
    return round(100.0 * (lines_to_cover - uncovered) / lines_to_cover, 1)
