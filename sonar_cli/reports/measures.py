"""Measures report generator.

Functions:
    get_measures_report(client, metrics)  -> dict

Returns a ``metrics`` section (current code) and, when any ``new_*`` metric
was requested, a ``new_code`` section with the prefix stripped
(``new_coverage`` → ``coverage``).
"""

from sonar_cli.client import SonarClient
from sonar_cli.models import Measure
from sonar_cli.reports import base_report

#: Metrics fetched when none are requested
DEFAULT_METRICS: list[str] = [
    "ncloc",
    "coverage",
    "duplicated_lines_density",
    "bugs",
    "vulnerabilities",
    "code_smells",
    "sqale_debt_ratio",
    "reliability_rating",
    "security_rating",
    "sqale_rating",
]


# --------------------------------------------------------------------------- #
# Helpers
# --------------------------------------------------------------------------- #

def _parse_value(measure: Measure):
    """Return a numeric value from a measure, or None if absent.

    SonarQube stores current-code values under ``"value"`` and (in older
    versions) new-code / leak-period values under ``"period"``. We prefer
    ``value`` when present.
    """
    val = measure.value if measure.value is not None else measure.period_value
    if val is None:
        return None
    try:
        f = float(val)
        # Return int when the float is a whole number (e.g. 88.0 → 88)
        return int(f) if f == int(f) else f
    except (ValueError, TypeError, OverflowError):
        return val


def _strip_new_prefix(d: dict) -> dict:
    """Return a copy of *d* with the ``new_`` prefix removed from all keys."""
    return {(k[4:] if k.startswith("new_") else k): v for k, v in d.items()}


# --------------------------------------------------------------------------- #
# Public API
# --------------------------------------------------------------------------- #

def get_measures_report(client: SonarClient, metrics: list[str] | None = None) -> dict:
    """Current values of *metrics* (``DEFAULT_METRICS`` if None) for the project.

    Requested metrics the server does not return are reported as ``None``.
    """
    requested = metrics or DEFAULT_METRICS
    values = {m.metric: _parse_value(m) for m in client.get_measures(requested)}

    current = {k: values.get(k) for k in requested if not k.startswith("new_")}
    new_raw = {k: values.get(k) for k in requested if k.startswith("new_")}

    report = base_report("measures", client.config, metrics=current)
    if new_raw:
        report["new_code"] = _strip_new_prefix(new_raw)
    return report
