"""SonarQube API client.

Usage:
    config = ClientConfig("https://sonar.example.com").with_token("squ_xxx")
    client = SonarClient(config.with_project("my-project"))
    gate   = client.get_quality_gate()
    issues = client.search_issues(severity="MAJOR")
    task   = client.wait_for_task("AY1x...", timeout=300, poll_interval=5)

All calls are read-only GET requests, issued one at a time. Nothing is retried:
the first failure is raised as one of the ``sonar_cli.exceptions`` kinds.
"""

import logging
import math
import re
import time
import warnings
from typing import Any, Callable, Iterable, TypeVar

import requests

from sonar_cli.config import ClientConfig
from sonar_cli.exceptions import (
    AnalysisError,
    ApiError,
    AuthenticationError,
    DeserializeError,
    NetworkError,
    NotFoundError,
    SonarTimeoutError,
)
from sonar_cli.models import (
    AnalysisTask,
    DuplicationBlock,
    FileCoverage,
    FileDuplication,
    Hotspot,
    Issue,
    Measure,
    MeasureHistory,
    PagedResult,
    Project,
    QualityGateResult,
    Rule,
    SourceLine,
    SystemStatus,
    TaskStatus,
    TreeComponent,
    measure_value,
    severities_at_or_above,
)

PAGE_SIZE = 100
MAX_PAGES = 100

DEFAULT_WAIT_TIMEOUT = 300.0
DEFAULT_POLL_INTERVAL = 5.0

DEFAULT_ISSUE_STATUSES = "OPEN,CONFIRMED,REOPENED"
DEFAULT_HOTSPOT_STATUS = "TO_REVIEW"

COVERAGE_METRICS = ("coverage", "uncovered_lines", "lines_to_cover")
DUPLICATION_METRICS = ("duplicated_lines", "duplicated_lines_density", "duplicated_blocks")
COVERAGE_SORTS = ("coverage", "uncovered", "file")

_HTML_TAG_RE = re.compile(r"<[^>]+>")

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SonarClient:
    """Read-only wrapper around the SonarQube REST API.

    Project-scoped operations need ``config.project_key`` and raise
    ``ConfigError`` without touching the network when it is missing. When
    ``config.branch`` is set it is sent as ``branch`` on every project-scoped
    request and never on server-level ones.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self._clock = clock
        self._sleep = sleep
        self._session = session or requests.Session()
        if config.token:
            # SonarQube auth: token as username, empty password
            self._session.auth = (config.token, "")

    @property
    def base_url(self) -> str:
        return self.config.url

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "SonarClient":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Generic access
    # ------------------------------------------------------------------

    def get(self, endpoint: str, params: dict[str, Any] | None = None, *,
            scoped: bool = False) -> Any:
        """Perform a single GET request and return the parsed JSON response.

        Set *scoped* for project-scoped endpoints so the configured branch is
        added.

        Raises:
            AuthenticationError: HTTP 401 / 403
            NotFoundError:       HTTP 404
            ApiError:            Any other non-2xx response
            DeserializeError:    2xx response whose body is not JSON
            SonarTimeoutError:   Request deadline exceeded
            NetworkError:        Connection failure
        """
        response = self._send(endpoint, params or {}, scoped)
        try:
            return response.json()
        except ValueError as exc:
            raise DeserializeError(f"body is not valid JSON ({exc})", endpoint) from exc

    def get_text(self, endpoint: str, params: dict[str, Any] | None = None, *,
                 scoped: bool = False) -> str:
        """Like ``get`` but return the raw body text."""
        return self._send(endpoint, params or {}, scoped).text

    def get_paginated(
        self,
        endpoint: str,
        params: dict[str, Any],
        results_key: str,
        *,
        scoped: bool = False,
        limit: int | None = None,
    ) -> PagedResult:
        """Fetch pages of *endpoint* in order and return all items of *results_key*.

        SonarQube paginates via ``p`` (1-based page number) and ``ps`` (page
        size, fixed at ``PAGE_SIZE``). When the response reports a total
        (``paging.total`` or a top-level ``total``) the last page is
        ``ceil(total / PAGE_SIZE)``; otherwise a short page ends the listing.
        An empty page always ends it.

        At most ``MAX_PAGES`` pages are requested. Reaching that ceiling before
        the end is not an error: the result is returned with
        ``truncated=True`` and a ``UserWarning`` is emitted.

        Any failing page raises; items from earlier pages are discarded.

        Args:
            endpoint:    API path, e.g. ``/api/issues/search``
            params:      Query parameters (do not include ``p`` or ``ps``)
            results_key: Key in the response JSON that holds the results list
            scoped:      Add the configured branch to every page request
            limit:       Stop once this many items are collected
        """
        items: list = []
        page = 1

        while True:
            data = self.get(endpoint, {**params, "p": page, "ps": PAGE_SIZE}, scoped=scoped)

            results = data.get(results_key) if isinstance(data, dict) else None
            if not isinstance(results, list):
                raise DeserializeError(f"expected a '{results_key}' list in page {page}", endpoint)
            items.extend(results)
            total = _reported_total(data, endpoint)

            if limit is not None and len(items) >= limit:
                return PagedResult(items[:limit], total=total, pages_fetched=page)

            if _is_last_page(page, results, total):
                return PagedResult(items, total=total, pages_fetched=page)

            if page >= MAX_PAGES:
                message = (
                    f"Stopped after {MAX_PAGES} pages ({len(items)} items) of {endpoint}; "
                    f"the server reports {total if total is not None else 'more'} results. "
                    "Narrow the query to see the rest."
                )
                logger.warning(message)
                warnings.warn(message, UserWarning, stacklevel=2)
                return PagedResult(items, total=total, pages_fetched=page, truncated=True)

            page += 1

    # ------------------------------------------------------------------
    # Server-level operations (never branch-scoped)
    # ------------------------------------------------------------------

    def health_check(self) -> SystemStatus:
        """Return the server status (``UP``, ``STARTING``, ``DOWN``, ...)."""
        endpoint = "/api/system/status"
        return _parse(endpoint, SystemStatus.from_api, self.get(endpoint))

    def search_projects(self, query: str | None = None, qualifier: str = "TRK") -> PagedResult:
        """List projects visible to the token, optionally filtered by name/key."""
        endpoint = "/api/components/search"
        params = {"qualifiers": qualifier, "q": query}
        return self._paginate_models(endpoint, params, "components", Project.from_api)

    def search_rules(
        self,
        language: str | None = None,
        severity: str | None = None,
        *,
        query: str | None = None,
        rule_type: str | None = None,
        status: str | None = None,
    ) -> PagedResult:
        """Search the global rule repository."""
        endpoint = "/api/rules/search"
        params = {
            "languages": language,
            "severities": severity.upper() if severity else None,
            "types": rule_type,
            "statuses": status,
            "q": query,
        }
        return self._paginate_models(endpoint, params, "rules", Rule.from_api)

    def wait_for_task(
        self,
        task_id: str,
        timeout: float = DEFAULT_WAIT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> AnalysisTask:
        """Poll ``/api/ce/task`` until the task succeeds, fails or *timeout* elapses.

        *timeout* bounds the whole wait and is checked before every poll; each
        poll is additionally bounded by the per-request timeout of the config.
        The last sleep is shortened so the wait never runs past *timeout*.

        Raises:
            AnalysisError:     The task ended FAILED or CANCELED.
            SonarTimeoutError: *timeout* elapsed first. ``last_status`` holds
                               the last status seen (None if never polled).
        """
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")

        endpoint = "/api/ce/task"
        start = self._clock()
        last_status: TaskStatus | None = None

        def timed_out() -> SonarTimeoutError:
            seen = last_status.value if last_status else "unknown"
            return SonarTimeoutError(
                f"Timed out after {timeout}s waiting for task '{task_id}' (last status: {seen})",
                endpoint=endpoint,
                timeout=timeout,
                last_status=last_status,
            )

        while True:
            if self._clock() - start > timeout:
                raise timed_out()

            task = _parse(endpoint, AnalysisTask.from_api, self.get(endpoint, {"id": task_id}))
            if task.status != last_status:
                logger.info("Task %s is %s", task_id, task.status.value)
            last_status = task.status

            if task.status is TaskStatus.SUCCESS:
                return task
            if task.status is TaskStatus.FAILED:
                raise AnalysisError(
                    task.error_message or f"Analysis task '{task_id}' failed", task=task
                )
            if task.status is TaskStatus.CANCELED:
                raise AnalysisError("Analysis was canceled", task=task)

            remaining = timeout - (self._clock() - start)
            if remaining <= 0:
                raise timed_out()
            # never sleep past the overall deadline
            self._sleep(min(poll_interval, remaining))

    # ------------------------------------------------------------------
    # Project-scoped operations
    # ------------------------------------------------------------------

    def search_issues(
        self,
        *,
        severity: str | None = None,
        status: str | None = None,
        language: str | None = None,
        created_after: str | None = None,
        issue_type: str | None = None,
        limit: int | None = None,
    ) -> PagedResult:
        """Search open issues of the configured project.

        *severity* is a minimum: ``"MAJOR"`` returns MAJOR, CRITICAL and
        BLOCKER issues. *status* defaults to ``OPEN,CONFIRMED,REOPENED``.
        """
        project_key = self.config.require_project()
        endpoint = "/api/issues/search"
        params = {
            "componentKeys": project_key,
            "statuses": status or DEFAULT_ISSUE_STATUSES,
            "severities": ",".join(severities_at_or_above(severity)) if severity else None,
            "types": issue_type,
            "languages": language,
            "createdAfter": created_after,
        }
        return self._paginate_models(endpoint, params, "issues", Issue.from_api,
                                     scoped=True, limit=limit)

    def get_quality_gate(self) -> QualityGateResult:
        project_key = self.config.require_project()
        endpoint = "/api/qualitygates/project_status"
        data = self.get(endpoint, {"projectKey": project_key}, scoped=True)
        return _parse(endpoint, QualityGateResult.from_api, data)

    def get_measures(self, metrics: Iterable[str]) -> list[Measure]:
        project_key = self.config.require_project()
        metric_keys = ",".join(metrics)
        if not metric_keys:
            raise ValueError("At least one metric key is required")

        endpoint = "/api/measures/component"
        data = self.get(endpoint, {"component": project_key, "metricKeys": metric_keys},
                        scoped=True)
        return _parse(
            endpoint,
            lambda d: [Measure.from_api(m) for m in d["component"].get("measures") or []],
            data,
        )

    def get_measure_history(
        self,
        metrics: Iterable[str],
        from_date: str | None = None,
        to_date: str | None = None,
    ) -> PagedResult:
        """Return the history of each metric, oldest point first.

        The endpoint paginates history points rather than metrics, so every
        page repeats the metrics; points are merged per metric in page order.
        """
        project_key = self.config.require_project()
        endpoint = "/api/measures/search_history"
        params = {
            "component": project_key,
            "metrics": ",".join(metrics),
            "from": from_date,
            "to": to_date,
        }
        pages = self._paginate_models(endpoint, params, "measures", MeasureHistory.from_api,
                                      scoped=True)

        merged: dict[str, MeasureHistory] = {}
        for entry in pages:
            if entry.metric in merged:
                merged[entry.metric].history.extend(entry.history)
            else:
                merged[entry.metric] = entry
        return PagedResult(merged.values(), total=pages.total,
                           pages_fetched=pages.pages_fetched, truncated=pages.truncated)

    def get_coverage(self, min_coverage: float | None = None,
                     sort: str = "coverage") -> PagedResult:
        """Per-file coverage, optionally restricted to files below *min_coverage*.

        Files without a ``coverage`` measure count as fully covered. *sort* is
        one of ``coverage`` (lowest first), ``uncovered`` (most uncovered lines
        first) or ``file``.
        """
        if sort not in COVERAGE_SORTS:
            raise ValueError(f"Unknown sort '{sort}'. Expected one of {', '.join(COVERAGE_SORTS)}")
        project_key = self.config.require_project()
        files = self._component_tree(project_key, COVERAGE_METRICS)

        coverage = []
        for f in files:
            percent = measure_value(f.measures, "coverage", default=100.0)
            if min_coverage is not None and percent >= min_coverage:
                continue
            coverage.append(FileCoverage(
                file=extract_path(f.key, project_key),
                coverage_percent=percent,
                uncovered_lines=int(measure_value(f.measures, "uncovered_lines")),
                lines_to_cover=int(measure_value(f.measures, "lines_to_cover")),
            ))

        if sort == "uncovered":
            coverage.sort(key=lambda c: c.uncovered_lines, reverse=True)
        elif sort == "file":
            coverage.sort(key=lambda c: c.file)
        else:
            coverage.sort(key=lambda c: c.coverage_percent)

        return PagedResult(coverage, total=files.total, pages_fetched=files.pages_fetched,
                           truncated=files.truncated)

    def get_duplications(self, details: bool = False) -> PagedResult:
        """Files with at least one duplicated line.

        With *details*, ``/api/duplications/show`` is queried for every such
        file and each block is paired with its counterpart(s).
        """
        project_key = self.config.require_project()
        files = self._component_tree(project_key, DUPLICATION_METRICS)

        duplications = []
        for f in files:
            lines = int(measure_value(f.measures, "duplicated_lines"))
            if lines <= 0:
                continue
            dup = FileDuplication(
                file=extract_path(f.key, project_key),
                duplicated_lines=lines,
                duplicated_density=measure_value(f.measures, "duplicated_lines_density"),
            )
            if details:
                endpoint = "/api/duplications/show"
                data = self.get(endpoint, {"key": f.key}, scoped=True)
                dup.blocks = _parse(endpoint, lambda d: _duplication_blocks(d, f.key), data)
            duplications.append(dup)

        return PagedResult(duplications, total=files.total, pages_fetched=files.pages_fetched,
                           truncated=files.truncated)

    def get_hotspots(self, status: str | None = None) -> PagedResult:
        project_key = self.config.require_project()
        endpoint = "/api/hotspots/search"
        params = {"projectKey": project_key, "status": status or DEFAULT_HOTSPOT_STATUS}
        return self._paginate_models(endpoint, params, "hotspots", Hotspot.from_api, scoped=True)

    def get_source(self, file_key: str, from_line: int | None = None,
                   to_line: int | None = None) -> list[SourceLine]:
        """Source lines of a file component, optionally limited to a line range.

        A range uses ``/api/sources/show`` (HTML-highlighted, tags stripped);
        without one the raw file from ``/api/sources/raw`` is split into lines.
        """
        if from_line is None and to_line is None:
            text = self.get_text("/api/sources/raw", {"key": file_key}, scoped=True)
            return [SourceLine(line=i, code=code) for i, code in enumerate(text.splitlines(), 1)]

        endpoint = "/api/sources/show"
        data = self.get(endpoint, {"key": file_key, "from": from_line, "to": to_line},
                        scoped=True)
        return _parse(
            endpoint,
            lambda d: [SourceLine(line=int(n), code=_strip_html(code)) for n, code in d["sources"]],
            data,
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _send(self, endpoint: str, params: dict[str, Any], scoped: bool) -> requests.Response:
        url = f"{self.base_url}{endpoint}"
        query = {k: v for k, v in params.items() if v is not None}
        if scoped and self.config.branch:
            query["branch"] = self.config.branch

        logger.debug("GET %s %s", url, query)
        try:
            response = self._session.get(url, params=query, timeout=self.config.timeout)
        except requests.exceptions.Timeout as exc:
            raise SonarTimeoutError(
                f"Request timed out after {self.config.timeout}s while contacting '{url}'",
                endpoint=endpoint,
                timeout=self.config.timeout,
            ) from exc
        except requests.exceptions.ConnectionError as exc:
            raise NetworkError(
                f"Unable to reach SonarQube server at '{self.base_url}': {exc}", endpoint
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise NetworkError(f"Request to '{url}' failed: {exc}", endpoint) from exc

        _raise_for_status(endpoint, response)
        return response

    def _paginate_models(self, endpoint: str, params: dict[str, Any], results_key: str,
                         factory: Callable[[Any], T], *, scoped: bool = False,
                         limit: int | None = None) -> PagedResult:
        raw = self.get_paginated(endpoint, params, results_key, scoped=scoped, limit=limit)
        items = _parse(endpoint, lambda rows: [factory(r) for r in rows], raw)
        return PagedResult(items, total=raw.total, pages_fetched=raw.pages_fetched,
                           truncated=raw.truncated)

    def _component_tree(self, project_key: str, metrics: Iterable[str]) -> PagedResult:
        params = {
            "component": project_key,
            "metricKeys": ",".join(metrics),
            "qualifiers": "FIL",
        }
        return self._paginate_models("/api/measures/component_tree", params, "components",
                                     TreeComponent.from_api, scoped=True)


# ---------------------------------------------------------------------------
# Response mapping helpers
# ---------------------------------------------------------------------------

def _raise_for_status(endpoint: str, response: requests.Response) -> None:
    status = response.status_code
    if 200 <= status < 300:
        return

    message = _server_message(response)
    if status in (401, 403):
        raise AuthenticationError(
            status,
            message or "Authentication failed — check that your token is valid and not expired.",
            endpoint,
        )
    if status == 404:
        raise NotFoundError(status, message or "Resource not found", endpoint)
    raise ApiError(status, message or response.reason or f"HTTP {status}", endpoint)


def _server_message(response: requests.Response) -> str | None:
    """Return the text of a SonarQube ``{"errors": [{"msg": ...}]}`` payload."""
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("errors"), list):
        return None
    messages = [str(e["msg"]) for e in payload["errors"] if isinstance(e, dict) and e.get("msg")]
    return "; ".join(messages) or None


def _parse(endpoint: str, factory: Callable[[Any], T], payload: Any) -> T:
    try:
        return factory(payload)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise DeserializeError(f"{type(exc).__name__}: {exc}", endpoint) from exc


def _reported_total(data: dict, endpoint: str) -> int | None:
    paging = data.get("paging")
    if isinstance(paging, dict) and "total" in paging:
        raw = paging["total"]
    elif "total" in data:
        raw = data["total"]
    else:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise DeserializeError(f"invalid paging total {raw!r}", endpoint) from exc


def _is_last_page(page: int, results: list, total: int | None) -> bool:
    if not results:
        return True
    if total is not None:
        return page >= math.ceil(total / PAGE_SIZE)
    return len(results) < PAGE_SIZE


# ---------------------------------------------------------------------------
# Domain helpers
# ---------------------------------------------------------------------------

def extract_path(component: str, project_key: str) -> str:
    """Strip the ``<project_key>:`` prefix from a component key."""
    prefix = f"{project_key}:"
    return component[len(prefix):] if component.startswith(prefix) else component


def _strip_html(text: str) -> str:
    """Remove HTML tags injected by SonarQube syntax highlighting."""
    return _HTML_TAG_RE.sub("", text)


def _duplication_blocks(data: dict, file_key: str) -> list[DuplicationBlock]:
    """Pair each block of *file_key* with the other blocks of its duplication group."""
    files = data.get("files") or {}
    blocks = []
    for group in data.get("duplications") or []:
        group_blocks = group["blocks"]
        current = next(
            (b for b in group_blocks if files.get(b["_ref"], {}).get("key") == file_key),
            None,
        )
        if current is None:
            continue
        for other in group_blocks:
            if other is current or other["_ref"] not in files:
                continue
            other_file = files[other["_ref"]]
            blocks.append(DuplicationBlock(
                from_line=int(current["from"]),
                size=int(current["size"]),
                duplicated_in=other_file.get("name") or other_file["key"],
                duplicated_in_line=int(other["from"]),
            ))
    return blocks
