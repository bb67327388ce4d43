"""Tests for the public SonarClient operations."""

import pytest

from conftest import BASE, PROJECT
from sonar_cli.client import SonarClient, extract_path
from sonar_cli.exceptions import DeserializeError
from sonar_cli.models import Issue, QualityGateCondition, TaskStatus


def _tree(components: list[dict], total: int | None = None) -> dict:
    return {
        "paging": {"pageIndex": 1, "pageSize": 100,
                   "total": len(components) if total is None else total},
        "components": components,
    }


def _file(path: str, **measures) -> dict:
    return {
        "key": f"{PROJECT}:{path}",
        "path": path,
        "qualifier": "FIL",
        "measures": [{"metric": k, "value": str(v)} for k, v in measures.items()],
    }


# ---------------------------------------------------------------------------
# health_check
# ---------------------------------------------------------------------------

def test_health_check_up(client, requests_mock):
    requests_mock.get(f"{BASE}/api/system/status",
                      json={"id": "x", "version": "10.4.1", "status": "UP"})
    status = client.health_check()
    assert status.is_up
    assert status.version == "10.4.1"


def test_health_check_starting(client, requests_mock):
    requests_mock.get(f"{BASE}/api/system/status", json={"status": "STARTING"})
    assert not client.health_check().is_up


# ---------------------------------------------------------------------------
# search_projects / search_rules
# ---------------------------------------------------------------------------

def test_search_projects(client, requests_mock):
    adapter = requests_mock.get(f"{BASE}/api/components/search", json={
        "paging": {"pageIndex": 1, "pageSize": 100, "total": 2},
        "components": [
            {"key": "a", "name": "Alpha", "qualifier": "TRK"},
            {"key": "b", "name": "Beta", "qualifier": "TRK", "lastAnalysisDate": "2024-03-01"},
        ],
    })
    projects = client.search_projects("alp")
    assert [p.key for p in projects] == ["a", "b"]
    assert projects[1].last_analysis_date == "2024-03-01"
    assert adapter.last_request.qs["q"] == ["alp"]
    assert adapter.last_request.qs["qualifiers"] == ["trk"]


def test_search_rules_filters(client, requests_mock):
    adapter = requests_mock.get(f"{BASE}/api/rules/search", json={
        "total": 1, "p": 1, "ps": 100,
        "rules": [{"key": "python:S1192", "name": "String literals", "severity": "CRITICAL",
                   "type": "CODE_SMELL", "lang": "py", "langName": "Python"}],
    })
    rules = client.search_rules("py", "critical")
    assert rules[0].lang_name == "Python"
    qs = adapter.last_request.qs
    assert qs["languages"] == ["py"]
    assert qs["severities"] == ["critical"]  # requests_mock lowercases values


# ---------------------------------------------------------------------------
# search_issues
# ---------------------------------------------------------------------------

def _issue(key: str, severity: str = "MAJOR") -> dict:
    return {
        "key": key, "rule": "py:S1234", "severity": severity,
        "component": f"{PROJECT}:src/app.py", "project": PROJECT, "line": 42,
        "message": "Some issue", "type": "BUG", "status": "OPEN", "tags": ["cwe"],
        "creationDate": "2024-02-23T10:00:00+0000",
    }


def test_search_issues_params(client, requests_mock):
    adapter = requests_mock.get(f"{BASE}/api/issues/search",
                                json={"total": 1, "issues": [_issue("i1")]})
    issues = client.search_issues(severity="MAJOR", language="py", created_after="2024-01-01",
                                  issue_type="BUG")

    assert isinstance(issues[0], Issue)
    assert issues[0].creation_date == "2024-02-23T10:00:00+0000"
    qs = adapter.last_request.qs
    assert qs["componentkeys"] == [PROJECT]
    assert qs["severities"][0].upper() == "MAJOR,CRITICAL,BLOCKER"
    assert qs["statuses"][0].upper() == "OPEN,CONFIRMED,REOPENED"
    assert qs["languages"] == ["py"]
    assert qs["createdafter"] == ["2024-01-01"]
    assert qs["types"] == ["bug"]


def test_search_issues_custom_status(client, requests_mock):
    adapter = requests_mock.get(f"{BASE}/api/issues/search", json={"total": 0, "issues": []})
    client.search_issues(status="CLOSED")
    assert adapter.last_request.qs["statuses"] == ["closed"]


def test_search_issues_limit(client, requests_mock):
    def callback(request, context):
        page = int(request.qs["p"][0])
        return {"total": 500, "issues": [_issue(f"p{page}-{i}") for i in range(100)]}

    adapter = requests_mock.get(f"{BASE}/api/issues/search", json=callback)
    issues = client.search_issues(limit=120)
    assert len(issues) == 120
    assert adapter.call_count == 2


def test_search_issues_bad_item_raises_deserialize_error(client, requests_mock):
    requests_mock.get(f"{BASE}/api/issues/search", json={"total": 1, "issues": [{"key": "i1"}]})
    with pytest.raises(DeserializeError):
        client.search_issues()


def test_unknown_severity_rejected(client):
    with pytest.raises(ValueError, match="Unknown severity"):
        client.search_issues(severity="URGENT")


# ---------------------------------------------------------------------------
# get_quality_gate / get_measures / get_measure_history
# ---------------------------------------------------------------------------

def test_get_quality_gate(client, requests_mock):
    requests_mock.get(f"{BASE}/api/qualitygates/project_status", json={"projectStatus": {
        "status": "ERROR",
        "conditions": [{"status": "ERROR", "metricKey": "new_coverage", "comparator": "LT",
                        "errorThreshold": "80", "actualValue": "61.5"}],
    }})
    gate = client.get_quality_gate()
    assert not gate.passed
    assert gate.conditions == [QualityGateCondition("ERROR", "new_coverage", "LT", "80", "61.5")]


def test_get_measures(client, requests_mock):
    adapter = requests_mock.get(f"{BASE}/api/measures/component", json={"component": {
        "key": PROJECT,
        "measures": [
            {"metric": "coverage", "value": "85.5"},
            {"metric": "new_coverage", "period": {"index": 1, "value": "90.0"}},
        ],
    }})
    measures = client.get_measures(["coverage", "new_coverage"])
    assert [m.metric for m in measures] == ["coverage", "new_coverage"]
    assert measures[1].period_value == "90.0"
    assert adapter.last_request.qs["metrickeys"] == ["coverage,new_coverage"]
    assert adapter.last_request.qs["component"] == [PROJECT]


def test_get_measures_requires_metrics(client):
    with pytest.raises(ValueError):
        client.get_measures([])


def test_get_measure_history_merges_pages(client, requests_mock):
    def callback(request, context):
        page = int(request.qs["p"][0])
        start = (page - 1) * 100
        count = 100 if page == 1 else 30
        points = [{"date": f"d{start + i}", "value": str(start + i)} for i in range(count)]
        return {
            "paging": {"pageIndex": page, "pageSize": 100, "total": 130},
            "measures": [
                {"metric": "coverage", "history": points},
                {"metric": "bugs", "history": points},
            ],
        }

    adapter = requests_mock.get(f"{BASE}/api/measures/search_history", json=callback)
    history = client.get_measure_history(["coverage", "bugs"], from_date="2024-01-01")

    assert adapter.call_count == 2
    assert adapter.last_request.qs["from"] == ["2024-01-01"]
    assert [h.metric for h in history] == ["coverage", "bugs"]
    assert len(history[0].history) == 130
    assert history[0].history[0].date == "d0"
    assert history[0].history[-1].date == "d129"


# ---------------------------------------------------------------------------
# get_coverage
# ---------------------------------------------------------------------------

COVERAGE_TREE = _tree([
    _file("src/a.py", coverage=90.0, uncovered_lines=2, lines_to_cover=20),
    _file("src/b.py", coverage=40.0, uncovered_lines=30, lines_to_cover=50),
    _file("src/c.py", coverage=70.0, uncovered_lines=45, lines_to_cover=150),
    {"key": f"{PROJECT}:README.md", "measures": []},
])


def test_get_coverage_sorted_by_coverage(client, requests_mock):
    adapter = requests_mock.get(f"{BASE}/api/measures/component_tree", json=COVERAGE_TREE)
    files = client.get_coverage()
    assert [f.file for f in files] == ["src/b.py", "src/c.py", "src/a.py", "README.md"]
    assert files[-1].coverage_percent == 100.0
    assert adapter.last_request.qs["qualifiers"] == ["fil"]


def test_get_coverage_min_and_sort(client, requests_mock):
    requests_mock.get(f"{BASE}/api/measures/component_tree", json=COVERAGE_TREE)
    files = client.get_coverage(min_coverage=80, sort="uncovered")
    assert [f.file for f in files] == ["src/c.py", "src/b.py"]
    assert files[0].uncovered_lines == 45


def test_get_coverage_sort_by_file(client, requests_mock):
    requests_mock.get(f"{BASE}/api/measures/component_tree", json=COVERAGE_TREE)
    files = client.get_coverage(sort="file")
    assert [f.file for f in files] == ["README.md", "src/a.py", "src/b.py", "src/c.py"]


def test_get_coverage_unknown_sort(client):
    with pytest.raises(ValueError, match="Unknown sort"):
        client.get_coverage(sort="size")


# ---------------------------------------------------------------------------
# get_duplications
# ---------------------------------------------------------------------------

DUP_TREE = _tree([
    _file("src/a.py", duplicated_lines=12, duplicated_lines_density=8.5, duplicated_blocks=1),
    _file("src/b.py", duplicated_lines=0, duplicated_lines_density=0.0, duplicated_blocks=0),
])

DUP_SHOW = {
    "duplications": [{"blocks": [
        {"from": 10, "size": 12, "_ref": "1"},
        {"from": 40, "size": 12, "_ref": "2"},
    ]}],
    "files": {
        "1": {"key": f"{PROJECT}:src/a.py", "name": "a.py"},
        "2": {"key": f"{PROJECT}:src/other.py", "name": "other.py"},
    },
}


def test_get_duplications_only_files_with_duplicates(client, requests_mock):
    requests_mock.get(f"{BASE}/api/measures/component_tree", json=DUP_TREE)
    show = requests_mock.get(f"{BASE}/api/duplications/show", json=DUP_SHOW)
    files = client.get_duplications()

    assert [f.file for f in files] == ["src/a.py"]
    assert files[0].duplicated_lines == 12
    assert files[0].duplicated_density == 8.5
    assert files[0].blocks == []
    assert show.call_count == 0


def test_get_duplications_details(client, requests_mock):
    requests_mock.get(f"{BASE}/api/measures/component_tree", json=DUP_TREE)
    show = requests_mock.get(f"{BASE}/api/duplications/show", json=DUP_SHOW)
    files = client.get_duplications(details=True)

    block = files[0].blocks[0]
    assert (block.from_line, block.size, block.duplicated_in, block.duplicated_in_line) == \
        (10, 12, "other.py", 40)
    assert len(files[0].blocks) == 1
    assert show.call_count == 1
    assert show.last_request.qs["key"] == [f"{PROJECT}:src/a.py"]


def test_duplications_within_same_file_are_kept(client, requests_mock):
    requests_mock.get(f"{BASE}/api/measures/component_tree", json=DUP_TREE)
    requests_mock.get(f"{BASE}/api/duplications/show", json={
        "duplications": [{"blocks": [
            {"from": 1, "size": 5, "_ref": "1"},
            {"from": 30, "size": 5, "_ref": "1"},
        ]}],
        "files": {"1": {"key": f"{PROJECT}:src/a.py", "name": "a.py"}},
    })
    blocks = client.get_duplications(details=True)[0].blocks
    assert [(b.from_line, b.duplicated_in_line) for b in blocks] == [(1, 30)]


# ---------------------------------------------------------------------------
# get_hotspots
# ---------------------------------------------------------------------------

def test_get_hotspots_default_status(client, requests_mock):
    adapter = requests_mock.get(f"{BASE}/api/hotspots/search", json={
        "paging": {"pageIndex": 1, "pageSize": 100, "total": 1},
        "hotspots": [{
            "key": "h1", "component": f"{PROJECT}:src/db.py", "project": PROJECT,
            "securityCategory": "sql-injection", "vulnerabilityProbability": "HIGH",
            "status": "TO_REVIEW", "line": 7, "message": "Make sure this is safe",
            "ruleKey": "python:S2077",
        }],
    })
    hotspots = client.get_hotspots()
    assert hotspots[0].security_category == "sql-injection"
    assert adapter.last_request.qs["status"] == ["to_review"]
    assert adapter.last_request.qs["projectkey"] == [PROJECT]


# ---------------------------------------------------------------------------
# get_source
# ---------------------------------------------------------------------------

def test_get_source_raw(client, requests_mock):
    adapter = requests_mock.get(f"{BASE}/api/sources/raw", text="import os\n\nprint(os.name)\n")
    lines = client.get_source(f"{PROJECT}:src/app.py")
    assert [(l.line, l.code) for l in lines] == [(1, "import os"), (2, ""), (3, "print(os.name)")]
    assert "from" not in adapter.last_request.qs


def test_get_source_range_strips_html(config, requests_mock):
    adapter = requests_mock.get(f"{BASE}/api/sources/show", json={"sources": [
        [10, '<span class="k">def</span> main():'],
        [11, "    pass"],
    ]})
    client = SonarClient(config.with_branch("develop"))
    lines = client.get_source(f"{PROJECT}:src/app.py", 10, 11)

    assert [(l.line, l.code) for l in lines] == [(10, "def main():"), (11, "    pass")]
    qs = adapter.last_request.qs
    assert qs["from"] == ["10"]
    assert qs["to"] == ["11"]
    assert qs["branch"] == ["develop"]


# ---------------------------------------------------------------------------
# Helpers / models
# ---------------------------------------------------------------------------

def test_extract_path():
    assert extract_path("my-project:src/main.py", "my-project") == "src/main.py"
    assert extract_path("other:path.py", "my-project") == "other:path.py"


def test_unknown_task_status_is_a_deserialize_error(client, requests_mock):
    requests_mock.get(f"{BASE}/api/ce/task", json={"task": {"id": "t", "status": "EXPLODED"}})
    with pytest.raises(DeserializeError):
        client.wait_for_task("t")


def test_task_status_terminal_states():
    assert not TaskStatus.PENDING.is_terminal
    assert not TaskStatus.IN_PROGRESS.is_terminal
    assert TaskStatus.SUCCESS.is_terminal
    assert TaskStatus.FAILED.is_terminal
    assert TaskStatus.CANCELED.is_terminal
