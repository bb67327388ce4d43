"""Shared fixtures."""

import pytest

from sonar_cli.client import PAGE_SIZE, SonarClient
from sonar_cli.config import ClientConfig

BASE = "http://localhost:9000"
PROJECT = "demo"

_ENV_VARS = ("SONAR_HOST_URL", "SONAR_URL", "SONAR_TOKEN", "SONAR_PROJECT_KEY", "SONAR_BRANCH")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class FakeClock:
    """Monotonic clock that only advances when ``sleep`` is called."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(BASE).with_token("abc").with_project(PROJECT)


@pytest.fixture
def client(config, clock) -> SonarClient:
    return SonarClient(config, clock=clock, sleep=clock.sleep)


def paged_callback(results_key: str, total: int, *, report_total: bool = True):
    """Build a requests_mock callback serving *total* numbered items page by page."""

    def callback(request, context):
        page = int(request.qs["p"][0])
        size = int(request.qs["ps"][0])
        start = (page - 1) * size
        items = [{"key": f"k{i}"} for i in range(start + 1, min(start + size, total) + 1)]
        body = {results_key: items}
        if report_total:
            body["paging"] = {"pageIndex": page, "pageSize": PAGE_SIZE, "total": total}
        return body

    return callback
