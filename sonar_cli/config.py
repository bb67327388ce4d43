"""Configuration: the immutable client config and the YAML config file.

Usage:
    config = ClientConfig("https://sonar.example.com").with_token("squ_xxx")
    config = config.with_project("my-project").with_branch("develop")

    settings = load("sonar-config.yaml")     # raises ConfigError on bad config
    key = settings.resolve_project("wcs")    # returns "ch.corren.wcs"
    generate_template("sonar-config.yaml")   # writes example file to disk
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping

import yaml

from sonar_cli.exceptions import ConfigError, ProjectNotFoundError

DEFAULT_URL = "http://localhost:9000"
DEFAULT_TIMEOUT = 30.0
DEFAULT_CONFIG_PATH = "sonar-config.yaml"


# ---------------------------------------------------------------------------
# Client config
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ClientConfig:
    """Everything a ``SonarClient`` needs, fixed for the lifetime of the client.

    The ``with_*`` methods return a new instance; the receiver is unchanged.
    A missing project key is valid here and only fails when a project-scoped
    operation is attempted (see ``require_project``).
    """

    url: str = DEFAULT_URL
    token: str | None = None
    project_key: str | None = None
    branch: str | None = None
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        object.__setattr__(self, "url", self.url.strip().rstrip("/"))

    def with_token(self, token: str) -> "ClientConfig":
        return replace(self, token=token)

    def with_project(self, key: str) -> "ClientConfig":
        return replace(self, project_key=key)

    def with_branch(self, branch: str) -> "ClientConfig":
        return replace(self, branch=branch)

    def with_timeout(self, timeout: float) -> "ClientConfig":
        if timeout <= 0:
            raise ConfigError(f"Timeout must be positive, got {timeout}")
        return replace(self, timeout=float(timeout))

    def require_project(self) -> str:
        """Return the project key or raise ConfigError if none is configured."""
        if not self.project_key:
            raise ConfigError(
                "Project key is required. Use --project or set SONAR_PROJECT_KEY."
            )
        return self.project_key

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ClientConfig":
        """Build a config from SONAR_HOST_URL / SONAR_URL, SONAR_TOKEN,
        SONAR_PROJECT_KEY and SONAR_BRANCH."""
        env = os.environ if environ is None else environ
        url = env.get("SONAR_HOST_URL") or env.get("SONAR_URL") or DEFAULT_URL
        return cls(
            url=url,
            token=env.get("SONAR_TOKEN") or None,
            project_key=env.get("SONAR_PROJECT_KEY") or None,
            branch=env.get("SONAR_BRANCH") or None,
        )


# ---------------------------------------------------------------------------
# Config file
# ---------------------------------------------------------------------------

@dataclass
class FileConfig:
    url: str = ""
    token: str = ""
    timeout: float | None = None
    projects: dict[str, str] = field(default_factory=dict)

    def resolve_project(self, name: str) -> str:
        """Return the SonarQube project key for a given alias.

        Accepts either a configured alias (e.g. "wcs") or a raw project key
        passed directly (e.g. "ch.corren.wcs"). When no aliases are configured
        at all, the name is taken as a raw key.
        """
        if name in self.projects:
            return self.projects[name]
        if not self.projects or name in self.projects.values():
            return name
        available = ", ".join(self.projects.keys())
        raise ProjectNotFoundError(
            f"Project '{name}' not found. Available aliases: {available}"
        )


def load(config_path: str = DEFAULT_CONFIG_PATH, *, required: bool = True) -> FileConfig:
    """Load configuration from a YAML file.

    Environment variables SONAR_URL / SONAR_HOST_URL and SONAR_TOKEN override
    file values. When *required* is false a missing file yields an empty
    ``FileConfig`` (still subject to the environment overrides).

    Raises:
        ConfigError: if the file is missing (and required) or malformed.
    """
    path = Path(config_path)

    raw: object = {}
    if path.exists():
        try:
            with path.open(encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse '{config_path}': {exc}") from exc
    elif required:
        raise ConfigError(
            f"Config file not found: '{config_path}'\n"
            "Run `sonar-cli init` to generate a template."
        )

    if not isinstance(raw, dict):
        raise ConfigError(f"'{config_path}' must be a YAML mapping at the top level.")

    server = raw.get("server") or {}
    url = os.environ.get("SONAR_HOST_URL") or os.environ.get("SONAR_URL") or server.get("url", "")
    token = os.environ.get("SONAR_TOKEN") or server.get("token", "")
    projects = raw.get("projects") or {}

    if not isinstance(projects, dict):
        raise ConfigError(f"'projects' in '{config_path}' must be a mapping of alias: key.")

    timeout = server.get("timeout")
    if timeout is not None:
        try:
            timeout = float(timeout)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"'server.timeout' must be a number, got {timeout!r}") from exc

    return FileConfig(
        url=str(url or "").strip(),
        token=str(token or "").strip(),
        timeout=timeout,
        projects={str(k): str(v) for k, v in projects.items()},
    )


# ---------------------------------------------------------------------------
# Template generator (used by `init` command)
# ---------------------------------------------------------------------------

TEMPLATE = """\
server:
  url: "https://sonar.example.com"
  token: "squ_xxxxxxxxxxxx"       # Generate at: <your-sonar-url>/account/security
  timeout: 30                     # Per-request timeout in seconds

projects:
  # Human-readable alias: SonarQube project key
  my-project: "com.example.my-project"
  another:    "com.example.another-service"
"""


def generate_template(output_path: str = DEFAULT_CONFIG_PATH) -> None:
    """Write a template sonar-config.yaml to *output_path*.

    Raises:
        ConfigError: if the file already exists (to avoid overwriting secrets).
    """
    path = Path(output_path)
    if path.exists():
        raise ConfigError(
            f"'{output_path}' already exists. Remove it first or choose a different path."
        )
    path.write_text(TEMPLATE, encoding="utf-8")
