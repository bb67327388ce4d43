"""CLI entry point — command definitions using Click.

Commands:
    init          Generate a template config file
    health        Server status
    quality-gate  Quality gate verdict of the project
    issues        Open issues of the project
    measures      Current metric values
    history       Metric history
    coverage      Per-file coverage
    duplications  Files with duplicated code
    hotspots      Security hotspots
    projects      Projects visible to the token
    rules         Rule repository search
    source        Source lines of a file
    wait          Wait for a background analysis task
"""

import functools
import json
import logging
import sys
from typing import Any

import click

from sonar_cli import __version__
from sonar_cli.client import COVERAGE_SORTS, DEFAULT_POLL_INTERVAL, DEFAULT_WAIT_TIMEOUT
from sonar_cli.models import SEVERITIES


# ---------------------------------------------------------------------------
# Helpers shared by all data commands
# ---------------------------------------------------------------------------

def _make_client(ctx: click.Context):
    """Assemble the client config from flags, env and the config file.

    Flags and environment variables win over the config file. The client is
    closed together with the click context.
    """
    from sonar_cli.client import SonarClient
    from sonar_cli.config import DEFAULT_CONFIG_PATH, DEFAULT_URL, ClientConfig, load

    obj = ctx.obj
    explicit_path = obj["config_path"]
    settings = load(explicit_path or DEFAULT_CONFIG_PATH, required=explicit_path is not None)

    config = ClientConfig(url=obj["url"] or settings.url or DEFAULT_URL)
    token = obj["token"] or settings.token
    if token:
        config = config.with_token(token)
    timeout = obj["timeout"] or settings.timeout
    if timeout:
        config = config.with_timeout(timeout)
    if obj["project"]:
        config = config.with_project(settings.resolve_project(obj["project"]))
    if obj["branch"]:
        config = config.with_branch(obj["branch"])

    _verbose(ctx, f"Connecting to {config.url}"
                  + (f" (project {config.project_key})" if config.project_key else "")
                  + (f" on branch '{config.branch}'" if config.branch else ""))
    client = SonarClient(config)
    ctx.call_on_close(client.close)
    return client


def _verbose(ctx: click.Context, message: str) -> None:
    if ctx.obj["verbose"]:
        click.echo(f"[verbose] {message}", err=True)


def _emit_json(data: Any, ctx: click.Context) -> None:
    """Write JSON to stdout or to the file specified by --output."""
    obj = ctx.obj
    indent = 2 if obj["pretty"] else None
    text = json.dumps(data, indent=indent, ensure_ascii=False)

    output_path: str | None = obj["output_path"]
    if output_path:
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(text)
        click.echo(f"Report written to '{output_path}'", err=True)
    else:
        click.echo(text)


def _list_report(report_type: str, client, key: str, items: list, **extra: Any) -> dict:
    from sonar_cli.reports import base_report

    return base_report(
        report_type,
        client.config,
        **extra,
        truncated=getattr(items, "truncated", False),
        count=len(items),
        **{key: [i.to_dict() for i in items]},
    )


def _split(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [part.strip() for part in value.split(",") if part.strip()]


def _handle_client_errors(func):
    """Decorator that catches SonarClient exceptions and exits cleanly."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        from sonar_cli.exceptions import (
            AnalysisError,
            ApiError,
            AuthenticationError,
            ConfigError,
            DeserializeError,
            NetworkError,
            NotFoundError,
            ProjectNotFoundError,
            SonarClientError,
            SonarTimeoutError,
        )

        try:
            return func(*args, **kwargs)
        except ProjectNotFoundError as exc:
            click.echo(f"Project error: {exc}", err=True)
        except ConfigError as exc:
            click.echo(f"Configuration error: {exc}", err=True)
        except AuthenticationError as exc:
            click.echo(f"Authentication error: {exc}", err=True)
        except NotFoundError as exc:
            click.echo(f"Not found: {exc}", err=True)
        except ApiError as exc:
            click.echo(f"SonarQube error: {exc}", err=True)
        except SonarTimeoutError as exc:
            click.echo(f"Timeout: {exc}", err=True)
        except NetworkError as exc:
            click.echo(f"Network error: {exc}", err=True)
        except DeserializeError as exc:
            click.echo(f"Unexpected response: {exc}", err=True)
        except AnalysisError as exc:
            click.echo(f"Analysis failed: {exc}", err=True)
        except SonarClientError as exc:
            click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    return wrapper


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--config", "config_path", default=None,
              help="Path to the configuration file.  [default: sonar-config.yaml if present]")
@click.option("--url", envvar="SONAR_HOST_URL", default=None,
              help="SonarQube server URL.  [env: SONAR_HOST_URL; default: http://localhost:9000]")
@click.option("--token", envvar="SONAR_TOKEN", default=None,
              help="Authentication token.  [env: SONAR_TOKEN]")
@click.option("--project", envvar="SONAR_PROJECT_KEY", default=None,
              help="Project key or alias from the config file.  [env: SONAR_PROJECT_KEY]")
@click.option("--branch", envvar="SONAR_BRANCH", default=None,
              help="Branch to query.  [env: SONAR_BRANCH]")
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None,
              help="Per-request timeout in seconds.  [default: 30]")
@click.option("--output", "output_path", default=None,
              help="Write JSON output to a file instead of stdout.")
@click.option("--pretty", is_flag=True, default=False,
              help="Pretty-print the JSON output.")
@click.option("--verbose", "-v", is_flag=True, default=False,
              help="Enable verbose logging.")
@click.version_option(__version__, prog_name="sonar-cli")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, url: str | None, token: str | None,
        project: str | None, branch: str | None, timeout: float | None,
        output_path: str | None, pretty: bool, verbose: bool) -> None:
    """Read-only SonarQube client — query analysis results, export as JSON."""
    ctx.ensure_object(dict)
    ctx.obj.update(
        config_path=config_path,
        url=url,
        token=token,
        project=project,
        branch=branch,
        timeout=timeout,
        output_path=output_path,
        pretty=pretty,
        verbose=verbose,
    )
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

@cli.command("init")
@click.option("--output", "output_path", default="sonar-config.yaml", show_default=True,
              help="Path where the template config file will be written.")
def init_command(output_path: str) -> None:
    """Generate a template sonar-config.yaml file."""
    from sonar_cli.config import generate_template
    from sonar_cli.exceptions import ConfigError

    try:
        generate_template(output_path)
        click.echo(f"Template written to '{output_path}'.")
        click.echo("Edit it with your server URL, token and project key mappings.")
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# Server-level commands
# ---------------------------------------------------------------------------

@cli.command("health")
@click.pass_context
@_handle_client_errors
def health_command(ctx: click.Context) -> None:
    """Server status. Exits 1 unless the server is UP."""
    from sonar_cli.reports import base_report

    client = _make_client(ctx)
    status = client.health_check()
    _emit_json(base_report("health", client.config, url=client.base_url, **status.to_dict()), ctx)
    if not status.is_up:
        sys.exit(1)


@cli.command("projects")
@click.option("--search", default=None, help="Filter on project name or key.")
@click.pass_context
@_handle_client_errors
def projects_command(ctx: click.Context, search: str | None) -> None:
    """Projects visible to the token."""
    client = _make_client(ctx)
    projects = client.search_projects(search)
    _emit_json(_list_report("projects", client, "projects", projects), ctx)


@cli.command("rules")
@click.option("--search", default=None, help="Free-text search on rule name or key.")
@click.option("--language", default=None, help="Language key, e.g. java, py.")
@click.option("--severity", type=click.Choice(SEVERITIES, case_sensitive=False), default=None)
@click.option("--type", "rule_type", default=None, help="BUG, VULNERABILITY, CODE_SMELL, ...")
@click.option("--status", default=None, help="READY, BETA, DEPRECATED, REMOVED.")
@click.pass_context
@_handle_client_errors
def rules_command(ctx: click.Context, search: str | None, language: str | None,
                  severity: str | None, rule_type: str | None, status: str | None) -> None:
    """Search the rule repository."""
    client = _make_client(ctx)
    rules = client.search_rules(language, severity, query=search, rule_type=rule_type,
                                status=status)
    _emit_json(_list_report("rules", client, "rules", rules), ctx)


@cli.command("wait")
@click.argument("task_id")
@click.option("--timeout", "wait_timeout", type=click.FloatRange(min=0),
              default=DEFAULT_WAIT_TIMEOUT, show_default=True,
              help="Maximum wait time in seconds.")
@click.option("--poll-interval", type=click.FloatRange(min=0, min_open=True),
              default=DEFAULT_POLL_INTERVAL, show_default=True,
              help="Polling interval in seconds.")
@click.pass_context
@_handle_client_errors
def wait_command(ctx: click.Context, task_id: str, wait_timeout: float,
                 poll_interval: float) -> None:
    """Wait for background analysis task TASK_ID to finish."""
    from sonar_cli.reports import base_report

    client = _make_client(ctx)
    _verbose(ctx, f"Waiting for analysis task {task_id}")
    task = client.wait_for_task(task_id, timeout=wait_timeout, poll_interval=poll_interval)
    _emit_json(base_report("analysis_task", client.config, task=task.to_dict()), ctx)


@cli.command("source")
@click.argument("file_key")
@click.option("--from", "from_line", type=click.IntRange(min=1), default=None,
              help="First line to show.")
@click.option("--to", "to_line", type=click.IntRange(min=1), default=None,
              help="Last line to show.")
@click.pass_context
@_handle_client_errors
def source_command(ctx: click.Context, file_key: str, from_line: int | None,
                   to_line: int | None) -> None:
    """Source lines of file component FILE_KEY."""
    client = _make_client(ctx)
    lines = client.get_source(file_key, from_line, to_line)
    _emit_json(_list_report("source", client, "lines", lines, component=file_key), ctx)


# ---------------------------------------------------------------------------
# Project-scoped commands
# ---------------------------------------------------------------------------

@cli.command("quality-gate")
@click.option("--fail-on-error", is_flag=True, default=False,
              help="Exit with code 1 if the quality gate is not OK.")
@click.pass_context
@_handle_client_errors
def quality_gate_command(ctx: click.Context, fail_on_error: bool) -> None:
    """Quality gate status of the project."""
    from sonar_cli.reports import base_report

    client = _make_client(ctx)
    gate = client.get_quality_gate()
    _emit_json(base_report("quality_gate", client.config, **gate.to_dict()), ctx)
    if fail_on_error and not gate.passed:
        sys.exit(1)


@cli.command("issues")
@click.option("--severity", type=click.Choice(SEVERITIES, case_sensitive=False), default=None,
              help="Minimum severity.")
@click.option("--type", "issue_type", default=None,
              help="Comma-separated types: BUG, VULNERABILITY, CODE_SMELL.")
@click.option("--status", default=None,
              help="Comma-separated statuses.  [default: OPEN,CONFIRMED,REOPENED]")
@click.option("--language", default=None, help="Comma-separated language keys.")
@click.option("--created-after", default=None, help="Only issues created after this date.")
@click.option("--limit", type=click.IntRange(min=1), default=None,
              help="Maximum number of issues.")
@click.pass_context
@_handle_client_errors
def issues_command(ctx: click.Context, severity: str | None, issue_type: str | None,
                   status: str | None, language: str | None, created_after: str | None,
                   limit: int | None) -> None:
    """Open issues of the project."""
    from sonar_cli.reports.issues import get_issues_report

    client = _make_client(ctx)
    report = get_issues_report(
        client,
        severity=severity,
        status=status,
        language=language,
        created_after=created_after,
        issue_type=issue_type,
        limit=limit,
    )
    _emit_json(report, ctx)


@cli.command("measures")
@click.option("--metrics", default=None, help="Comma-separated metric keys.")
@click.pass_context
@_handle_client_errors
def measures_command(ctx: click.Context, metrics: str | None) -> None:
    """Current metric values of the project."""
    from sonar_cli.reports.measures import get_measures_report

    client = _make_client(ctx)
    _emit_json(get_measures_report(client, _split(metrics)), ctx)


@cli.command("history")
@click.option("--metrics", required=True, help="Comma-separated metric keys.")
@click.option("--from", "from_date", default=None, help="Start date (YYYY-MM-DD).")
@click.option("--to", "to_date", default=None, help="End date (YYYY-MM-DD).")
@click.pass_context
@_handle_client_errors
def history_command(ctx: click.Context, metrics: str, from_date: str | None,
                    to_date: str | None) -> None:
    """Metric history of the project."""
    metric_keys = _split(metrics)
    if not metric_keys:
        raise click.BadParameter("at least one metric key is required", param_hint="--metrics")

    client = _make_client(ctx)
    history = client.get_measure_history(metric_keys, from_date, to_date)
    _emit_json(_list_report("history", client, "measures", history), ctx)


@cli.command("coverage")
@click.option("--min-coverage", type=click.FloatRange(0, 100), default=None,
              help="Only show files below this coverage percentage.")
@click.option("--sort", type=click.Choice(COVERAGE_SORTS), default="coverage",
              show_default=True)
@click.pass_context
@_handle_client_errors
def coverage_command(ctx: click.Context, min_coverage: float | None, sort: str) -> None:
    """Per-file coverage of the project."""
    from sonar_cli.reports.coverage import get_coverage_report

    client = _make_client(ctx)
    _emit_json(get_coverage_report(client, min_coverage, sort), ctx)


@cli.command("duplications")
@click.option("--details", is_flag=True, default=False,
              help="Resolve duplicated blocks for each file.")
@click.pass_context
@_handle_client_errors
def duplications_command(ctx: click.Context, details: bool) -> None:
    """Files with duplicated code."""
    client = _make_client(ctx)
    files = client.get_duplications(details)
    _emit_json(_list_report("duplications", client, "files", files), ctx)


@cli.command("hotspots")
@click.option("--status", default=None, help="Hotspot status.  [default: TO_REVIEW]")
@click.pass_context
@_handle_client_errors
def hotspots_command(ctx: click.Context, status: str | None) -> None:
    """Security hotspots of the project."""
    client = _make_client(ctx)
    hotspots = client.get_hotspots(status)
    _emit_json(_list_report("hotspots", client, "hotspots", hotspots), ctx)
