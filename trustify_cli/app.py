"""Typer CLI entrypoint for trustify-cli."""

from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

import httpx
import typer
from rich.console import Console

from .config import ConfigRepository, Settings
from .engine import DuplicateReport, TokenManager, Transport, unique_path
from .errors import AuthError, ConfigError, TrustifyError
from .logging_conf import configure_logging
from .orchestrator import DeleteSummary, Orchestrator
from .ui import ListFormat, ProgressReporter, format_list, render_delete_summary

app = typer.Typer(
    help="Find and remove duplicate SBOMs on a Trustify server.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
sbom_app = typer.Typer(
    name="sbom",
    help="SBOM commands",
    no_args_is_help=True,
    rich_markup_mode=None,
)
duplicates_app = typer.Typer(
    name="duplicates",
    help="Duplicate SBOM detection and removal",
    no_args_is_help=True,
    rich_markup_mode=None,
)
auth_app = typer.Typer(
    name="auth",
    help="Authentication helpers",
    no_args_is_help=True,
    rich_markup_mode=None,
)

console = Console()
err_console = Console(stderr=True)


@dataclass
class CliOptions:
    url: Optional[str] = None
    sso_url: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    config: Optional[Path] = None
    env_file: Optional[Path] = None
    verbose: bool = False


@dataclass
class AppState:
    settings: Settings
    token_manager: TokenManager
    transport: Transport
    orchestrator: Orchestrator
    client: Optional[httpx.Client] = None

    def close(self) -> None:
        self.orchestrator.close()
        self.token_manager.close()
        if self.client is not None:
            self.client.close()


def build_state(options: CliOptions) -> AppState:
    repository = ConfigRepository()
    settings = repository.load_settings(
        overrides={
            "url": options.url,
            "sso_url": options.sso_url,
            "client_id": options.client_id,
            "client_secret": options.client_secret,
        },
        config_path=options.config,
        env_file=options.env_file,
    )
    repository.locator.ensure_directories()
    logger = configure_logging(verbose=options.verbose, log_dir=repository.locator.logs_dir)

    # One connection pool serves the SSO grant and every API call.
    client = httpx.Client(timeout=settings.timeout)
    token_manager = TokenManager(
        settings.auth_credentials(),
        client=client,
        refresh_margin=settings.token_refresh_margin,
    )
    transport = Transport(
        settings.url,
        token_manager,
        client=client,
        timeout=settings.timeout,
        max_attempts=settings.max_attempts,
        backoff_base=settings.retry_backoff,
        backoff_max=settings.retry_backoff_max,
    )
    orchestrator = Orchestrator(transport, logger=logger)
    state = AppState(
        settings=settings,
        token_manager=token_manager,
        transport=transport,
        orchestrator=orchestrator,
        client=client,
    )
    try:
        token_manager.get_valid_token()
    except AuthError:
        state.close()
        raise
    logger.debug("state_ready", url=settings.url, auth=token_manager.enabled)
    return state


def _get_state(ctx: typer.Context) -> AppState:
    root = ctx.find_root()
    if isinstance(root.obj, AppState):
        return root.obj
    options = root.obj if isinstance(root.obj, CliOptions) else CliOptions()
    try:
        state = build_state(options)
    except ConfigError as exc:
        err_console.print(f"Configuration error: {exc}", style="red", markup=False)
        raise typer.Exit(code=2) from exc
    except AuthError as exc:
        err_console.print(str(exc), style="red", markup=False)
        raise typer.Exit(code=1) from exc
    root.obj = state
    root.call_on_close(state.close)
    return state


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except TrustifyError as exc:
        err_console.print(f"Error: {exc}", style="red", markup=False)
        raise typer.Exit(code=1) from exc


def _print_dry_run(summary: DeleteSummary, noun: str) -> None:
    for outcome in summary.outcomes:
        item = outcome.item
        if item.document_id:
            typer.echo(f"[DRY-RUN] Would delete: {item.id} (document_id: {item.document_id})")
        else:
            typer.echo(f"[DRY-RUN] Would delete: {item.id}")
    typer.echo(f"[DRY-RUN] Would delete {summary.total} {noun}")


def _finish_delete(summary: DeleteSummary, noun: str, title: str) -> None:
    if summary.dry_run:
        _print_dry_run(summary, noun)
        return
    console.print(render_delete_summary(summary, title=title))
    for outcome in summary.failures:
        err_console.print(f"- {outcome.item.id}: {outcome.error}", style="red", markup=False)
    if not summary.ok:
        raise typer.Exit(code=1)


def _confirm_output(path: Path) -> Optional[Path]:
    """Ask what to do with an existing report; ``None`` means abort."""

    while True:
        answer = typer.prompt(
            f"Output file {path} already exists. Overwrite? [y]es / [n]o / [r]ename",
            default="n",
        ).strip().lower()
        if answer in ("y", "yes"):
            return path
        if answer in ("n", "no"):
            return None
        if answer in ("r", "rename"):
            return unique_path(path)
        err_console.print("Please answer y, n or r.", style="yellow")


app.add_typer(sbom_app, name="sbom", help="Query and delete SBOMs")
sbom_app.add_typer(duplicates_app, name="duplicates", help="Find and delete duplicate SBOMs")
app.add_typer(auth_app, name="auth", help="Authentication helpers")


@app.callback()
def main(
    ctx: typer.Context,
    url: Optional[str] = typer.Option(None, "-u", "--url", help="Trustify API base URL"),
    sso_url: Optional[str] = typer.Option(None, "--sso-url", help="OpenID Connect server URL"),
    client_id: Optional[str] = typer.Option(None, "--client-id", help="OAuth2 client id"),
    client_secret: Optional[str] = typer.Option(None, "--client-secret", help="OAuth2 client secret"),
    config: Optional[Path] = typer.Option(None, "--config", help="YAML or JSON configuration file"),
    env_file: Optional[Path] = typer.Option(None, "--env-file", help=".env file to load"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging"),
) -> None:
    ctx.obj = CliOptions(
        url=url,
        sso_url=sso_url,
        client_id=client_id,
        client_secret=client_secret,
        config=config,
        env_file=env_file,
        verbose=verbose,
    )


@sbom_app.command("get", help="Print one SBOM as JSON.")
def sbom_get(ctx: typer.Context, sbom_id: str = typer.Argument(..., metavar="ID")) -> None:
    state = _get_state(ctx)
    with _handle_errors():
        payload = state.orchestrator.get_sbom(sbom_id)
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


@sbom_app.command("list", help="List SBOMs.")
def sbom_list(
    ctx: typer.Context,
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Query filter"),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Page size"),
    offset: Optional[int] = typer.Option(None, "--offset", min=0, help="Start offset"),
    sort: Optional[str] = typer.Option(None, "--sort", help="Sort expression, e.g. published:desc"),
    fmt: ListFormat = typer.Option(ListFormat.FULL, "--format", case_sensitive=False, help="Output format"),
) -> None:
    state = _get_state(ctx)
    with _handle_errors():
        payload = state.orchestrator.list_sboms(query=query, limit=limit, offset=offset, sort=sort)
    typer.echo(format_list(payload, fmt))


@sbom_app.command("delete", help="Delete an SBOM by id or every SBOM matching a query.")
def sbom_delete(
    ctx: typer.Context,
    sbom_id: Optional[str] = typer.Option(None, "--id", help="SBOM id to delete"),
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Delete all SBOMs matching this query"),
    concurrency: Optional[int] = typer.Option(None, "-j", "--concurrency", min=1, help="Parallel deletes"),
    batch_size: Optional[int] = typer.Option(None, "-b", "--batch-size", min=1, help="Listing page size"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be deleted"),
) -> None:
    if (sbom_id is None) == (query is None):
        raise typer.BadParameter("Specify exactly one of --id or --query")
    state = _get_state(ctx)
    settings = state.settings
    with _handle_errors():
        if sbom_id is not None:
            summary = state.orchestrator.delete_by_id(sbom_id, dry_run=dry_run)
        else:
            summary = state.orchestrator.delete_by_query(
                query,  # type: ignore[arg-type]
                concurrency or settings.delete_concurrency,
                batch_size=batch_size or settings.batch_size,
                dry_run=dry_run,
                progress=None if dry_run else ProgressReporter(label="delete"),
            )
    _finish_delete(summary, "SBOM(s)", "Delete summary")


@duplicates_app.command("find", help="Scan every SBOM and write the duplicate report.")
def duplicates_find(
    ctx: typer.Context,
    batch_size: Optional[int] = typer.Option(None, "-b", "--batch-size", min=1, help="Listing page size"),
    concurrency: Optional[int] = typer.Option(None, "-j", "--concurrency", min=1, help="Parallel page fetches"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Report file"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing report"),
) -> None:
    state = _get_state(ctx)
    settings = state.settings
    path = output or settings.report_path
    if path.exists() and not force:
        chosen = _confirm_output(path)
        if chosen is None:
            console.print("Aborted; existing report left untouched.", style="yellow")
            raise typer.Exit(code=0)
        path = chosen

    with _handle_errors():
        summary = state.orchestrator.find_duplicates(
            batch_size or settings.batch_size,
            concurrency or settings.find_concurrency,
            output=path,
            progress=ProgressReporter(label="scan"),
        )
    typer.echo(
        f"Found {len(summary.groups)} document(s) with {summary.duplicate_count} "
        f"duplicate(s). Saved to {summary.output}"
    )
    if not summary.ok:
        err_console.print(
            f"{summary.pages_failed} page(s) could not be fetched; the report may be incomplete.",
            style="red",
        )
        raise typer.Exit(code=1)


@duplicates_app.command("delete", help="Delete the duplicates listed in a report.")
def duplicates_delete(
    ctx: typer.Context,
    input_path: Optional[Path] = typer.Option(None, "--input", "-i", help="Report file"),
    concurrency: Optional[int] = typer.Option(None, "-j", "--concurrency", min=1, help="Parallel deletes"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be deleted"),
) -> None:
    state = _get_state(ctx)
    settings = state.settings
    with _handle_errors():
        groups = DuplicateReport(input_path or settings.report_path).load()
        if not groups:
            typer.echo("No duplicates to delete.")
            return
        summary = state.orchestrator.delete_duplicates(
            groups,
            concurrency or settings.delete_concurrency,
            dry_run=dry_run,
            progress=None if dry_run else ProgressReporter(label="delete"),
        )
    _finish_delete(summary, "duplicate(s)", "Duplicate delete summary")


@auth_app.command("token", help="Print a valid access token.")
def auth_token(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    if not state.token_manager.enabled:
        err_console.print(
            "Authentication is not configured (set --sso-url, --client-id and --client-secret).",
            style="red",
        )
        raise typer.Exit(code=2)
    with _handle_errors():
        credential = state.token_manager.get_valid_token()
    assert credential is not None
    typer.echo(credential.access_token)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
