"""Voicedesk CLI.

Usage:
    vd health
    vd scenarios list [--query seller] [--category flow]
    vd scenarios show purchase_happy_path
    vd scenarios push scenarios/purchase_happy_path.yaml [--name purchase_happy_path]
    vd scenarios pull purchase_happy_path
    vd scenarios delete purchase_happy_path
    vd scenarios generate "Guest asks for a contract that isn't theirs"
    vd run purchase_happy_path
    vd run-all
    vd prompts list | show <name> | fields <name>
    vd check scenario.yaml transcript.yaml
    vd watch <call_id>
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path

import httpx
import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from voicedesk.config import get_settings
from voicedesk.errors import RunnerError

app = typer.Typer(name="vd", help="Live extraction watcher and voice agent scenario QA")
console = Console()

# Sub-command groups
scenarios_app = typer.Typer(help="Scenario catalog and authoring")
prompts_app = typer.Typer(help="Prompt fixtures on the runner")
app.add_typer(scenarios_app, name="scenarios")
app.add_typer(prompts_app, name="prompts")

STATUS_COLORS = {"passed": "green", "failed": "red", "error": "yellow"}


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


# ---------------------------------------------------------------------------
# Helpers: clients and error display
# ---------------------------------------------------------------------------

def _runner():
    from voicedesk.integrations.http_client import runner_http_client
    from voicedesk.integrations.runner_client import RunnerClient
    return RunnerClient(runner_http_client(get_settings()))


def _extractions_api():
    from voicedesk.integrations.extractions_api import ExtractionsApi
    from voicedesk.integrations.http_client import backend_client
    return ExtractionsApi(backend_client(get_settings()))


@contextmanager
def _runner_errors():
    """Print runner failures verbatim and exit 1."""
    try:
        yield
    except RunnerError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)
    except httpx.HTTPError as e:
        console.print(f"[red]Cannot reach the scenario runner: {escape(str(e))}[/red]")
        raise typer.Exit(1)


def _status(value: str | None) -> str:
    if not value:
        return "[dim]not run[/dim]"
    color = STATUS_COLORS.get(value, "white")
    return f"[{color}]{value.upper()}[/{color}]"


def _print_run(result) -> None:
    """Turn-by-turn timeline of one scenario run."""
    from voicedesk.engine.catalog import run_summary

    console.print(f"\n[bold]{result.scenario}[/bold]  {_status(result.status.value)}")
    for turn in result.turns:
        mark = "[green]✓[/green]" if turn.passed else "[red]✗[/red]"
        console.print(f"\n  {mark} Turn {turn.turn}")
        console.print(f"    [dim]user:[/dim]  {escape(turn.user_input) or '(empty, agent continues)'}")
        console.print(f"    [dim]agent:[/dim] {escape(turn.agent_response)}")
        for call in turn.tool_calls:
            args = escape(str(call.arguments)) if call.arguments else ""
            console.print(f"    [blue]tool:[/blue]  {call.name} {args}")
        for check in turn.checks:
            label = "[green]PASS[/green]" if check.passed else "[red]FAIL[/red]"
            line = f"    {label} {check.type}"
            if check.expected not in (None, "", [], {}):
                line += f" [dim]{escape(str(check.expected))}[/dim]"
            console.print(line)
            if check.reason and not check.passed:
                console.print(f"         {escape(check.reason)}")
    if result.error:
        console.print(f"\n  [yellow]Execution error:[/yellow] {escape(result.error)}")
    console.print(f"\n{escape(run_summary(result))}")


def _exit_for(status: str) -> None:
    if status != "passed":
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# vd health
# ---------------------------------------------------------------------------

@app.command()
def health():
    """Check that the scenario runner is up."""
    with _runner_errors():
        status = _runner().check_health()
    console.print(f"Runner: [green]{status.status}[/green]")
    console.print(f"  Scenarios: {status.scenarios_count}")
    console.print(f"  Prompts: {status.prompts_count}")


# ---------------------------------------------------------------------------
# vd scenarios ...
# ---------------------------------------------------------------------------

@scenarios_app.command("list")
def scenarios_list(
    query: str = typer.Option("", "--query", "-q", help="Match name or tag"),
    category: str = typer.Option("all", "--category", "-c", help="flow, edit, fields, errors, end_call"),
):
    """List scenarios with their last result."""
    from voicedesk.engine.catalog import catalog_stats, filter_scenarios

    with _runner_errors():
        summaries = _runner().list_scenarios()

    stats = catalog_stats(summaries)
    console.print(f"Total {stats.total}  [green]Passed {stats.passed}[/green]  "
                  f"[red]Failed {stats.failed}[/red]  [dim]Not run {stats.not_run}[/dim]")

    shown = filter_scenarios(summaries, query, category)
    if not shown:
        console.print("[dim]No scenarios match.[/dim]")
        return

    table = Table(title="Scenarios")
    table.add_column("Name", style="bold")
    table.add_column("Category")
    table.add_column("Type")
    table.add_column("Mode")
    table.add_column("Turns", justify="right")
    table.add_column("Tags", style="dim")
    table.add_column("Last Result")
    for s in shown:
        table.add_row(
            s.name, s.category, s.contract_type, s.mode, str(s.turn_count),
            ", ".join(s.tags),
            _status(s.last_result.value if s.last_result else None),
        )
    console.print(table)


@scenarios_app.command("show")
def scenarios_show(name: str = typer.Argument(..., help="Scenario name")):
    """Show a scenario's setup and turns."""
    with _runner_errors():
        detail = _runner().get_scenario(name)

    console.print(f"\n[bold]{detail.name}[/bold]  [dim]{detail.category} / "
                  f"{detail.contract_type} / {detail.mode}[/dim]")
    if detail.description:
        console.print(f"  {detail.description}")
    if detail.tags:
        console.print(f"  Tags: {', '.join(detail.tags)}")
    if detail.mock_prompt_file:
        console.print(f"  Prompt: {detail.mock_prompt_file}")
    if detail.is_guest:
        console.print(f"  Guest contract: {detail.guest_contract_id}")
    failing = [k for k, v in detail.error_config.items() if v]
    if failing:
        console.print(f"  [yellow]Simulated errors: {', '.join(failing)}[/yellow]")

    table = Table(title="Turns")
    table.add_column("#", style="dim", justify="right")
    table.add_column("User Input")
    table.add_column("Expectations")
    for i, turn in enumerate(detail.turns, start=1):
        expectations = [k.removeprefix("expect_") for k in turn.to_payload() if k.startswith("expect_")]
        table.add_row(str(i), escape(turn.user_input) or "[dim](agent continues)[/dim]",
                      ", ".join(expectations))
    console.print(table)


@scenarios_app.command("push")
def scenarios_push(
    file: Path = typer.Argument(..., help="Scenario YAML file"),
    name: str = typer.Option("", "--name", "-n", help="Update this existing scenario instead of creating"),
):
    """Create (or update) a scenario on the runner from a local YAML file."""
    from voicedesk.models import ScenarioDetail

    request = ScenarioDetail.from_file(file).to_create_request()
    with _runner_errors():
        runner = _runner()
        summary = runner.update_scenario(name, request) if name else runner.create_scenario(request)
    verb = "Updated" if name else "Created"
    console.print(f"[green]{verb}:[/green] {summary.name} ({summary.turn_count} turns)")
    if summary.file_path:
        console.print(f"  File: {summary.file_path}")


@scenarios_app.command("pull")
def scenarios_pull(name: str = typer.Argument(..., help="Scenario name")):
    """Save a runner scenario into the local scenarios directory."""
    with _runner_errors():
        detail = _runner().get_scenario(name)
    path = detail.save(get_settings().scenarios_path)
    console.print(f"[green]Saved:[/green] {path}")


@scenarios_app.command("delete")
def scenarios_delete(
    name: str = typer.Argument(..., help="Scenario name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete a scenario from the runner."""
    if not yes:
        typer.confirm(f"Delete scenario {name}?", abort=True)
    with _runner_errors():
        _runner().delete_scenario(name)
    console.print(f"[green]Deleted:[/green] {name}")


@scenarios_app.command("generate")
def scenarios_generate(
    description: str = typer.Argument(..., help="Plain-English description of the scenario"),
    prompt_file: str = typer.Option("", "--prompt-file", "-p", help="Mock prompt fixture to target"),
    save: bool = typer.Option(False, "--save", help="Write the draft to the scenarios directory"),
):
    """Draft a scenario with the runner's generator and print it for review."""
    from voicedesk.engine.authoring import draft_from_generated
    from voicedesk.models import ScenarioDetail

    with _runner_errors():
        generated = _runner().generate_scenario(description, prompt_file or None)
    draft = draft_from_generated(generated)
    console.print(yaml.safe_dump(draft.to_payload(), sort_keys=False, allow_unicode=True), markup=False)

    if save:
        path = ScenarioDetail.model_validate(draft.to_payload()).save(get_settings().scenarios_path)
        console.print(f"[green]Saved draft:[/green] {path}")
    else:
        console.print("[dim]Review, then save with --save or push with 'vd scenarios push'.[/dim]")


# ---------------------------------------------------------------------------
# vd run / vd run-all
# ---------------------------------------------------------------------------

@app.command()
def run(name: str = typer.Argument(..., help="Scenario name")):
    """Run one scenario on the runner and show the turn timeline."""
    console.print(f"Running [bold]{name}[/bold]...")
    with _runner_errors():
        result = _runner().run_scenario(name)
    _print_run(result)
    _exit_for(result.status.value)


@app.command("run-all")
def run_all():
    """Run every scenario on the runner."""
    from voicedesk.engine.catalog import run_all_summary, run_summary

    console.print("Running all scenarios...")
    with _runner_errors():
        result = _runner().run_all_scenarios()

    table = Table(title="Run All")
    table.add_column("Scenario", style="bold")
    table.add_column("Status")
    table.add_column("Turns", justify="right")
    table.add_column("Summary")
    for r in result.results:
        table.add_row(r.scenario, _status(r.status.value), str(len(r.turns)), escape(run_summary(r)))
    console.print(table)
    console.print(run_all_summary(result))
    if result.failed or result.errors:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# vd prompts ...
# ---------------------------------------------------------------------------

@prompts_app.command("list")
def prompts_list():
    """List prompt fixtures available on the runner."""
    with _runner_errors():
        prompts = _runner().list_prompts()
    if not prompts:
        console.print("[dim]No prompts.[/dim]")
        return
    for p in prompts:
        console.print(f"  {p}")


@prompts_app.command("show")
def prompts_show(name: str = typer.Argument(..., help="Prompt file name")):
    """Print a prompt fixture."""
    with _runner_errors():
        content = _runner().get_prompt_content(name)
    console.print(content, markup=False)


@prompts_app.command("fields")
def prompts_fields(name: str = typer.Argument(..., help="Prompt file name")):
    """List the field ids a prompt fixture declares."""
    with _runner_errors():
        fields = _runner().get_prompt_fields(name)
    for f in fields:
        console.print(f"  {f}")


# ---------------------------------------------------------------------------
# vd check (offline)
# ---------------------------------------------------------------------------

@app.command()
def check(
    scenario_file: Path = typer.Argument(..., help="Scenario YAML file"),
    transcript_file: Path = typer.Argument(..., help="Recorded agent transcript (YAML/JSON)"),
    prompts_dir: Path = typer.Option(None, "--prompts-dir", help="Mock prompt fixtures directory"),
):
    """Check a recorded transcript against a scenario without the runner."""
    from voicedesk.engine.execution import ReplayAgent, execute_scenario
    from voicedesk.engine.judge import get_judge
    from voicedesk.models import ScenarioDetail

    settings = get_settings()
    scenario = ScenarioDetail.from_file(scenario_file)
    agent = ReplayAgent.from_file(transcript_file)
    result = execute_scenario(scenario, agent, get_judge(settings),
                              prompts_dir or settings.prompts_path)
    _print_run(result)
    _exit_for(result.status.value)


# ---------------------------------------------------------------------------
# vd watch
# ---------------------------------------------------------------------------

def _fields_table(snapshot) -> Table:
    table = Table(title=f"Extraction: {snapshot.document_type or 'unknown'}"
                        f" ({snapshot.jurisdiction_code or '-'})")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for entry in snapshot.fields:
        table.add_row(entry.key, entry.value)
    return table


@app.command()
def watch(
    call_id: str = typer.Argument(..., help="Voice session callId (room name)"),
    user_id: str = typer.Option("", "--user-id", help="Restrict discovery to this user"),
    interval: int = typer.Option(0, "--interval", help="Poll interval in ms (default from settings)"),
    polls: int = typer.Option(0, "--polls", help="Stop after N polls (0 = until Ctrl-C)"),
):
    """Follow the live extraction for a voice call."""
    from voicedesk.engine.resolver import ExtractionResolver

    settings = get_settings()
    resolver = ExtractionResolver(
        _extractions_api(),
        call_id=call_id,
        user_id=user_id or None,
        poll_interval_ms=interval or settings.extraction_poll_interval_ms,
    )

    last_shown = None
    console.print(f"Watching call [bold]{call_id}[/bold] every {resolver.poll_interval:g}s...")
    try:
        for snapshot in resolver.watch(max_polls=polls or None):
            if snapshot.error:
                console.print(f"[red]Failed to load extraction: {escape(str(snapshot.error))}[/red]")
                continue
            if snapshot.data is None:
                console.print(f"[dim]{snapshot.phase.value}: waiting for the agent...[/dim]")
                continue
            view = [(e.key, e.value) for e in snapshot.fields]
            if view == last_shown:
                continue
            last_shown = view
            console.print(_fields_table(snapshot))
            outstanding = snapshot.data.outstanding_fields()
            if outstanding:
                console.print(f"  [yellow]Still needed:[/yellow] {', '.join(outstanding)}")
            if snapshot.call_status:
                console.print(f"  Call status: {snapshot.call_status}")
    except KeyboardInterrupt:
        resolver.stop()
        console.print("\n[dim]Stopped.[/dim]")


if __name__ == "__main__":
    app()
