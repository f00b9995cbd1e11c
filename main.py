"""Main CLI interface for suitey."""

import sys
from pathlib import Path
from typing import Optional

import click
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from builder import BuildReport, BuildScheduler
from config import Config, LogLevel, get_session_logger, set_config
from detection import ProjectScanner, suites_from_record
from docker_orch import ContainerRuntime
from errors import BuildError, SuiteyError
from execution import RunStatus, StatusBoard, StatusUpdate, TestExecutor
from lifecycle import LifecycleController, check_environment
from protocol import Record
from registry import ModuleRegistry

__version__ = "0.1.0"

EXIT_PASSED = 0
EXIT_FAILED = 1
EXIT_INTERNAL = 2

console = Console()

STATUS_STYLES = {
    RunStatus.PASSED.value: "green",
    RunStatus.BUILT.value: "green",
    RunStatus.FAILED.value: "red",
    RunStatus.BUILD_FAILED.value: "red",
    RunStatus.ERROR.value: "red",
    RunStatus.CANCELLED.value: "yellow",
    RunStatus.INTERRUPTED.value: "yellow",
}


def create_runtime() -> ContainerRuntime:
    """Docker CLI present and daemon reachable, or ``RuntimeUnavailableError``."""
    return check_environment(ContainerRuntime)


def create_registry() -> ModuleRegistry:
    return ModuleRegistry.with_builtins()


def _status_text(status: str) -> Text:
    return Text(status, style=STATUS_STYLES.get(status, "white"))


def render_scan(result: Record) -> None:
    platforms = Table(title="Platforms", show_header=True, header_style="bold magenta")
    platforms.add_column("Language", style="cyan", no_wrap=True)
    platforms.add_column("Framework", style="blue")
    platforms.add_column("Confidence")
    platforms.add_column("Module", style="dim")
    platforms.add_column("Indicators", style="white")
    for platform in result.get_items("platforms"):
        platforms.add_row(
            platform.get("language", ""),
            platform.get("framework", ""),
            platform.get("confidence", ""),
            platform.get("module_id", ""),
            ", ".join(platform.get_array("indicators")),
        )
    console.print(platforms)

    suites = Table(title="Test suites", show_header=True, header_style="bold magenta")
    suites.add_column("Suite", style="cyan", no_wrap=True)
    suites.add_column("Platform", style="blue")
    suites.add_column("Files", justify="right")
    suites.add_column("Tests", justify="right")
    for suite in suites_from_record(result):
        suites.add_row(suite.name, suite.framework or suite.platform, str(len(suite.files)), str(suite.test_count))
    console.print(suites)

    if result.get_bool("requires_build"):
        steps = Table(title="Build steps", show_header=True, header_style="bold magenta")
        steps.add_column("Step", style="cyan")
        steps.add_column("Image", style="blue")
        steps.add_column("Command", style="white")
        for step in result.get_items("build_steps"):
            command = " && ".join(
                c for c in (step.get("install_dependencies_command"), step.get("build_command")) if c
            )
            steps.add_row(step.get("step_name", ""), step.get("docker_image", ""), command)
        console.print(steps)
        for error in result.get_items("build_step_errors"):
            console.print(f"[bold red]❌ {error.get('framework') or error.get('module_id')}: {error.get('error')}[/bold red]")
    else:
        console.print("[dim]No build required[/dim]")

    for key in ("platform_warnings", "suite_warnings", "build_warnings"):
        for warning in result.get_array(key):
            console.print(f"[yellow]⚠️ {warning}[/yellow]")


def render_build_failures(report: BuildReport) -> None:
    for outcome in report.failed:
        body = outcome.error
        output = (outcome.stdout + outcome.stderr).strip()
        if output:
            body = f"{body}\n\n{output[-4000:]}"
        console.print(Panel(
            body,
            title=f"Build failed: {outcome.step.name} ({outcome.step.framework})",
            border_style="red",
        ))


def render_results(summary: Record) -> None:
    table = Table(title="Test results", show_header=True, header_style="bold magenta")
    table.add_column("Suite", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Passed", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Duration", justify="right", style="dim")
    for suite in summary.get_items("suites"):
        table.add_row(
            suite.get("name", ""),
            _status_text(suite.get("status", "")),
            suite.get("passed_tests", "0"),
            suite.get("failed_tests", "0"),
            suite.get("skipped_tests", "0"),
            f"{suite.get('duration', '0.00')}s",
        )
    console.print(table)
    console.print(
        f"[bold]{summary.get('passed_suites')}/{summary.get('total_suites')} suites passed[/bold], "
        f"{summary.get('passed_tests')} of {summary.get('total_tests')} tests passed"
    )


def _print_update(update: StatusUpdate) -> None:
    if update.status in (RunStatus.PENDING, RunStatus.RUNNING, RunStatus.BUILDING):
        logger.debug(str(update))
        return
    style = STATUS_STYLES.get(update.status.value, "white")
    console.print(f"[{style}]{update}[/{style}]")


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Set the logging level",
)
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.option("--verbose", is_flag=True, help="Enable verbose debugging output with detailed logs")
@click.pass_context
def cli(ctx, log_level, log_file, verbose):
    """suitey: zero-configuration containerized test runner."""

    config = Config.from_env()

    if log_level:
        config.log_level = LogLevel(log_level)
    if log_file:
        config.log_file = log_file
    if verbose:
        config.verbose = verbose

    # Also initializes session logging
    set_config(config)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config

    if config.verbose and ctx.invoked_subcommand not in ["version", "modules"]:
        session_logger = get_session_logger()
        if session_logger:
            logger.info(f"Session ID: {session_logger.session_id}")
            logger.info(f"Logs directory: {session_logger.session_log_dir}")

    if ctx.invoked_subcommand in ["scan", "run"]:
        console.print(
            Panel.fit(
                "[bold blue]suitey[/bold blue] - [dim]zero-config test orchestration[/dim]",
                border_style="blue",
            )
        )


@cli.command()
@click.argument("path", type=click.Path(), default=".")
@click.option("--record", "show_record", is_flag=True, help="Print the raw scan record instead of tables")
def scan(path, show_record):
    """Detect platforms, test suites and build requirements."""

    try:
        result = ProjectScanner(create_registry()).scan(Path(path))
    except SuiteyError as e:
        logger.error(f"Scan failed: {e}")
        console.print(f"[bold red]❌ Scan failed: {e}[/bold red]")
        sys.exit(EXIT_INTERNAL)

    if result.get("scan_result") == "error":
        console.print(f"[bold red]❌ {result.get('error_message')}[/bold red]")
        sys.exit(EXIT_INTERNAL)

    if show_record:
        click.echo(result.to_text())
        return

    render_scan(result)
    if result.get("scan_result") == "partial":
        console.print("[yellow]⚠️ Scan completed partially; see warnings above and the session log.[/yellow]")


@cli.command()
@click.argument("path", type=click.Path(), default=".")
@click.option("--max-parallel", type=int, default=None, help="Maximum concurrent test containers")
@click.option("--grace-timeout", type=int, default=None, help="Seconds allowed for graceful stop (10-30)")
@click.option("--results-dir", type=click.Path(), default=None, help="Directory for per-suite result files")
@click.pass_context
def run(ctx, path, max_parallel, grace_timeout, results_dir):
    """Scan, build and run every test suite in containers."""

    config = ctx.obj["config"]
    if max_parallel is not None:
        config.max_parallel = max_parallel
    if grace_timeout is not None:
        config.grace_timeout = grace_timeout

    registry = create_registry()
    result = ProjectScanner(registry).scan(Path(path))
    if result.get("scan_result") == "error":
        console.print(f"[bold red]❌ {result.get('error_message')}[/bold red]")
        sys.exit(EXIT_INTERNAL)

    project_root = Path(result.get("project_root"))
    if result.array_count("suites") == 0:
        logger.warning(f"No tests found in {project_root}")
        console.print("[yellow]⚠️ No tests found.[/yellow]")
        return

    try:
        runtime = create_runtime()
    except SuiteyError as e:
        console.print(f"[bold red]❌ {e}[/bold red]")
        sys.exit(EXIT_INTERNAL)

    lifecycle = LifecycleController(runtime, config=config, console=console)
    board = StatusBoard()
    board.subscribe(_print_update)
    scheduler: Optional[BuildScheduler] = None
    report = BuildReport()
    exit_code = EXIT_INTERNAL

    lifecycle.install_signal_handlers()
    try:
        if result.get_bool("requires_build"):
            console.print(f"[bold green]🔨 Building {result.array_count('build_steps')} steps[/bold green]")
            scheduler = BuildScheduler(runtime, lifecycle, board=board, config=config)
            report = scheduler.run(project_root, result, result)
            if not report.success:
                render_build_failures(report)
                if report.interrupted:
                    console.print("[yellow]⚠️ Build interrupted; tests not started.[/yellow]")
                else:
                    console.print("[bold red]❌ Build failed; tests not started.[/bold red]")
                exit_code = EXIT_FAILED
                return

        console.print(f"[bold green]🧪 Running {result.array_count('suites')} suites[/bold green]")
        executor = TestExecutor(registry, runtime, lifecycle, board=board, config=config)
        summary = executor.run(project_root, result, images=report.images())
        if results_dir:
            executor.write_results(Path(results_dir), summary)
        render_results(summary)

        overall = summary.get("overall_status")
        if overall == RunStatus.PASSED.value:
            console.print("[bold green]✅ All suites passed[/bold green]")
            exit_code = EXIT_PASSED
        elif overall == RunStatus.INTERRUPTED.value:
            console.print("[yellow]⚠️ Run interrupted; results are partial.[/yellow]")
            exit_code = EXIT_FAILED
        else:
            console.print("[bold red]❌ Some suites failed[/bold red]")
            exit_code = EXIT_FAILED

    except BuildError as e:
        logger.error(f"Build failed: {e}")
        console.print(f"[bold red]❌ {e}[/bold red]")
        exit_code = EXIT_FAILED
    except Exception as e:
        logger.error(f"Run failed: {e}")
        console.print(f"[bold red]❌ Run failed: {e}[/bold red]")
        exit_code = EXIT_INTERNAL
    finally:
        if scheduler is not None:
            scheduler.cleanup_images(report)
        lifecycle.shutdown()
        session_logger = get_session_logger()
        if config.verbose and session_logger:
            summary = session_logger.get_session_summary()
            logger.info(f"Session logs: {', '.join(f['name'] for f in summary['log_files'])} in {summary['session_dir']}")
        ctx.exit(exit_code)


@cli.command()
def modules():
    """List registered modules with type, priority and capabilities."""

    registry = create_registry()
    table = Table(title="Modules", show_header=True, header_style="bold magenta")
    table.add_column("Identifier", style="cyan", no_wrap=True)
    table.add_column("Path", style="blue")
    table.add_column("Type")
    table.add_column("Priority", justify="right")
    table.add_column("Language")
    table.add_column("Capabilities", style="dim")
    for module in registry.modules():
        metadata = registry.metadata(module.identifier)
        table.add_row(
            module.identifier,
            module.path,
            metadata.get("module_type", ""),
            metadata.get("priority", ""),
            metadata.get("language", ""),
            ", ".join(metadata.get_array("capabilities")),
        )
    console.print(table)


@cli.command()
def cleanup():
    """Remove containers left behind by earlier runs."""

    try:
        runtime = create_runtime()
    except SuiteyError as e:
        console.print(f"[bold red]❌ {e}[/bold red]")
        sys.exit(EXIT_INTERNAL)

    lifecycle = LifecycleController(runtime, console=console)
    counts = lifecycle.sweep_orphans()
    if counts.get_int("cleanup_total") == 0:
        console.print("[green]No leftover containers found.[/green]")
        return
    console.print(
        f"[bold]Removed {counts.get('cleanup_success')}/{counts.get('cleanup_total')} containers[/bold]"
    )
    if counts.get_int("cleanup_failed"):
        console.print(f"[bold red]❌ {counts.get('cleanup_failed')} containers could not be removed[/bold red]")
        sys.exit(EXIT_FAILED)


@cli.command()
def version():
    """Show suitey version information."""
    console.print(f"[bold blue]suitey[/bold blue] version [green]{__version__}[/green]")
    console.print("[dim]Zero-configuration containerized test orchestration[/dim]")


def main():
    cli()


if __name__ == "__main__":
    main()
