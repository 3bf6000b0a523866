"""
CLI interface for dorchestra.

Provides commands to inspect specs, run them end to end, run the two-phase
analyze/commit flow, and evaluate readiness.

Specs are YAML/JSON documents in the configured definitions directory. Named
specs from config (quick_launch, course_setup, domain_ready, course_ready)
may be used in place of slugs.
"""

import json
import signal
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import click
import yaml
from rich.table import Table

from dorchestra import __version__
from dorchestra.errors import DorchestraError, RunCancelledError, StepExecutionError
from dorchestra.utils import console, format_duration, print_success, print_warning


def _parse_assignments(assignments: tuple[str, ...], option: str) -> dict[str, Any]:
    """Parse key=value pairs; values are YAML scalars or flow collections."""
    parsed: dict[str, Any] = {}
    for item in assignments:
        key, sep, raw = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {item!r}", param_hint=option)
        try:
            parsed[key] = yaml.safe_load(raw) if raw else ""
        except yaml.YAMLError:
            parsed[key] = raw
    return parsed


def _load_mapping(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise click.BadParameter(f"{path} must contain a mapping")
    return data


def _build_input(input_file: Path | None, assignments: tuple[str, ...]) -> dict[str, Any]:
    data = _load_mapping(input_file) if input_file else {}
    data.update(_parse_assignments(assignments, "--set"))
    return data


def _get_config(ctx):
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'dorchestra init' to create a configuration file.", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


def _get_engine(ctx):
    if "engine" not in ctx.obj:
        from dorchestra.engine import Engine

        ctx.obj["engine"] = Engine.from_config(_get_config(ctx))
    return ctx.obj["engine"]


def _resolve_slug(ctx, spec: str) -> str:
    config = ctx.obj.get("config")
    return config.spec_slug(spec) if config is not None else spec


def _make_sink(task_file: Path | None, run_label: str, quiet: bool):
    from dorchestra.progress import MultiSink, NullSink, RichProgressSink, TaskFileSink

    sinks = [NullSink() if quiet else RichProgressSink(console)]
    if task_file is not None:
        sinks.append(TaskFileSink(task_file, task_id=task_file.stem, task_type=run_label))
    return MultiSink(*sinks)


def _print_warnings(warnings) -> None:
    for warning in warnings:
        print_warning(warning)


def _fail(message: str) -> None:
    click.echo(f"✗ {message}", err=True)
    raise SystemExit(1)


@contextmanager
def _cancel_on_interrupt():
    """Ctrl-C cancels the run after the current step instead of killing it."""
    from dorchestra.executor import CancellationToken

    token = CancellationToken()

    def handler(signum, frame):
        click.echo("Stopping after the current step...", err=True)
        token.cancel("interrupted")

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)


def _cancelled_message(result) -> str:
    from dorchestra.schemas import StepStatus

    pending = [o.step_id for o in result.step_outcomes if o.status == StepStatus.NOT_RUN]
    return str(RunCancelledError(pending[0] if pending else None))


@click.group()
@click.version_option(version=__version__, prog_name="dorchestra")
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Path to config.yaml")
@click.option("-v", "--verbose", is_flag=True, help="Log at DEBUG level")
@click.pass_context
def main(ctx, config_path: Path | None, verbose: bool):
    """
    dorchestra - Spec-driven orchestration for tutor domain setup.

    Run step specs, review and commit two-phase runs, and score readiness.
    """
    from dorchestra.config import load_config
    from dorchestra.utils import setup_logging

    ctx.ensure_object(dict)
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = load_config(config_path)
        except DorchestraError as e:
            ctx.obj["config_error"] = str(e)

    config = ctx.obj.get("config")
    if config is not None:
        setup_logging(
            log_file=config.get_log_file_path(),
            log_level="DEBUG" if verbose else config.get_log_level(),
            log_format=config.get_log_format(),
            console_output=verbose or config.should_log_to_console(),
        )


@main.command("run")
@click.argument("spec")
@click.option("--input", "input_file", type=click.Path(exists=True, path_type=Path), help="YAML/JSON input file")
@click.option("--set", "assignments", multiple=True, help="Input value as key=value (repeatable)")
@click.option("--task-file", type=click.Path(path_type=Path), help="Write polling state to this JSON file")
@click.option("--json", "as_json", is_flag=True, help="Print the run result as JSON")
@click.option("--quiet", is_flag=True, help="Do not render progress")
@click.pass_context
def run(ctx, spec: str, input_file, assignments, task_file, as_json: bool, quiet: bool):
    """
    Run every step of a spec.

    SPEC is a spec slug or a configured spec name.

    Examples:

        dorchestra run quick_launch --set subjectName="GCSE Biology" --set filePath=notes.txt

        dorchestra run COURSE-SETUP-001 --input course.yaml --task-file task.json
    """
    slug = _resolve_slug(ctx, spec)
    engine = _get_engine(ctx)
    input_data = _build_input(input_file, assignments)
    sink = _make_sink(task_file, slug, quiet or as_json)

    started = time.monotonic()
    try:
        with _cancel_on_interrupt() as token:
            result = engine.run_all(slug, input_data, sink=sink, cancel_token=token)
    except StepExecutionError as e:
        if e.partial_result is not None:
            _print_warnings(e.partial_result.warnings)
        _fail(str(e))
    except DorchestraError as e:
        _fail(str(e))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
        if result.cancelled:
            raise SystemExit(1)
        return

    _print_warnings(result.warnings)
    if result.cancelled:
        _fail(_cancelled_message(result))
    print_success(
        f"{slug} completed in {format_duration(time.monotonic() - started)} "
        f"({len(result.warnings)} warning(s))"
    )
    for key, value in result.results.items():
        if not isinstance(value, (list, dict)):
            click.echo(f"  {key}: {value}")


@main.command("analyze")
@click.argument("spec")
@click.option("--input", "input_file", type=click.Path(exists=True, path_type=Path), help="YAML/JSON input file")
@click.option("--set", "assignments", multiple=True, help="Input value as key=value (repeatable)")
@click.option("-o", "--output", type=click.Path(path_type=Path), help="Write the preview JSON here")
@click.option("--quiet", is_flag=True, help="Do not render progress")
@click.pass_context
def analyze(ctx, spec: str, input_file, assignments, output, quiet: bool):
    """
    Run the analyze phase of a spec and save the preview for review.

    Example:

        dorchestra analyze quick_launch --set subjectName=Physics --set filePath=notes.txt -o preview.json
    """
    slug = _resolve_slug(ctx, spec)
    engine = _get_engine(ctx)
    input_data = _build_input(input_file, assignments)

    try:
        preview = engine.analyze(slug, input_data, sink=_make_sink(None, slug, quiet or output is None))
    except DorchestraError as e:
        _fail(str(e))

    payload = json.dumps(preview.to_dict(), indent=2, default=str)
    if output is None:
        click.echo(payload)
        return

    output.write_text(payload)
    _print_warnings(preview.warnings)
    print_success(f"Preview written to {output}")
    for key, value in preview.summary.items():
        if not isinstance(value, (list, dict)):
            click.echo(f"  {key}: {value}")


@main.command("commit")
@click.argument("spec")
@click.argument("preview_file", type=click.Path(exists=True, path_type=Path))
@click.option("--override", "overrides", multiple=True, help="Reviewed field as key=value (repeatable)")
@click.option("--overrides-file", type=click.Path(exists=True, path_type=Path), help="YAML/JSON overrides file")
@click.option("--task-file", type=click.Path(path_type=Path), help="Write polling state to this JSON file")
@click.option("--quiet", is_flag=True, help="Do not render progress")
@click.pass_context
def commit(ctx, spec: str, preview_file: Path, overrides, overrides_file, task_file, quiet: bool):
    """
    Run the commit phase against a reviewed preview.

    Example:

        dorchestra commit quick_launch preview.json --override domainName="Physics (Year 10)"
    """
    from dorchestra.schemas import Preview

    slug = _resolve_slug(ctx, spec)
    engine = _get_engine(ctx)

    with open(preview_file) as f:
        preview = Preview.from_dict(json.load(f))
    merged_overrides = _load_mapping(overrides_file) if overrides_file else {}
    merged_overrides.update(_parse_assignments(overrides, "--override"))

    try:
        result = engine.commit(slug, preview, merged_overrides, sink=_make_sink(task_file, slug, quiet))
    except StepExecutionError as e:
        if e.partial_result is not None:
            _print_warnings(e.partial_result.warnings)
        _fail(str(e))
    except DorchestraError as e:
        _fail(str(e))

    _print_warnings(result.warnings)
    print_success(f"{slug} committed ({len(result.warnings)} warning(s))")
    for key, value in result.results.items():
        if not isinstance(value, (list, dict)):
            click.echo(f"  {key}: {value}")


@main.command("evaluate")
@click.argument("spec")
@click.option("--set", "assignments", multiple=True, help="Context value as key=value (e.g. domainId=...)")
@click.option("--json", "as_json", is_flag=True, help="Print the verdict as JSON")
@click.option("--strict", is_flag=True, help="Exit 1 unless every critical check passes")
@click.pass_context
def evaluate(ctx, spec: str, assignments, as_json: bool, strict: bool):
    """
    Evaluate a readiness spec.

    Example:

        dorchestra evaluate domain_ready --set domainId=domain_01J...
    """
    slug = _resolve_slug(ctx, spec)
    engine = _get_engine(ctx)
    variables = _parse_assignments(assignments, "--set")

    try:
        verdict = engine.evaluate(slug, variables, subject=variables.get("domainId"))
    except DorchestraError as e:
        _fail(str(e))

    if as_json:
        click.echo(json.dumps(verdict.to_dict(), indent=2))
    else:
        table = Table(title=f"{slug}: {verdict.level} ({verdict.score}%)")
        table.add_column("Check")
        table.add_column("Severity")
        table.add_column("Result")
        table.add_column("Detail")
        for check in verdict.checks:
            mark = "[green]✓[/green]" if check.passed else "[red]✗[/red]"
            table.add_row(check.name, check.severity.value, mark, check.detail)
        console.print(table)
        click.echo(
            f"Critical {verdict.critical_passed}/{verdict.critical_total}, "
            f"recommended {verdict.recommended_passed}/{verdict.recommended_total}"
        )

    if strict and not verdict.ready:
        raise SystemExit(1)


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize dorchestra configuration."""
    from dorchestra.config import DEFAULT_ANALYZE_OPERATIONS, DEFAULT_SPECS, get_dorchestra_home

    home = get_dorchestra_home()
    home.mkdir(parents=True, exist_ok=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = {
        "store_path": str(home / "store.json"),
        "task_dir": str(home / "tasks"),
        "analyze_operations": list(DEFAULT_ANALYZE_OPERATIONS),
        "specs": dict(DEFAULT_SPECS),
        "logging": {"level": "INFO", "format": "pretty", "console": True},
    }
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))
    click.echo(f"Initialized dorchestra config at {cfg_path}")


@main.group("specs")
def specs_group():
    """Inspect and validate spec definitions."""
    pass


@specs_group.command("list")
@click.pass_context
def list_specs(ctx):
    """List available specs."""
    engine = _get_engine(ctx)
    slugs = engine.spec_source.list_specs()
    if not slugs:
        click.echo("No spec definitions found.")
        return
    for slug in slugs:
        try:
            spec = engine.spec_source.load(slug)
        except DorchestraError as e:
            click.echo(f"  {slug}  (error: {e})")
            continue
        kind = f"{len(spec.steps)} steps" if spec.steps else f"{len(spec.checks)} checks"
        click.echo(f"  {spec.slug}  {spec.title} ({kind})")


@specs_group.command("show")
@click.argument("spec")
@click.pass_context
def show_spec(ctx, spec: str):
    """Show a spec's steps or checks."""
    slug = _resolve_slug(ctx, spec)
    engine = _get_engine(ctx)
    try:
        definition = engine.spec_source.load(slug)
    except DorchestraError as e:
        _fail(str(e))

    click.echo(f"Spec: {definition.slug} v{definition.version}")
    click.echo(f"Title: {definition.title}")
    click.echo()
    click.echo(yaml.safe_dump(definition.to_dict(), sort_keys=False))


@specs_group.command("validate")
@click.argument("specs", nargs=-1)
@click.pass_context
def validate_specs(ctx, specs):
    """
    Check that every operation and query a spec names is registered.

    Validates all specs when none are given.
    """
    engine = _get_engine(ctx)
    slugs = [_resolve_slug(ctx, s) for s in specs] or engine.spec_source.list_specs()
    failed = False
    for slug in slugs:
        try:
            problems = engine.validate(slug)
        except DorchestraError as e:
            problems = [str(e)]
        if problems:
            failed = True
            click.echo(f"✗ {slug}")
            for problem in problems:
                click.echo(f"    {problem}")
        else:
            click.echo(f"✓ {slug}")
    if failed:
        raise SystemExit(1)


if __name__ == "__main__":
    sys.exit(main())
