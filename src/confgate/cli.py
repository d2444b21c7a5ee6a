"""confgate CLI entry point."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click

from confgate import __version__
from confgate.config import load_config
from confgate.errors import ConfgateError


def _configure_logging(*, verbose: bool, quiet: bool) -> None:
    """Route ``confgate`` log records to stderr through Rich."""
    from rich.console import Console
    from rich.logging import RichHandler

    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    logger = logging.getLogger("confgate")
    logger.setLevel(level)
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(console=Console(stderr=True), show_path=False, show_time=False)
        logger.addHandler(handler)


def _fail(context: str, exc: Exception) -> NoReturn:
    """Print a one-line diagnostic and exit with the setup-error status."""
    click.echo(f"Error: {context}: {exc}", err=True)
    sys.exit(3)


@click.group()
@click.version_option(version=__version__, prog_name="confgate")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, quiet: bool) -> None:
    """confgate - test configuration files against declarative policies."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    _configure_logging(verbose=verbose, quiet=quiet)


# ---------------------------------------------------------------------------
# test
# ---------------------------------------------------------------------------


def _output_choice() -> click.Choice:
    from confgate.output import valid_outputs

    return click.Choice(valid_outputs())


def _input_choice() -> click.Choice:
    from confgate.parsers import valid_inputs

    return click.Choice(valid_inputs())


@main.command("test")
@click.argument("files", nargs=-1)
@click.option(
    "--policy",
    "-p",
    multiple=True,
    help="Policy file or directory (repeatable, default: ./policy).",
)
@click.option("--namespace", default=None, help="Namespace holding deny/warn rules (default: main).")
@click.option(
    "--combine/--no-combine",
    default=None,
    help="Evaluate all given files together as one document.",
)
@click.option(
    "--fail-on-warn/--no-fail-on-warn",
    default=None,
    help="Exit non-zero when only warnings are found (2 for failures, 1 for warnings).",
)
@click.option("--trace/--no-trace", default=None, help="Report the engine trace for each query.")
@click.option(
    "--structured/--no-structured",
    default=None,
    help="Keep rule metadata and report passing rules as successes.",
)
@click.option("--input", "-i", "input_type", type=_input_choice(), default=None, help="Input type.")
@click.option("--output", "-o", type=_output_choice(), default=None, help="Output format.")
@click.option("--color/--no-color", default=None, help="Colorize stdout output.")
def test_cmd(
    *,
    files: tuple[str, ...],
    policy: tuple[str, ...],
    namespace: str | None,
    combine: bool | None,
    fail_on_warn: bool | None,
    trace: bool | None,
    structured: bool | None,
    input_type: str | None,
    output: str | None,
    color: bool | None,
) -> None:
    """Test configuration FILES against policies ('-' reads stdin).

    Exit codes: 0 = clean, 1 = failures found (or warnings with
    --fail-on-warn), 2 = failures found with --fail-on-warn, 3 = setup or
    evaluation error.
    """
    from confgate.context import RunContext
    from confgate.engine import YamlRuleEngine
    from confgate.output import get_output_manager
    from confgate.parsers import load_configurations
    from confgate.policy import read_files
    from confgate.results import resolve_exit_code
    from confgate.runner import QueryRunner, check_units
    from confgate.units import build_units, filter_files

    config = load_config(Path.cwd()).with_overrides(
        policy=list(policy) or None,
        namespace=namespace,
        combine=combine,
        fail_on_warn=fail_on_warn,
        trace=trace,
        structured=structured,
        input_type=input_type,
        output=output,
        color=color,
    )

    try:
        file_list = filter_files(files)
    except ConfgateError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(3)

    engine = YamlRuleEngine()
    try:
        sources = read_files(config.policy)
    except ConfgateError as exc:
        _fail("read policy files", exc)
    try:
        rule_set = engine.compile(sources)
    except ConfgateError as exc:
        _fail("build compiler", exc)
    try:
        configurations = load_configurations(file_list, config.input_type)
    except ConfgateError as exc:
        _fail("get configurations", exc)

    units = build_units(configurations, combine=config.combine)
    out = get_output_manager(config.output, color=config.color, structured=config.structured)
    runner = QueryRunner(engine, config)

    try:
        results = check_units(RunContext(), runner, units, rule_set, out)
    except ConfgateError as exc:
        _fail("evaluating policy", exc)

    code = resolve_exit_code(results, config)
    if code:
        sys.exit(code)


# ---------------------------------------------------------------------------
# verify
# ---------------------------------------------------------------------------


@main.command()
@click.option(
    "--policy",
    "-p",
    multiple=True,
    help="Policy file or directory (repeatable, default: ./policy).",
)
@click.option("--output", "-o", type=_output_choice(), default=None, help="Output format.")
@click.option("--color/--no-color", default=None, help="Colorize stdout output.")
def verify(*, policy: tuple[str, ...], output: str | None, color: bool | None) -> None:
    """Run the unit tests declared in policy files.

    Exit codes: 0 = all tests pass, 1 = a test failed, 3 = setup error.
    """
    from confgate.context import RunContext
    from confgate.engine import YamlRuleEngine
    from confgate.output import get_output_manager
    from confgate.policy import read_files
    from confgate.results import exit_code
    from confgate.runner import QueryRunner
    from confgate.verify import run_tests

    config = load_config(Path.cwd()).with_overrides(
        policy=list(policy) or None, output=output, color=color
    )

    engine = YamlRuleEngine()
    try:
        sources = read_files(config.policy)
    except ConfgateError as exc:
        _fail("read policy test files", exc)
    try:
        rule_set = engine.compile(sources)
    except ConfgateError as exc:
        _fail("build compiler", exc)

    out = get_output_manager(config.output, color=config.color, structured=config.structured)
    runner = QueryRunner(engine, config)
    try:
        results = run_tests(RunContext(), runner, rule_set)
        for result in results:
            out.put(result.filename, result)
        out.flush()
    except ConfgateError as exc:
        _fail("run policy tests", exc)

    if not results:
        logging.getLogger(__name__).warning("No policy tests found")

    code = exit_code(results)
    if code:
        sys.exit(code)


# ---------------------------------------------------------------------------
# parse
# ---------------------------------------------------------------------------


@main.command()
@click.argument("files", nargs=-1)
@click.option("--input", "-i", "input_type", type=_input_choice(), default=None, help="Input type.")
@click.option(
    "--combine/--no-combine",
    default=None,
    help="Print all files as one document keyed by file name.",
)
def parse(*, files: tuple[str, ...], input_type: str | None, combine: bool | None) -> None:
    """Print FILES as the JSON documents policies are evaluated against."""
    from confgate.parsers import load_configurations
    from confgate.units import build_units, filter_files

    config = load_config(Path.cwd()).with_overrides(input_type=input_type, combine=combine)

    try:
        file_list = filter_files(files)
    except ConfgateError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(3)
    try:
        configurations = load_configurations(file_list, config.input_type)
    except ConfgateError as exc:
        _fail("get configurations", exc)

    for unit in build_units(configurations, combine=config.combine):
        text = json.dumps(unit.document, indent="\t", default=str)
        if config.combine:
            click.echo(text)
        else:
            click.echo(f"{unit.label}\n{text}\n")
