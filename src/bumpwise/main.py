"""Main CLI entry point for bumpwise."""

import json
import logging
import os
import sys
from datetime import datetime
from fractions import Fraction
from pathlib import Path
from typing import Any, NoReturn, Optional

import click
import yaml

from . import DEFAULT_VERSION_FILE, __version__
from .config import ConfigError, EngineConfig, config_as_dict, load_config
from .engine import analyze, project
from .git import GitError, GitRepository, build_pathspecs
from .report import exit_code, render
from .version import SemanticVersion, Tier, VersionFormatError

logger = logging.getLogger(__name__)

EXIT_UNEXPECTED = 1
EXIT_INPUT = 2
EXIT_CONFIG = 3
EXIT_GIT = 4


def configure_logging(verbose: bool) -> None:
    """Send package log records to stderr, DEBUG with --verbose and WARNING otherwise."""
    package_logger = logging.getLogger("bumpwise")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    package_logger.propagate = False


def fail(message: str, code: int) -> NoReturn:
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(code)


def handle_git_error(e: GitError) -> NoReturn:
    """Handle repository errors consistently."""
    click.echo(click.style(f"Error: {e.message}", fg="red"), err=True)
    if e.returncode:
        click.echo(click.style(f"Exit Status: {e.returncode}", fg="red"), err=True)
    if e.details:
        click.echo(click.style(f"Details: {json.dumps(e.details, indent=2)}", fg="red"), err=True)
    sys.exit(EXIT_GIT)


def handle_config_error(e: ConfigError) -> NoReturn:
    """Handle configuration errors consistently."""
    click.echo(click.style(f"Error: {e.message}", fg="red"), err=True)
    sys.exit(EXIT_CONFIG)


def get_config(ctx: click.Context, search_dir: Optional[Path]) -> EngineConfig:
    """Resolve configuration from --config, the repository and BUMPWISE_* variables."""
    try:
        return load_config(ctx.obj.get("config_path"), environ=os.environ, search_dir=search_dir)
    except ConfigError as e:
        handle_config_error(e)


def get_repository(repo_root: Optional[Path]) -> GitRepository:
    """Get a repository reader instance."""
    try:
        return GitRepository(repo_root)
    except GitError as e:
        handle_git_error(e)


def read_current_version(current_version: Optional[str], version_file: Path, root: Path) -> Optional[str]:
    """The --current-version value, else the version file contents, else None."""
    if current_version is not None:
        return current_version
    path = version_file if version_file.is_absolute() else root / version_file
    if not path.is_file():
        logger.info("no version file at %s", path)
        return None
    try:
        # Undecodable bytes survive as U+FFFD and fail version parsing downstream.
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        fail(f"Cannot read version file {path}: {e.strerror or e}", EXIT_INPUT)


def pick_format(output_format: Optional[str], machine: bool, as_json: bool, suggest_only: bool) -> str:
    shorthands = [name for name, flag in (("machine", machine), ("json", as_json), ("suggest", suggest_only)) if flag]
    if len(shorthands) > 1 or (shorthands and output_format and output_format != shorthands[0]):
        raise click.UsageError("Choose only one output format")
    if shorthands:
        return shorthands[0]
    return output_format or "human"


@click.group()
@click.version_option(version=__version__, prog_name="bumpwise")
@click.option(
    "--config",
    "config_path",
    envvar="BUMPWISE_CONFIG",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Configuration file (reads from BUMPWISE_CONFIG env var, else .bumpwise.yml in the repository root)",
)
@click.option("--verbose", "-v", is_flag=True, help="Log each pipeline stage to stderr")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], verbose: bool) -> None:
    """bumpwise - Suggest the next release version from repository changes.

    Changes between two refs are scored per tier (major, minor, patch) from
    their size and from detected signals such as CLI option changes, breaking
    markers and security fixes. The winning tier's delta is added to the
    patch component of the current version, carrying into minor and major.

    Configuration (in priority order):
      1. BUMPWISE_* environment variables
      2. --config file, or .bumpwise.yml in the repository root
      3. Built-in defaults

    Quick start:
      bumpwise analyze
      bumpwise analyze --since v1.2.0 --json
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    configure_logging(verbose)


@cli.command("analyze")
@click.option("--base", help="Base ref (overrides every other base selection)")
@click.option("--target", default="HEAD", show_default=True, help="Target ref")
@click.option("--since", "since_tag", help="Use this tag as the base")
@click.option("--since-commit", help="Use this commit as the base")
@click.option(
    "--since-date", type=click.DateTime(formats=["%Y-%m-%d"]), help="Use the last commit on or before this day"
)
@click.option("--tag-match", default="*", show_default=True, help="Glob for the last-tag lookup")
@click.option("--no-merge-base", is_flag=True, help="Diff against the base directly instead of the merge-base")
@click.option("--repo-root", type=click.Path(exists=True, file_okay=False, path_type=Path), help="Repository directory")
@click.option("--only-paths", help="Comma-separated paths to analyze; prefix with ! to exclude")
@click.option("--ignore-whitespace", is_flag=True, help="Ignore whitespace-only changes")
@click.option("--no-merges", is_flag=True, help="Skip merge commits when scanning messages")
@click.option("--current-version", help="Current version (default: read from the version file)")
@click.option(
    "--version-file",
    default=DEFAULT_VERSION_FILE,
    show_default=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Version file, relative to the repository root",
)
@click.option("--strict-version", is_flag=True, help="Fail on an unparseable current version instead of using 0.0.0")
@click.option(
    "--format", "output_format", type=click.Choice(["human", "machine", "json", "suggest"]), help="Output format"
)
@click.option("--machine", is_flag=True, help="Shorthand for --format machine")
@click.option("--json", "as_json", is_flag=True, help="Shorthand for --format json")
@click.option("--suggest-only", is_flag=True, help="Shorthand for --format suggest")
@click.option("--strict-status", is_flag=True, help="Exit 10/11/12/20 for major/minor/patch/none")
@click.pass_context
def analyze_cmd(
    ctx: click.Context,
    base: Optional[str],
    target: str,
    since_tag: Optional[str],
    since_commit: Optional[str],
    since_date: Optional[datetime],
    tag_match: str,
    no_merge_base: bool,
    repo_root: Optional[Path],
    only_paths: Optional[str],
    ignore_whitespace: bool,
    no_merges: bool,
    current_version: Optional[str],
    version_file: Path,
    strict_version: bool,
    output_format: Optional[str],
    machine: bool,
    as_json: bool,
    suggest_only: bool,
    strict_status: bool,
) -> None:
    """Analyze changes and suggest the next version.

    The base defaults to the last tag matching --tag-match, else the
    target's parent commit.

    Examples:
        bumpwise analyze
        bumpwise analyze --base origin/main --target HEAD --machine
        bumpwise analyze --since-date 2024-01-31 --only-paths src,!src/vendor
    """
    mode = pick_format(output_format, machine, as_json, suggest_only)
    repo = get_repository(repo_root)
    try:
        root = repo.toplevel()
        config = get_config(ctx, root)
        refs = repo.resolve_range(
            base=base,
            target=target,
            since_commit=since_commit,
            since_tag=since_tag,
            since_date=since_date,
            tag_match=tag_match,
            use_merge_base=not no_merge_base,
        )
        current_text = read_current_version(current_version, version_file, root)
        if strict_version and current_text is not None and current_text.strip():
            try:
                SemanticVersion.parse(current_text)
            except VersionFormatError as e:
                fail(e.message, EXIT_INPUT)
        decision = analyze(
            repo,
            refs,
            config,
            current_text=current_text,
            paths=build_pathspecs(only_paths),
            ignore_whitespace=ignore_whitespace,
            no_merges=no_merges,
        )
    except GitError as e:
        handle_git_error(e)

    click.echo(render(decision, mode))
    if strict_status:
        sys.exit(exit_code(decision.tier))


@cli.command("next")
@click.option("--current-version", required=True, help="Current version (X.Y.Z)")
@click.option(
    "--bump-type", required=True, type=click.Choice(["major", "minor", "patch"]), help="Tier whose delta is applied"
)
@click.option("--loc", default=0, show_default=True, type=click.IntRange(min=0), help="Changed lines")
@click.option("--bonus", default=0.0, show_default=True, type=click.FloatRange(min=0), help="Raw bonus points")
@click.option(
    "--format", "output_format", default="human", type=click.Choice(["human", "machine", "json"]), help="Output format"
)
@click.pass_context
def next_cmd(
    ctx: click.Context, current_version: str, bump_type: str, loc: int, bonus: float, output_format: str
) -> None:
    """Calculate the next version for a given tier, line count and bonus.

    Example:
        bumpwise next --current-version 9.3.0 --bump-type patch --loc 500 --bonus 2
    """
    try:
        SemanticVersion.parse(current_version)
    except VersionFormatError as e:
        fail(e.message, EXIT_INPUT)

    config = get_config(ctx, Path.cwd())
    decision = project(Tier(bump_type), loc, Fraction(str(bonus)), config, current_text=current_version)
    click.echo(render(decision, output_format))


def config_pairs(data: dict[str, Any]) -> list[tuple[str, Any]]:
    """KEY=VALUE view of the numeric settings, named like their environment overrides."""
    cap = data["bonus_multiplier_cap"]
    pairs: list[tuple[str, Any]] = [
        ("ROLLOVER", data["rollover"]),
        ("BONUS_MULTIPLIER_CAP", "" if cap is None else cap),
    ]
    for tier, values in data["tiers"].items():
        prefix = tier.upper()
        pairs.extend((f"{prefix}_{key.upper()}", values[key]) for key in ("coefficient", "divisor", "threshold"))
        pairs.extend((f"{prefix}_BONUS_{name.upper()}", points) for name, points in values["bonuses"].items())
    return pairs


@cli.command("config")
@click.option(
    "--format", "output_format", default="human", type=click.Choice(["human", "machine", "json"]), help="Output format"
)
@click.option("--validate-only", is_flag=True, help="Only check that the configuration is valid")
@click.option(
    "--repo-root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Directory searched for .bumpwise.yml (default: current directory)",
)
@click.pass_context
def config_cmd(ctx: click.Context, output_format: str, validate_only: bool, repo_root: Optional[Path]) -> None:
    """Show the resolved configuration.

    Examples:
        bumpwise config
        bumpwise --config ci/bumpwise.yml config --validate-only
    """
    config = get_config(ctx, repo_root or Path.cwd())
    if validate_only:
        click.echo(click.style("✓ Configuration is valid", fg="green"))
        return

    data = config_as_dict(config)
    if output_format == "json":
        click.echo(json.dumps(data, indent=2))
    elif output_format == "machine":
        click.echo("\n".join(f"{key}={value}" for key, value in config_pairs(data)))
    else:
        click.echo(f"# source: {config.source or 'built-in defaults'}")
        click.echo(yaml.safe_dump(data, sort_keys=False).rstrip())


def main() -> None:
    """Console entry point; reports unexpected failures with exit status 1."""
    try:
        cli(obj={})
    except Exception as e:
        logger.debug("unexpected failure", exc_info=True)
        fail(f"Unexpected failure: {e}", EXIT_UNEXPECTED)


if __name__ == "__main__":
    main()
