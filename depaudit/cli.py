"""CLI entry point: depaudit.

Subcommands:
    depaudit check [ROOT]      # Report unused and mislabeled dependencies
    depaudit members [ROOT]    # List workspace members and their build targets

Exit status of ``check``: 0 clean, 1 findings, 2 tool failure.
"""

from __future__ import annotations

import json
import sys

import click

from depaudit.api import EXIT_FAILURE, audit, exit_status
from depaudit.core.config import AuditConfig
from depaudit.core.logging import setup_logging
from depaudit.exceptions import AuditError
from depaudit.manifest import load
from depaudit.report import render_text, report_to_dict


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
def main(verbose: bool) -> None:
    """depaudit: find unused and mislabeled Cargo dependencies."""
    try:
        setup_logging(level="DEBUG" if verbose else None)
    except ValueError as e:
        raise click.UsageError(str(e)) from e


@main.command("check")
@click.argument("root", default=".", type=click.Path(exists=True, file_okay=False))
@click.option("--ignore", "ignore", multiple=True, help="Declared name to skip (repeatable)")
@click.option("--fail-on-unused/--no-fail-on-unused", default=True, help="Exit 1 on unused dependencies")
@click.option(
    "--fail-on-mislabeled/--no-fail-on-mislabeled",
    default=True,
    help="Exit 1 on dependencies used in the wrong context",
)
@click.option("--orphans", is_flag=True, help="Also report targets that never use their library")
@click.option(
    "--doc-tests/--no-doc-tests",
    default=True,
    help="Count code blocks in library doc comments as test usage",
)
@click.option("--workspace", "all_members", is_flag=True, help="Audit every workspace member")
@click.option("--jobs", "-j", type=click.IntRange(min=1), default=None, help="Worker threads")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
def check(
    root: str,
    ignore: tuple[str, ...],
    fail_on_unused: bool,
    fail_on_mislabeled: bool,
    orphans: bool,
    doc_tests: bool,
    all_members: bool,
    jobs: int | None,
    as_json: bool,
) -> None:
    """Audit the Cargo workspace at ROOT (default: current directory)."""
    try:
        config = AuditConfig.from_env(
            root,
            ignore_list=frozenset(ignore) if ignore else None,
            fail_on_unused=fail_on_unused,
            fail_on_mislabeled=fail_on_mislabeled,
            check_orphans=orphans,
            check_doc_tests=doc_tests,
            all_members=all_members,
            jobs=jobs,
        )
        report = audit(config)
    except (AuditError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILURE)

    if as_json:
        click.echo(json.dumps(report_to_dict(report), indent=2, sort_keys=True))
    else:
        click.echo(render_text(report))
    sys.exit(exit_status(report, config))


@main.command("members")
@click.argument("root", default=".", type=click.Path(exists=True, file_okay=False))
@click.option("--workspace", "all_members", is_flag=True, help="List every workspace member")
def members(root: str, all_members: bool) -> None:
    """List workspace members and the targets that will be scanned."""
    try:
        workspace = load(root, all_members=all_members)
    except AuditError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILURE)

    for package in workspace.members:
        version = f" {package.version}" if package.version else ""
        click.echo(f"{package.name}{version}  ({package.manifest_path.parent})")
        for target in package.targets:
            try:
                entry = target.entry.relative_to(package.root).as_posix()
            except ValueError:
                entry = target.entry.as_posix()
            click.echo(f"  {target.context.value:13s} {target.name:20s} {entry}")
        click.echo(f"  {len(package.declarations)} declared dependencies")


if __name__ == "__main__":
    main()
