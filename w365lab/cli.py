# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Command line interface.

Usage:
    w365lab identities -n 30 --domain contoso.onmicrosoft.com
    w365lab all -n 30
    w365lab verify -n 30

Exit codes:
    0: every student completed every selected stage
    1: at least one student was skipped or failed (re-run the stage)
    2: fatal error or invalid arguments
"""

import argparse
import logging
import sys
from collections.abc import Callable, Sequence
from pathlib import Path

import httpx
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from w365lab import __version__
from w365lab.core.config import Settings, get_settings
from w365lab.core.context import ProvisioningContext
from w365lab.core.errors import DirectoryUnavailableError, FatalConfigurationError
from w365lab.core.outcome import Stage
from w365lab.domains.pipeline import PodAuditor, ProvisioningPipeline
from w365lab.services.graph import (
    DirectoryService,
    GraphAuthError,
    GraphClient,
    GraphConnectionError,
    GraphError,
    GraphTokenProvider,
    StaticTokenProvider,
    TokenProvider,
)
from w365lab.utils.datetime import file_stamp
from w365lab.utils.logging import setup_logging
from w365lab.utils.propagation import PropagationPolicy
from w365lab.utils.reporting import (
    log_file_path,
    print_summary,
    write_credentials,
    write_outcomes,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INCOMPLETE = 1
EXIT_FATAL = 2

MAX_STUDENTS = 100

STAGE_COMMANDS: dict[str, list[Stage]] = {
    Stage.IDENTITIES.value: [Stage.IDENTITIES],
    Stage.SCOPE_TAGS.value: [Stage.SCOPE_TAGS],
    Stage.ADMIN_UNITS.value: [Stage.ADMIN_UNITS],
    Stage.DELEGATED_ROLES.value: [Stage.DELEGATED_ROLES],
    "all": Stage.ordered(),
}

COMMAND_HELP = {
    Stage.IDENTITIES.value: "Create admin/student accounts and security groups",
    Stage.SCOPE_TAGS.value: "Create one Intune scope tag per student",
    Stage.ADMIN_UNITS.value: "Create administrative units and scoped role grants",
    Stage.DELEGATED_ROLES.value: "Create the lab Intune role and its assignments",
    "all": "Run every stage in order",
    "verify": "Check that every pod is complete and isolated (read-only)",
}


def student_count(value: str) -> int:
    """argparse type for --students: an integer in 1..100."""
    try:
        count = int(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"'{value}' is not an integer") from e
    if not 1 <= count <= MAX_STUDENTS:
        raise argparse.ArgumentTypeError(
            f"number of students must be between 1 and {MAX_STUDENTS}"
        )
    return count


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--students", "-n", type=student_count, required=True,
        help="Number of students; pods 1..N are processed",
    )
    parser.add_argument("--domain", help="Verified domain (default: tenant default domain)")
    parser.add_argument("--tenant-id", help="Tenant id (default: GRAPH_TENANT_ID)")
    parser.add_argument("--log-dir", type=Path, help="Directory of the run log")
    parser.add_argument("--output-dir", type=Path, help="Directory of CSV artifacts")


def add_skip_arguments(parser: argparse.ArgumentParser, stages: list[Stage]) -> None:
    if Stage.IDENTITIES in stages:
        parser.add_argument(
            "--skip-user-creation", action="store_true",
            help="Users must already exist; only groups and memberships are ensured",
        )
    if Stage.SCOPE_TAGS in stages:
        parser.add_argument(
            "--skip-tag-creation", action="store_true",
            help="Only verify that scope tags exist",
        )
    if Stage.ADMIN_UNITS in stages:
        parser.add_argument(
            "--skip-au-creation", action="store_true",
            help="AUs must already exist; only membership and grants are ensured",
        )
    if Stage.DELEGATED_ROLES in stages:
        parser.add_argument(
            "--skip-role-creation", action="store_true",
            help="The lab role definition must already exist",
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="w365lab",
        description="Provision isolated Windows 365 lab pods in an Entra ID tenant",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    for command, stages in STAGE_COMMANDS.items():
        sub = subparsers.add_parser(command, help=COMMAND_HELP[command])
        add_common_arguments(sub)
        add_skip_arguments(sub, stages)

    verify = subparsers.add_parser("verify", help=COMMAND_HELP["verify"])
    add_common_arguments(verify)
    return parser


def build_token_provider(settings: Settings) -> TokenProvider:
    """Pre-acquired token if configured, otherwise MSAL client credentials."""
    if settings.graph.access_token is not None:
        return StaticTokenProvider(settings.graph.access_token.get_secret_value())
    return GraphTokenProvider(settings.graph)


def cmd_provision(
    args: argparse.Namespace,
    context: ProvisioningContext,
    settings: Settings,
    stamp: str,
    console: Console,
) -> int:
    pipeline = ProvisioningPipeline(
        context,
        skip_user_creation=getattr(args, "skip_user_creation", False),
        skip_tag_creation=getattr(args, "skip_tag_creation", False),
        skip_au_creation=getattr(args, "skip_au_creation", False),
        skip_role_creation=getattr(args, "skip_role_creation", False),
    )
    summary = pipeline.run(range(1, args.students + 1), STAGE_COMMANDS[args.command])

    output_dir = args.output_dir or settings.lab.output_dir
    credentials_path = write_credentials(summary.credentials, output_dir, stamp)
    write_outcomes(summary, output_dir, args.command, stamp)

    print_summary(summary, console)
    if credentials_path is not None:
        console.print(f"Initial credentials written to [cyan]{credentials_path}[/cyan]")
    return summary.exit_code


def cmd_verify(
    args: argparse.Namespace,
    context: ProvisioningContext,
    console: Console,
) -> int:
    audits = PodAuditor(context).audit(range(1, args.students + 1))

    table = Table(title="Lab Pod Audit")
    table.add_column("Student", justify="right", style="cyan")
    table.add_column("Status", style="bold")
    table.add_column("Problems")
    for audit in audits:
        status = "[green]complete[/green]" if audit.complete else "[red]incomplete[/red]"
        table.add_row(str(audit.index), status, escape("; ".join(audit.problems)) or "-")
    console.print(table)

    return EXIT_OK if all(a.complete for a in audits) else EXIT_INCOMPLETE


def main(
    argv: Sequence[str] | None = None,
    *,
    settings: Settings | None = None,
    token_provider: TokenProvider | None = None,
    transport: httpx.BaseTransport | None = None,
    sleep: Callable[[float], None] | None = None,
    console: Console | None = None,
) -> int:
    """Run the CLI and return the process exit code.

    The keyword arguments replace the real tenant connection (used by tests).
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = settings or get_settings()
    if args.students > settings.lab.max_students:
        parser.error(
            f"--students {args.students} exceeds LAB_MAX_STUDENTS "
            f"({settings.lab.max_students})"
        )

    stamp = file_stamp()
    log_file = log_file_path(args.log_dir or settings.lab.log_dir, args.command, stamp)
    setup_logging(settings, log_file)
    console = console or Console()

    graph_settings = settings.graph
    if args.tenant_id:
        graph_settings = graph_settings.model_copy(update={"tenant_id": args.tenant_id})
    tenant_id = graph_settings.tenant_id or "default"

    logger.info(
        "w365lab %s: command=%s students=%d tenant=%s log=%s",
        __version__, args.command, args.students, tenant_id, log_file,
    )

    try:
        provider = token_provider or build_token_provider(
            settings.model_copy(update={"graph": graph_settings})
        )
        sleep_kwargs = {"sleep": sleep} if sleep is not None else {}
        with GraphClient(
            graph_settings, provider, transport=transport, **sleep_kwargs
        ) as client:
            try:
                context = ProvisioningContext.create(
                    DirectoryService(client),
                    tenant_id=tenant_id,
                    lab=settings.lab,
                    propagation=PropagationPolicy.from_settings(
                        settings.propagation, **sleep_kwargs
                    ),
                    domain=args.domain,
                )
            except (GraphAuthError, GraphConnectionError) as e:
                raise DirectoryUnavailableError(f"Directory unavailable: {e}") from e
            except GraphError as e:
                raise FatalConfigurationError(f"Domain resolution failed: {e}") from e
            logger.info("Provisioning lab pods in domain %s", context.domain)

            if args.command == "verify":
                return cmd_verify(args, context, console)
            return cmd_provision(args, context, settings, stamp, console)
    except GraphAuthError as e:
        logger.error("Authentication failed: %s", e)
        console.print(f"[red]✗[/red] Authentication failed: {escape(str(e))}")
        return EXIT_FATAL
    except FatalConfigurationError as e:
        logger.error("Fatal error: %s", e)
        console.print(f"[red]✗[/red] {escape(str(e))}")
        return EXIT_FATAL
    except GraphError as e:
        logger.error("Unexpected directory error: %s", e)
        console.print(f"[red]✗[/red] Unexpected directory error: {escape(str(e))}")
        return EXIT_FATAL


def run() -> None:
    """Console script entry point."""
    sys.exit(main())
