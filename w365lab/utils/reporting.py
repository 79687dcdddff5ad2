# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Run artifacts: credential and outcome CSVs, console summary.

The credentials file is the only place generated passwords are ever
written; it is only produced when a run actually created accounts.
"""

import csv
import os
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from w365lab.core.outcome import Credential, OutcomeStatus, RunSummary
from w365lab.utils.datetime import file_stamp
from w365lab.utils.logging import get_logger

logger = get_logger(__name__)

CREDENTIAL_FIELDS = ["student_index", "user_principal_name", "password"]
OUTCOME_FIELDS = ["stage", "student_index", "status", "created", "existing", "reason"]

STATUS_STYLES = {
    OutcomeStatus.SUCCESS: "[green]success[/green]",
    OutcomeStatus.SKIPPED: "[yellow]skipped[/yellow]",
    OutcomeStatus.FAILED: "[red]failed[/red]",
}


def log_file_path(log_dir: Path, command: str, stamp: str | None = None) -> Path:
    """Timestamped run log path, e.g. logs/w365lab-identities-20250101-120000.log."""
    return Path(log_dir) / f"w365lab-{command}-{stamp or file_stamp()}.log"


def write_credentials(
    credentials: list[Credential],
    output_dir: Path,
    stamp: str | None = None,
) -> Path | None:
    """Write initial credentials to a CSV readable only by the owner.

    Returns:
        Path of the written file, or None when there is nothing to write.
    """
    if not credentials:
        return None

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"w365lab-credentials-{stamp or file_stamp()}.csv"

    with open(path, "w", newline="", encoding="utf-8") as csvfile:
        writer = csv.DictWriter(csvfile, fieldnames=CREDENTIAL_FIELDS)
        writer.writeheader()
        for credential in sorted(
            credentials, key=lambda c: (c.student_index, c.user_principal_name)
        ):
            writer.writerow(
                {
                    "student_index": credential.student_index,
                    "user_principal_name": credential.user_principal_name,
                    "password": credential.password,
                }
            )
    os.chmod(path, 0o600)

    logger.info("Credentials written", path=str(path), count=len(credentials))
    return path


def write_outcomes(
    summary: RunSummary,
    output_dir: Path,
    command: str,
    stamp: str | None = None,
) -> Path:
    """Write one CSV row per stage and student."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"w365lab-{command}-outcomes-{stamp or file_stamp()}.csv"

    with open(path, "w", newline="", encoding="utf-8") as csvfile:
        writer = csv.DictWriter(csvfile, fieldnames=OUTCOME_FIELDS)
        writer.writeheader()
        for result in summary.stages:
            for outcome in result.outcomes:
                writer.writerow(
                    {
                        "stage": result.stage.value,
                        "student_index": outcome.index,
                        "status": outcome.status.value,
                        "created": "; ".join(outcome.created),
                        "existing": "; ".join(outcome.existing),
                        "reason": outcome.reason or "",
                    }
                )

    logger.info(
        "Outcomes written",
        path=str(path),
        rows=sum(len(result.outcomes) for result in summary.stages),
    )
    return path


def build_summary_table(summary: RunSummary) -> Table:
    """Per-stage counts plus the students that need a re-run."""
    table = Table(title="Lab Provisioning Summary")
    table.add_column("Stage", style="cyan")
    table.add_column("Created", justify="right")
    table.add_column("Exists", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Re-run students")

    for result in summary.stages:
        table.add_row(
            result.stage.value,
            str(result.created_count),
            str(result.exists_count),
            str(result.skipped_count),
            str(result.failed_count),
            ", ".join(str(i) for i in result.incomplete_indices) or "-",
        )
    return table


def print_summary(summary: RunSummary, console: Console | None = None) -> None:
    """Print the summary table, failure reasons and any fatal error."""
    console = console or Console()
    console.print(build_summary_table(summary))

    for result in summary.stages:
        for outcome in result.outcomes:
            if outcome.status is OutcomeStatus.SUCCESS:
                continue
            console.print(
                f"  {STATUS_STYLES[outcome.status]} {result.stage.value} "
                f"student {outcome.index}: {escape(outcome.reason or '')}"
            )

    if summary.fatal_error:
        console.print(f"[red]✗[/red] Run aborted: {escape(summary.fatal_error)}")
    elif summary.succeeded:
        console.print("[green]✓[/green] All students provisioned")
