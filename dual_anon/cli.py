"""Command Line Interface for Dual-Anon.

Runs the two-stage anonymization pipeline over one or more export files and
re-verifies provenance ledgers.

Security Impact:
    - Configuration is validated before any record is read
    - The console only ever shows counts, anonymous identifiers and digests
    - A non-zero exit code signals that at least one batch produced no output
"""

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from dual_anon.domain.events import LoggingEventSink
from dual_anon.domain.ports import AnonymizationError
from dual_anon.infrastructure.audit.event_logger import AuditEventLogger
from dual_anon.infrastructure.config_manager import ConfigManager
from dual_anon.infrastructure.logging_config import setup_logging
from dual_anon.infrastructure.privacy_report import build_privacy_report, print_privacy_report_summary
from dual_anon.infrastructure.settings import settings
from dual_anon.main import (
    create_ledger_adapter,
    create_storage_adapter,
    load_pseudonyms,
    process_sources,
    verify_ledger,
)

app = typer.Typer(
    name="dual-anon",
    help="Dual-Anon: two-stage anonymization with ledger provenance for medical records",
    add_completion=False
)
console = Console()


@app.command()
def anonymize(
    input_files: List[Path] = typer.Argument(..., help="Input files (CSV, TSV or JSON)", exists=True, dir_okay=False),
    country: Optional[str] = typer.Option(None, "--country", help="Hospital country (fallback when a record has none)"),
    location: Optional[str] = typer.Option(None, "--location", help="Hospital location"),
    hospital_id: Optional[str] = typer.Option(None, "--hospital-id", help="Hospital identifier for provenance records"),
    k: Optional[int] = typer.Option(None, "--k", "-k", help="k-anonymity threshold (default: 5)"),
    strict: bool = typer.Option(False, "--strict", help="Fail a batch on the first record-level error"),
    output_format: str = typer.Option("csv", "--format", "-f", help="Stage-1 output format: csv or json"),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o", help="Directory for Stage-1 files"),
    ledger_file: Optional[Path] = typer.Option(None, "--ledger-file", "-l", help="JSON-lines provenance ledger"),
    resource_type: Optional[str] = typer.Option(None, "--resource-type", help="Resource type label (default: Observation)"),
    pseudonyms: Optional[Path] = typer.Option(None, "--pseudonyms", help="JSON mapping of patient ID to stable pseudonym", exists=True, dir_okay=False),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Parallel batches"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON"),
    no_report: bool = typer.Option(False, "--no-report", help="Skip privacy report generation"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON configuration file (replaces DA_ variables)", exists=True, dir_okay=False),
    audit_file: Optional[Path] = typer.Option(None, "--audit-file", help="Append every pipeline event to this JSON-lines file"),
) -> None:
    """Anonymize export files: Stage-1 to storage, provenance to the ledger.

    Each input file is processed as one independent batch.

    Examples:
        dual-anon anonymize lab_results.csv --country Uganda --hospital-id HOSP-001
        dual-anon anonymize a.csv b.json --k 10 --format json --workers 2
    """
    setup_logging(use_json=json_logs, log_level="DEBUG" if verbose else settings.log_level)

    try:
        manager = (
            ConfigManager.from_file(str(config_file)) if config_file else ConfigManager.from_environment()
        )
        config = manager.get_pipeline_config(overrides={
            "hospital_country": country,
            "hospital_location": location,
            "hospital_id": hospital_id,
            "k_anonymity": k,
            "strict_mode": True if strict else None,
            "resource_type": resource_type,
        })
    except ValueError as e:
        console.print(f"[red]✗[/red] {e}")
        if config_file is None:
            console.print("[dim]Set --country or DA_HOSPITAL_COUNTRY.[/dim]")
        raise typer.Exit(code=1)

    try:
        storage = create_storage_adapter(
            str(output_dir) if output_dir else None, output_format=output_format
        )
    except ValueError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)
    ledger = create_ledger_adapter(str(ledger_file) if ledger_file else None)

    pseudonym_map = None
    if pseudonyms is not None:
        try:
            pseudonym_map = load_pseudonyms(str(pseudonyms))
        except AnonymizationError as e:
            console.print(f"[red]✗[/red] {e}")
            raise typer.Exit(code=1)

    console.print("\n[bold blue]Dual-Anon[/bold blue]")
    console.print(f"[dim]Inputs:[/dim] {len(input_files)}")
    console.print(f"[dim]Hospital country:[/dim] {config.hospital_country}")
    console.print(f"[dim]k:[/dim] {config.k_anonymity}")
    console.print(f"[dim]Strict:[/dim] {config.strict_mode}")
    console.print()

    audit_logger = AuditEventLogger(forward_to=LoggingEventSink())
    report_dir = settings.report_dir if (settings.save_privacy_report and not no_report) else None

    with console.status("[bold green]Anonymizing batches..."):
        outcomes = process_sources(
            [str(path) for path in input_files],
            config,
            storage,
            ledger,
            max_workers=workers,
            audit_logger=audit_logger,
            pseudonyms=pseudonym_map,
            report_dir=report_dir,
        )

    table = Table(title="Batch Summary")
    table.add_column("Source")
    table.add_column("Input", justify="right")
    table.add_column("Released", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Suppressed", justify="right")
    table.add_column("Status")

    for outcome in outcomes:
        result = outcome.batch_result
        if result is None:
            table.add_row(
                Path(outcome.source).name, "-", "-", "-", "-",
                f"[red]✗ {outcome.error_type}[/red]",
            )
            continue
        status = "[yellow]⚠ k skipped[/yellow]" if result.k_anonymity_skipped else "[green]✓[/green]"
        table.add_row(
            Path(outcome.source).name,
            f"{result.input_count:,}",
            f"{result.record_count:,}",
            f"[red]{len(result.failures):,}[/red]" if result.failures else "0",
            f"{result.suppressed_count:,}",
            status,
        )
    console.print(table)

    for outcome in outcomes:
        if outcome.error:
            console.print(f"[red]✗[/red] {Path(outcome.source).name}: {outcome.error}")
            continue
        if outcome.storage_reference:
            console.print(f"[green]✓[/green] Stage-1 written to {outcome.storage_reference}")
        if outcome.ledger_references:
            console.print(
                f"[green]✓[/green] {len(outcome.ledger_references)} provenance messages "
                f"submitted to {ledger.ledger_path}"
            )
        if not no_report and outcome.batch_result is not None:
            report = build_privacy_report(outcome.batch_result, audit_logger)
            if outcome.report_path:
                report["saved_to"] = outcome.report_path
            print_privacy_report_summary(report)

    if audit_file is not None:
        flush_result = audit_logger.flush(audit_file)
        if flush_result.is_failure():
            console.print(f"[red]✗[/red] Failed to write audit events: {flush_result.error}")
            raise typer.Exit(code=1)
        console.print(f"[green]✓[/green] {flush_result.value} audit events written to {audit_file}")

    if any(not outcome.succeeded for outcome in outcomes):
        raise typer.Exit(code=1)


@app.command()
def verify(
    ledger_file: Path = typer.Argument(..., help="JSON-lines provenance ledger", exists=True, dir_okay=False),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Recompute the provenance proof of every ledger message.

    Exits with code 1 if any message fails verification.
    """
    setup_logging(log_level="DEBUG" if verbose else settings.log_level)
    ledger = create_ledger_adapter(str(ledger_file))

    try:
        verification = verify_ledger(ledger)
    except AnonymizationError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    console.print(f"\n[bold]Ledger:[/bold] {ledger_file}")
    console.print(f"Messages checked: {verification.total:,}")
    console.print(f"Valid: [green]{verification.valid:,}[/green]")

    if verification.invalid:
        table = Table(title="Failed Verification")
        table.add_column("Message", justify="right")
        table.add_column("Anonymous ID")
        table.add_column("Reason")
        for position, anonymous_id, reason in verification.invalid:
            table.add_row(str(position), anonymous_id or "-", reason)
        console.print(table)
        console.print(f"[red]✗[/red] {len(verification.invalid)} messages failed verification")
        raise typer.Exit(code=1)

    console.print("[green]✓[/green] All provenance proofs verified")


def main() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":
    main()
