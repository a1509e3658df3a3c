"""Command Line Interface for the Allergy Ledger.

This module provides a Typer CLI for operators: initialising the database,
registering vocabulary concepts, viewing allergy lists and history, and
applying candidate allergy lists.

Security Impact:
    - Saves never delete data; edits and removals are retired
    - Every save is recorded in the change audit trail
"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from src.infrastructure.settings import settings, APP_VERSION
from src.infrastructure.logging_config import setup_logging
from src.adapters.storage import DuckDBAdapter
from src.domain.allergies import Allergies
from src.domain.allergy import Allergy, Concept
from src.domain.ports import AllergyLedgerError, describe_failure
from src.domain.services.allergy_service import AllergyService

# Initialize Typer app and Rich console
app = typer.Typer(
    name="allergy-ledger",
    help="Allergy Ledger: patient allergy list reconciliation",
    add_completion=False
)
console = Console()


def create_storage_adapter_cli() -> DuckDBAdapter:
    """Create storage adapter based on configuration (CLI wrapper)."""
    try:
        from src.main import create_storage_adapter
        return create_storage_adapter()
    except Exception as e:
        console.print(f"[red]✗[/red] Failed to create storage adapter: {escape(str(e))}")
        raise typer.Exit(code=1)


def create_service_cli(storage: DuckDBAdapter) -> AllergyService:
    try:
        from src.main import create_allergy_service
        return create_allergy_service(storage)
    except Exception as e:
        storage.close()
        console.print(f"[red]✗[/red] Failed to initialize allergy service: {escape(str(e))}")
        raise typer.Exit(code=1)


def _concept_label(concept: Optional[Concept]) -> str:
    if concept is None:
        return ""
    return concept.name or concept.uuid


def _reactions_label(allergy: Allergy) -> str:
    labels = []
    for reaction in allergy.reactions:
        if reaction.reaction_non_coded:
            labels.append(reaction.reaction_non_coded)
        else:
            labels.append(_concept_label(reaction.reaction))
    return ", ".join(labels)


def _allergy_table(title: str, allergies: list[Allergy], show_lifecycle: bool = False) -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Allergy ID", style="cyan")
    table.add_column("Type")
    table.add_column("Allergen")
    table.add_column("Severity")
    table.add_column("Reactions")
    table.add_column("Comment")
    if show_lifecycle:
        table.add_column("Retired")
        table.add_column("Reason")
        table.add_column("Superseded By")

    for index, allergy in enumerate(allergies):
        row = [
            str(index),
            allergy.allergy_id or "",
            allergy.allergen.allergen_type.value,
            str(allergy.allergen),
            _concept_label(allergy.severity),
            _reactions_label(allergy),
            allergy.comment or "",
        ]
        if show_lifecycle:
            row += [
                "[red]yes[/red]" if allergy.retired else "no",
                allergy.retire_reason or "",
                allergy.superseded_by or "",
            ]
        table.add_row(*row)
    return table


@app.command("init-db")
def init_db() -> None:
    """Create the database schema and seed the "other non-coded" concept."""
    storage = create_storage_adapter_cli()
    try:
        result = storage.initialize_schema()
        if result.is_failure():
            console.print(f"[red]✗[/red] {escape(describe_failure(result))}")
            raise typer.Exit(code=1)
        console.print(f"[green]✓[/green] Schema initialized at {storage.db_path}")
    finally:
        storage.close()


@app.command("add-concept")
def add_concept(
    uuid: str = typer.Argument(..., help="Concept uuid"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name"),
    concept_id: Optional[int] = typer.Option(None, "--concept-id", help="Numeric concept identifier"),
) -> None:
    """Register a vocabulary concept (allergen, reaction or severity).

    Examples:
        allergy-ledger add-concept 71617AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA --name Penicillin
    """
    storage = create_storage_adapter_cli()
    try:
        result = storage.register_concept(Concept(uuid=uuid, concept_id=concept_id, name=name))
        if result.is_failure():
            console.print(f"[red]✗[/red] {escape(describe_failure(result))}")
            raise typer.Exit(code=1)
        console.print(f"[green]✓[/green] Registered concept {uuid}")
    finally:
        storage.close()


@app.command()
def show(patient_id: str = typer.Argument(..., help="Patient identifier")) -> None:
    """Show the patient's active allergy list and status."""
    storage = create_storage_adapter_cli()
    try:
        service = create_service_cli(storage)
        allergies = service.get_allergies(patient_id)
        console.print(f"\n[bold]Allergy status:[/bold] {allergies.allergy_status.value}")
        if allergies.size():
            console.print(_allergy_table(f"Active allergies for patient {patient_id}", list(allergies)))
    except AllergyLedgerError as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        raise typer.Exit(code=1)
    finally:
        storage.close()


@app.command()
def history(patient_id: str = typer.Argument(..., help="Patient identifier")) -> None:
    """Show every allergy version for the patient, retired ones included."""
    storage = create_storage_adapter_cli()
    try:
        service = create_service_cli(storage)
        versions = service.get_allergy_history(patient_id)
        if not versions:
            console.print(f"[dim]No allergy history for patient {patient_id}[/dim]")
            return
        console.print(_allergy_table(f"Allergy history for patient {patient_id}", versions, show_lifecycle=True))
    except AllergyLedgerError as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        raise typer.Exit(code=1)
    finally:
        storage.close()


@app.command()
def apply(
    patient_id: str = typer.Argument(..., help="Patient identifier"),
    candidate_file: Path = typer.Argument(..., help="Candidate allergy list (JSON)", exists=True),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Save a candidate allergy list for a patient.

    The file holds either a list of allergies or an object with "allergies"
    and an optional "status" (NO_KNOWN_ALLERGIES or UNKNOWN). Entries that
    carry an allergy_id are compared with the stored version; entries
    without one are saved as new.

    Examples:
        allergy-ledger apply 2 candidate.json
    """
    if verbose:
        setup_logging(use_json=settings.log_json, log_level="DEBUG")
        console.print("[dim]Verbose logging enabled[/dim]")

    from src.main import load_candidate

    storage = create_storage_adapter_cli()
    try:
        service = create_service_cli(storage)
        candidate: Allergies = load_candidate(candidate_file, patient_id)
        result = service.set_allergies(patient_id, candidate)

        console.print("\n[bold]Reconciliation Summary:[/bold]")
        summary_table = Table(show_header=False, box=None, padding=(0, 2))
        summary_table.add_row("Unchanged:", str(result.allergies_unchanged))
        summary_table.add_row("Created:", f"[green]{result.allergies_created}[/green]")
        summary_table.add_row("Retired:", f"{result.allergies_retired} ({result.allergies_edited} edited)")
        summary_table.add_row("Status:", f"[bold]{result.status.value}[/bold]")
        summary_table.add_row("Reconciliation ID:", result.reconciliation_id)
        console.print(summary_table)
    except (AllergyLedgerError, ValueError) as e:
        console.print(f"[red]✗[/red] Save failed: {escape(str(e))}")
        raise typer.Exit(code=1)
    finally:
        storage.close()


@app.command("confirm-nka")
def confirm_nka(patient_id: str = typer.Argument(..., help="Patient identifier")) -> None:
    """Record that the patient has no known allergies (retires any active entries)."""
    storage = create_storage_adapter_cli()
    try:
        service = create_service_cli(storage)
        result = service.confirm_no_known_allergies(patient_id)
        console.print(
            f"[green]✓[/green] Patient {patient_id}: {result.status.value} "
            f"({result.allergies_retired} retired)"
        )
    except AllergyLedgerError as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        raise typer.Exit(code=1)
    finally:
        storage.close()


@app.command()
def info() -> None:
    """Display system information and configuration."""
    console.print("[bold blue]System Information[/bold blue]\n")

    info_table = Table(show_header=False, box=None, padding=(0, 2))
    info_table.add_row("Application:", settings.app_name)
    info_table.add_row("Database Type:", settings.db_config.db_type)
    info_table.add_row("Database Path:", settings.get_db_path())
    info_table.add_row("Other Non-coded Concept:", settings.other_non_coded_uuid)
    info_table.add_row("Changed By:", settings.changed_by)

    console.print(info_table)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"{settings.app_name} v{APP_VERSION}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False, "--version", callback=version_callback, is_eager=True, help="Show version information"
    )
) -> None:
    """Allergy Ledger: patient allergy list reconciliation."""
    setup_logging(use_json=settings.log_json, log_level=settings.log_level)


if __name__ == "__main__":
    app()
