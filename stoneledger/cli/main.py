# stoneledger/cli/main.py
"""
CLI for issuing, verifying and maintaining the signed verification ledger.
"""

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from stoneledger.config import LedgerSettings, get_settings
from stoneledger.crypto.keys import SigningKey
from stoneledger.crypto.registry import load_registry, new_key_id, new_key_record, rotate_registry_file
from stoneledger.errors import (
    ConfigurationError,
    DuplicateEntryIdError,
    EntryNotFoundError,
    KeyRotationError,
    LedgerError,
    PartialAppendError,
    StorageError,
    StructuralError,
)
from stoneledger.issue.issuer import LedgerIssuer
from stoneledger.log import setup_logging
from stoneledger.storage import LedgerStore, create_storage
from stoneledger.verify.verifier import LedgerVerifier

app = typer.Typer(
    name="stone-ledger",
    help="Issue, verify and maintain signed verification ledger entries",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


def _settings(ctx: typer.Context) -> LedgerSettings:
    return ctx.obj


def _open_storage(settings: LedgerSettings) -> LedgerStore:
    try:
        return create_storage(settings.storage_uri)
    except (ValueError, LedgerError) as e:
        console.print(f"[red]Failed to open ledger storage: {e}[/]")
        raise typer.Exit(1)


def _read_json(payload: Optional[str], input_file: Optional[Path]) -> dict:
    if input_file is not None:
        text = input_file.read_text(encoding="utf-8")
    elif payload:
        text = payload
    else:
        console.print("[red]No payload provided. Pass a JSON object or use --input.[/]")
        raise typer.Exit(1)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON payload: {e}[/]")
        raise typer.Exit(1)
    if not isinstance(data, dict):
        console.print("[red]Payload must be a JSON object[/]")
        raise typer.Exit(1)
    return data


@app.callback()
def main(
    ctx: typer.Context,
    root: Optional[Path] = typer.Option(
        None, "--root", help="Ledger repository root (overrides STONE_LEDGER_ROOT)",
    ),
    keys: Optional[Path] = typer.Option(
        None, "--keys", help="Key registry file (overrides STONE_LEDGER_KEYS)",
    ),
    storage: Optional[str] = typer.Option(
        None, "--storage", help="Storage URI: file://DIR, sqlite://PATH (overrides STONE_LEDGER_STORAGE)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Manage the signed verification ledger."""
    settings = get_settings(STONE_LEDGER_ROOT=root, STONE_LEDGER_KEYS=keys, STONE_LEDGER_STORAGE=storage)
    setup_logging("DEBUG" if verbose else settings.log_level)
    ctx.obj = settings


@app.command()
def keygen(
    ctx: typer.Context,
    key_id: Optional[str] = typer.Option(None, "--key-id", help="Identifier for the new key (default: stone-verified-ed25519-YYYY-MM)"),
    register: bool = typer.Option(True, "--register/--no-register", help="Add the public key to the registry and make it active"),
):
    """Generate a new Ed25519 keypair and (by default) rotate it in as the active key."""
    settings = _settings(ctx)
    signing_key = SigningKey.generate()

    try:
        registry = load_registry(settings.registry_path)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)
    key_id = key_id or new_key_id(registry.key_ids)

    if register:
        try:
            rotate_registry_file(settings.registry_path, key_id, new_key_record(signing_key.public_key))
        except (KeyRotationError, ConfigurationError) as e:
            console.print(f"[red]Rotation failed: {e}[/]")
            raise typer.Exit(1)
        console.print(f"[green]✓ Registered '{key_id}' as the active key in {settings.registry_path}[/]")

    console.print(f"Key ID: {key_id}")
    console.print("Public Key (Base64):")
    console.print(signing_key.public_key_b64(), soft_wrap=True)
    console.print("Private Key (Base64):")
    console.print(signing_key.expanded_b64(), soft_wrap=True)
    console.print("[yellow]Store the private key as STONE_LEDGER_PRIVATE_KEY_B64. Never commit it.[/]")


@app.command("keys")
def list_keys(ctx: typer.Context):
    """List every key in the registry. Historical keys are never removed."""
    settings = _settings(ctx)
    try:
        registry = load_registry(settings.registry_path)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)

    if not len(registry):
        console.print(f"[yellow]No keys registered in {settings.registry_path}[/]")
        console.print("  Run: stone-ledger keygen")
        return

    table = Table(title="Key Registry")
    table.add_column("Key ID")
    table.add_column("Type")
    table.add_column("Created")
    table.add_column("Active")
    for key_id, record in registry.keys.items():
        table.add_row(key_id, record.type, record.created_at or "—", "✓" if key_id == registry.active else "")
    console.print(table)


@app.command()
def sign(
    ctx: typer.Context,
    payload: Optional[str] = typer.Argument(None, help="Entry JSON (without signature)"),
    input_file: Optional[Path] = typer.Option(None, "--input", "-i", help="Read the entry JSON from a file"),
):
    """Validate, sign and append an entry to the ledger."""
    settings = _settings(ctx)
    data = _read_json(payload, input_file)

    try:
        issuer = LedgerIssuer.from_settings(settings)
    except (ConfigurationError, ValueError) as e:
        console.print(f"[red]Configuration error: {e}[/]")
        raise typer.Exit(1)

    try:
        sealed = issuer.issue(data)
    except StructuralError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)
    except DuplicateEntryIdError as e:
        console.print(f"[red]Conflict: {e}[/]")
        raise typer.Exit(1)
    except PartialAppendError as e:
        console.print(f"[yellow]Warning: {e}[/]")
        raise typer.Exit(2)
    except LedgerError as e:
        console.print(f"[red]Append failed: {e}[/]")
        raise typer.Exit(1)
    finally:
        issuer.close()

    console.print(f"[green]✓ Signed and appended entry: {sealed['entry_id']}[/]")
    console.print(f"  key: {sealed['key_id']}")


@app.command()
def verify(
    ctx: typer.Context,
    entry_file: Optional[Path] = typer.Argument(None, help="Sealed entry JSON file"),
    entry_id: Optional[str] = typer.Option(None, "--id", help="Verify a stored entry by id instead"),
):
    """Verify an entry's signature against the key registry."""
    settings = _settings(ctx)
    try:
        verifier = LedgerVerifier(load_registry(settings.registry_path))
    except ConfigurationError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)

    if entry_id:
        with _open_storage(settings) as storage:
            try:
                result = verifier.verify_stored(entry_id, storage)
            except StorageError as e:
                console.print(f"[red]Failed to read entry {entry_id}: {e}[/]")
                raise typer.Exit(1)
    elif entry_file:
        try:
            entry = json.loads(entry_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            console.print(f"[red]Failed to read {entry_file}: {e}[/]")
            raise typer.Exit(1)
        result = verifier.verify(entry)
    else:
        console.print("[red]Pass an entry file or --id ENTRY_ID[/]")
        raise typer.Exit(1)

    console.print_json(json.dumps(result.to_dict()))
    if not result.valid:
        raise typer.Exit(1)


@app.command()
def show(
    ctx: typer.Context,
    entry_id: str = typer.Argument(..., help="Entry ID to display"),
):
    """Print a stored entry."""
    with _open_storage(_settings(ctx)) as storage:
        try:
            entry = storage.get(entry_id)
        except EntryNotFoundError as e:
            console.print(f"[yellow]{e}[/]")
            raise typer.Exit(1)
        except StorageError as e:
            console.print(f"[red]Failed to read entry {entry_id}: {e}[/]")
            raise typer.Exit(1)
    console.print_json(json.dumps(entry, ensure_ascii=False))


@app.command()
def lookup(
    ctx: typer.Context,
    subject_ref: str = typer.Argument(..., help="Subject reference"),
):
    """List entry ids recorded for a subject reference."""
    with _open_storage(_settings(ctx)) as storage:
        try:
            entry_ids = storage.lookup_by_subject_ref(subject_ref)
        except LedgerError as e:
            console.print(f"[red]{e}[/]")
            raise typer.Exit(1)

    if not entry_ids:
        console.print(f"[yellow]No entries found for '{subject_ref}'[/]")
        return
    for eid in entry_ids:
        console.print(eid)


@app.command()
def audit(ctx: typer.Context):
    """Verify every stored entry and check log/index consistency."""
    settings = _settings(ctx)
    try:
        verifier = LedgerVerifier(load_registry(settings.registry_path))
    except ConfigurationError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)

    with _open_storage(settings) as storage:
        try:
            results = list(verifier.verify_all(storage))
            issues = storage.check_consistency()
        except LedgerError as e:
            console.print(f"[red]Audit failed: {e}[/]")
            raise typer.Exit(1)

    failures = [r for r in results if not r.valid]
    if failures or issues:
        table = Table(title="Audit Findings")
        table.add_column("Entry ID")
        table.add_column("Problem")
        table.add_column("Detail")
        for r in failures:
            table.add_row(str(r.entry_id), r.reason.value, r.message)
        for issue in issues:
            table.add_row(issue.entry_id, issue.kind, issue.detail)
        console.print(table)
        console.print(f"[red]✗ {len(failures)} invalid entries, {len(issues)} consistency issues[/]")
        raise typer.Exit(1)

    console.print(f"[green]✓ {len(results)} entries verified, ledger consistent[/]")


@app.command()
def reconcile(ctx: typer.Context):
    """Replay per-entry records into the daily logs and index where missing."""
    with _open_storage(_settings(ctx)) as storage:
        try:
            repaired = storage.reconcile()
            remaining = storage.check_consistency()
        except LedgerError as e:
            console.print(f"[red]Reconcile failed: {e}[/]")
            raise typer.Exit(1)

    for issue in repaired:
        console.print(f"  repaired {issue.kind}: {issue.entry_id}")
    console.print(f"[green]Repaired {len(repaired)} issues[/]")
    if remaining:
        for issue in remaining:
            console.print(f"[yellow]  needs attention {issue.kind}: {issue.entry_id} {issue.detail}[/]")
        raise typer.Exit(1)


@app.command("rebuild-index")
def rebuild_index(ctx: typer.Context):
    """Discard the subject index and rebuild it from stored entries."""
    with _open_storage(_settings(ctx)) as storage:
        try:
            subjects = storage.rebuild_index()
        except LedgerError as e:
            console.print(f"[red]Rebuild failed: {e}[/]")
            raise typer.Exit(1)
    console.print(f"[green]Rebuilt index for {subjects} subjects[/]")


if __name__ == "__main__":
    app()
