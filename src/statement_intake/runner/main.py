"""
CLI main entry point.
"""

import argparse
import json
import logging
import mimetypes
import sys
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..extractors import ExtractionExhausted, LowContentExtraction, build_default_chain
from ..parsing import StatementParser
from ..schemas.statement import TERMINAL_STATUSES, StatementStatus
from ..services import (
    IntakeValidationError,
    ProcessingSupervisor,
    RetryNotAllowedError,
    StatementIntake,
    StatementProcessor,
    TransactionNormalizer,
)
from ..state_store import StatementNotFoundError, StateStore
from ..storage import LocalObjectStorage, StorageError

logger = logging.getLogger(__name__)

STATUS_ICONS = {
    StatementStatus.UPLOADED: "⏳",
    StatementStatus.EXTRACTED: "🔎",
    StatementStatus.NEEDS_REVIEW: "👀",
    StatementStatus.COMPLETED: "✓",
    StatementStatus.FAILED: "❌",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="statement-intake",
        description="Extract, parse and import transactions from bank statement documents",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init-config command
    init_parser = subparsers.add_parser("init-config", help="Write a default config file")
    init_parser.add_argument(
        "--force", action="store_true", help="Overwrite an existing config file"
    )

    # upload command
    upload_parser = subparsers.add_parser("upload", help="Upload and process a statement")
    upload_parser.add_argument("file", type=Path, help="Statement file (PDF, JPEG, PNG, TIFF)")
    upload_parser.add_argument("--account", required=True, help="Account name")
    upload_parser.add_argument("--month", type=int, required=True, help="Statement month (1-12)")
    upload_parser.add_argument("--year", type=int, required=True, help="Statement year")
    upload_parser.add_argument("--bank", help="Bank name (default: Unknown Bank)")
    upload_parser.add_argument("--currency", help="Currency code (default: USD)")
    upload_parser.add_argument(
        "--mime-type", help="Declared MIME type (default: guessed from file name)"
    )

    # retry command
    retry_parser = subparsers.add_parser(
        "retry", help="Re-run processing for a needs_review, failed or completed statement"
    )
    retry_parser.add_argument("statement_id", type=int)

    # delete command
    delete_parser = subparsers.add_parser(
        "delete", help="Delete a statement, its transactions and its stored file"
    )
    delete_parser.add_argument("statement_id", type=int)

    # status command
    status_parser = subparsers.add_parser("status", help="Show statement or pipeline status")
    status_parser.add_argument(
        "statement_id", type=int, nargs="?", help="Statement to show (default: overall stats)"
    )

    # list command
    list_parser = subparsers.add_parser("list", help="List statements")
    list_parser.add_argument(
        "--status",
        choices=[s.value for s in StatementStatus],
        help="Only statements in this status",
    )
    list_parser.add_argument("--limit", type=int, default=50, help="Maximum rows (default: 50)")

    # transactions command
    txn_parser = subparsers.add_parser("transactions", help="Show imported transactions")
    txn_parser.add_argument("statement_id", type=int)
    txn_parser.add_argument("--json", action="store_true", help="Output JSON")

    # extract-text command
    extract_parser = subparsers.add_parser(
        "extract-text", help="Run the extraction chain on a file without storing anything"
    )
    extract_parser.add_argument("file", type=Path)
    extract_parser.add_argument("--mime-type", help="Declared MIME type")

    # parse command
    parse_parser = subparsers.add_parser(
        "parse", help="Parse statement text (from a .txt file) without storing anything"
    )
    parse_parser.add_argument("file", type=Path)
    parse_parser.add_argument("--json", action="store_true", help="Output JSON")

    return parser


def _guess_mime_type(path: Path, declared: str | None) -> str:
    if declared:
        return declared
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


def _build_processor(
    config: Config, store: StateStore, storage: LocalObjectStorage
) -> StatementProcessor:
    return StatementProcessor(
        store,
        build_default_chain(config),
        normalizer=TransactionNormalizer(
            reference_year=config.processing.reference_year,
            base_confidence=config.processing.base_transaction_confidence,
        ),
        storage=storage,
    )


def _print_config_warnings(config: Config) -> None:
    for error in config.validate():
        print(f"⚠️  Config: {error}")


def cmd_init_config(config_path: Path, force: bool) -> int:
    """Write the default configuration file."""
    if config_path.exists() and not force:
        print(f"❌ {config_path} already exists (use --force to overwrite)")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_upload(
    config: Config,
    file: Path,
    account: str,
    month: int,
    year: int,
    bank: str | None,
    currency: str | None,
    mime_type: str | None,
) -> int:
    """Upload a statement and wait for its first run."""
    if not file.is_file():
        print(f"❌ File not found: {file}")
        return 1
    _print_config_warnings(config)

    store = StateStore(config.state_db_path)
    storage = LocalObjectStorage(config.storage_root)
    processor = _build_processor(config, store, storage)

    with ProcessingSupervisor(processor, store, workers=config.processing.workers) as supervisor:
        intake = StatementIntake(store, storage, config.intake, supervisor)
        try:
            statement = intake.submit(
                file.read_bytes(),
                filename=file.name,
                mime_type=_guess_mime_type(file, mime_type),
                account_name=account,
                month=month,
                year=year,
                bank_name=bank,
                currency=currency,
            )
        except IntakeValidationError as e:
            print("❌ Upload rejected:")
            for error in e.errors:
                print(f"   - {error}")
            return 1
        except StorageError as e:
            print(f"❌ Could not store file: {e}")
            return 1

        print(f"📤 Uploaded statement {statement.id}, processing...")
        supervisor.wait()

    return _print_statement(store, statement.id)


def cmd_retry(config: Config, statement_id: int) -> int:
    """Retry a statement and wait for the run."""
    _print_config_warnings(config)

    store = StateStore(config.state_db_path)
    storage = LocalObjectStorage(config.storage_root)
    processor = _build_processor(config, store, storage)

    with ProcessingSupervisor(processor, store, workers=1) as supervisor:
        intake = StatementIntake(store, storage, config.intake, supervisor)
        try:
            intake.retry(statement_id)
        except StatementNotFoundError as e:
            print(f"❌ {e}")
            return 1
        except RetryNotAllowedError as e:
            print(f"❌ {e}")
            return 1

        print(f"🔁 Retrying statement {statement_id}...")
        supervisor.wait()

    return _print_statement(store, statement_id)


def cmd_delete(config: Config, statement_id: int) -> int:
    """Delete a statement."""
    store = StateStore(config.state_db_path)
    intake = StatementIntake(store, LocalObjectStorage(config.storage_root), config.intake)
    try:
        intake.delete(statement_id)
    except StatementNotFoundError as e:
        print(f"❌ {e}")
        return 1
    print(f"🗑️  Deleted statement {statement_id}")
    return 0


def _print_statement(store: StateStore, statement_id: int) -> int:
    statement = store.get_statement(statement_id)
    if statement is None:
        print(f"❌ Statement {statement_id} not found")
        return 1

    icon = STATUS_ICONS.get(statement.status, "")
    print(f"\n{icon} Statement {statement.id}: {statement.status.value}")
    print("=" * 40)
    if statement.status not in TERMINAL_STATUSES:
        print("  Processing has not finished yet")
    print(f"  File:          {statement.original_filename} ({statement.mime_type})")
    print(f"  Account:       {statement.account_name} @ {statement.bank_name}")
    print(f"  Period:        {statement.month:02d}/{statement.year} ({statement.currency})")
    if statement.extraction_provider:
        confidence = (
            f"{statement.extraction_confidence:.0%}"
            if statement.extraction_confidence is not None
            else "n/a"
        )
        print(f"  Extracted by:  {statement.extraction_provider} (confidence {confidence})")
    print(
        f"  Transactions:  {statement.transactions_imported} imported / "
        f"{statement.transactions_found} found"
    )
    if statement.parsed_summary:
        summary = statement.parsed_summary
        print(f"  Parsed bank:   {summary.get('bank_name') or '-'}")
        print(f"  Parsed acct:   {summary.get('account_number') or '-'}")
        print(f"  Parsed period: {summary.get('period') or '-'}")
        print(
            f"  Balances:      {summary.get('opening_balance') or '-'} -> "
            f"{summary.get('closing_balance') or '-'}"
        )
    if statement.processing_errors:
        print("  Errors:")
        for error in statement.processing_errors:
            print(f"   - {error}")

    runs = store.get_processing_runs(statement_id)
    if runs:
        print("  Runs:")
        for run in runs:
            providers = ", ".join(
                f"{a['provider']}={'ok' if a['success'] else a.get('error_type')}"
                for a in run.provider_attempts
            )
            print(f"   - {run.started_at} {run.trigger}: {run.outcome or 'running'} [{providers}]")
    print()

    return 0 if statement.status != StatementStatus.FAILED else 2


def cmd_status(config: Config, statement_id: int | None) -> int:
    """Show statement details or overall stats."""
    store = StateStore(config.state_db_path)
    if statement_id is not None:
        return _print_statement(store, statement_id)

    stats = store.get_stats()
    print("\n📊 Pipeline Status")
    print("=" * 40)
    print(f"  Statements:             {stats['statements']}")
    for status in StatementStatus:
        print(f"    {status.value:<20}  {stats['by_status'][status.value]}")
    print(f"  Transactions found:     {stats['transactions_found']}")
    print(f"  Transactions imported:  {stats['transactions_imported']}")
    print()
    return 0


def cmd_list(config: Config, status: str | None, limit: int) -> int:
    """List statements."""
    store = StateStore(config.state_db_path)
    statements = store.list_statements(
        status=StatementStatus(status) if status else None, limit=limit
    )
    if not statements:
        print("No statements")
        return 0

    for s in statements:
        icon = STATUS_ICONS.get(s.status, "")
        print(
            f"  {icon} [{s.id}] {s.original_filename} | {s.account_name} "
            f"{s.month:02d}/{s.year} | {s.status.value} | "
            f"{s.transactions_imported}/{s.transactions_found}"
        )
    return 0


def cmd_transactions(config: Config, statement_id: int, as_json: bool) -> int:
    """Show a statement's transactions."""
    store = StateStore(config.state_db_path)
    if store.get_statement(statement_id) is None:
        print(f"❌ Statement {statement_id} not found")
        return 1

    transactions = store.get_transactions(statement_id)
    if as_json:
        print(json.dumps([t.to_dict() for t in transactions], indent=2))
        return 0

    for t in transactions:
        sign = "+" if t.direction.value == "credit" else "-"
        print(f"  {t.date}  {sign}{t.amount:>12}  {t.description}")
    print(f"\n✓ {len(transactions)} transaction(s)")
    return 0


def cmd_extract_text(config: Config, file: Path, mime_type: str | None) -> int:
    """Run the extraction chain and print the text."""
    if not file.is_file():
        print(f"❌ File not found: {file}")
        return 1

    chain = build_default_chain(config)
    try:
        outcome = chain.extract(file.read_bytes(), _guess_mime_type(file, mime_type))
    except ExtractionExhausted as e:
        print(f"❌ {e}")
        for attempt in e.attempts:
            print(f"   - {attempt.describe()}")
        return 1

    for attempt in outcome.attempts:
        print(f"  • {attempt.describe()}")
    if isinstance(outcome, LowContentExtraction):
        print(f"⚠️  Low content ({outcome.content_length} chars), would need review")
    print(f"✓ Provider: {outcome.provider_used}\n")
    print(outcome.text)
    return 0


def cmd_parse(file: Path, as_json: bool) -> int:
    """Parse statement text and print fields and candidates."""
    if not file.is_file():
        print(f"❌ File not found: {file}")
        return 1

    parsed = StatementParser().parse(file.read_text(encoding="utf-8"))

    if as_json:
        payload = parsed.summary()
        payload["transactions"] = [
            {
                "line": c.line_number,
                "pattern": c.pattern,
                "date": c.raw_date,
                "description": c.raw_description,
                "amount": f"{c.amount:.2f}",
                "direction": c.direction.value,
                "direction_source": c.direction_source.value,
                "balance": f"{c.balance:.2f}" if c.balance is not None else None,
                "check_number": c.check_number,
            }
            for c in parsed.transactions
        ]
        print(json.dumps(payload, indent=2))
        return 0

    summary = parsed.summary()
    for key in ("bank_name", "account_number", "period", "opening_balance", "closing_balance"):
        print(f"  {key:<16} {summary[key] or '-'}")
    print()
    for c in parsed.transactions:
        print(
            f"  {c.line_number:>4} {c.pattern:<24} {c.raw_date:<10} "
            f"{c.direction.value:<6} {c.amount:>12}  {c.raw_description}"
        )
    print(f"\n✓ {len(parsed.transactions)} candidate(s)")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config, parsed.force)
    if parsed.command == "parse":
        return cmd_parse(parsed.file, parsed.json)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "upload":
        return cmd_upload(
            config,
            parsed.file,
            account=parsed.account,
            month=parsed.month,
            year=parsed.year,
            bank=parsed.bank,
            currency=parsed.currency,
            mime_type=parsed.mime_type,
        )
    elif parsed.command == "retry":
        return cmd_retry(config, parsed.statement_id)
    elif parsed.command == "delete":
        return cmd_delete(config, parsed.statement_id)
    elif parsed.command == "status":
        return cmd_status(config, parsed.statement_id)
    elif parsed.command == "list":
        return cmd_list(config, parsed.status, parsed.limit)
    elif parsed.command == "transactions":
        return cmd_transactions(config, parsed.statement_id, parsed.json)
    elif parsed.command == "extract-text":
        return cmd_extract_text(config, parsed.file, parsed.mime_type)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
