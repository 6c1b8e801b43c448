"""
Morrisons EDI - Main Entry Point
Command-line interface for invoice dispatch.
"""
import argparse
import getpass
import json
import logging
import sys
from pathlib import Path

from morrisons_edi.clients.api import StoklyClient
from morrisons_edi.clients.transport import LocalDirectoryTransport
from morrisons_edi.core.builder import InvoiceDocumentBuilder
from morrisons_edi.core.parsers import StoreLookup, load_invoice_bundle, load_store_lookup
from morrisons_edi.processing.ledger import ProcessingLedger
from morrisons_edi.processing.pipeline import DispatchPipeline
from morrisons_edi.processing.scheduler import SyncRunner
from morrisons_edi.reports.generator import (
    format_validation,
    generate_json_report,
    generate_ledger_report,
)
from morrisons_edi.storage.credentials import CredentialError, CredentialStore
from morrisons_edi.storage.registry import ProcessedInvoiceRegistry
from morrisons_edi.storage.state import STORE_LOOKUP_KEY, StateStore


# Configure logging
def setup_logging(verbose: bool = False):
    """Configure application logging"""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler('morrisons_edi.log')
        ]
    )


def _load_json(path):
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def _edi_config(args, state: StateStore):
    if getattr(args, 'config', None):
        return _load_json(args.config)
    return state.edi_config()


def _store_lookup(args, state: StateStore) -> StoreLookup:
    if getattr(args, 'lookup', None):
        return load_store_lookup(args.lookup)
    return StoreLookup.coerce(state.get(STORE_LOOKUP_KEY))


def _outbox(args, state: StateStore) -> Path:
    if getattr(args, 'output_dir', None):
        return Path(args.output_dir)
    return state.path.parent / 'outbox'


def _build_runner(args, state: StateStore):
    credentials = CredentialStore(state)
    api_credentials = credentials.load('api')
    if api_credentials is None:
        raise CredentialError('Please configure API credentials first')

    client = StoklyClient.from_credentials(api_credentials)
    registry = ProcessedInvoiceRegistry(state)
    ledger = ProcessingLedger()

    pipeline = DispatchPipeline(
        source=client,
        builder=InvoiceDocumentBuilder(barcode_lookup=client.get_item_barcode),
        transport=LocalDirectoryTransport(_outbox(args, state)),
        ledger=ledger,
        registry=registry,
        config=lambda: _edi_config(args, state),
        transport_credentials=lambda: credentials.load('ftp'),
    )

    lookup = _store_lookup(args, state)
    return SyncRunner(
        client=client,
        pipeline=pipeline,
        state=state,
        registry=registry,
        store_lookup=lookup,
        skip_processed=not args.include_processed,
    )


def run_sync(args, state: StateStore):
    """Handle a single sync run"""
    runner = _build_runner(args, state)
    record = runner.run_once()

    ledger = runner.pipeline.ledger
    print(generate_ledger_report(ledger.results()))

    if args.report:
        generate_json_report(ledger.results(), args.report)
        logging.info(f"JSON report saved: {args.report}")

    if record is None:
        return 1
    if not record.success:
        print(f"Run failed: {record.error}")
        return 1
    return 0 if ledger.statistics()['failed'] == 0 else 2


def run_schedule(args, state: StateStore):
    """Handle the periodic sync loop"""
    runner = _build_runner(args, state)
    runner.run_forever(args.interval * 60)
    return 0


def build_single(args, state: StateStore):
    """Handle building one interchange from a saved invoice bundle"""
    invoice, items, sale_order = load_invoice_bundle(args.bundle)

    builder = InvoiceDocumentBuilder()
    result = builder.build(sale_order, invoice, items,
                           _store_lookup(args, state), _edi_config(args, state))

    if args.output:
        Path(args.output).write_text(result.edi_payload + '\n', encoding='utf-8')
        logging.info(f"Interchange saved: {args.output}")
    else:
        print(result.edi_payload)

    print("\n" + "=" * 60)
    print(f"Invoice: {invoice.dispatch_id}")
    print("=" * 60)
    if result.validation.has_undefined_data:
        print("HELD - contains undefined data")
    else:
        print("READY TO SEND")
    for line in format_validation(result.validation):
        print(line)
    print("=" * 60)

    if result.processing_time_ms:
        print(f"Processing time: {result.processing_time_ms:.2f}ms")

    return 0 if not result.validation.has_undefined_data else 1


def manage_registry(args, state: StateStore):
    """Handle processed-invoice registry commands"""
    registry = ProcessedInvoiceRegistry(state)

    if args.registry_command == 'stats':
        print(json.dumps(registry.stats(), indent=2))
    elif args.registry_command == 'check':
        processed = registry.is_processed(args.invoice_id)
        print(f"Invoice {args.invoice_id}: {'processed' if processed else 'not processed'}")
        return 0 if processed else 1
    elif args.registry_command == 'mark':
        was_new = registry.mark_processed(args.invoice_id)
        print(f"Invoice {args.invoice_id}: {'marked' if was_new else 'already processed'}")
    elif args.registry_command == 'clear':
        print(json.dumps(registry.clear(args.keep_recent), indent=2))
    elif args.registry_command == 'export':
        export = registry.export()
        if args.output:
            with open(args.output, 'w', encoding='utf-8') as f:
                json.dump(export, f, indent=2)
            logging.info(f"Registry exported: {args.output}")
        else:
            print(json.dumps(export, indent=2))
    return 0


def manage_credentials(args, state: StateStore):
    """Handle credential commands"""
    store = CredentialStore(state)

    if args.credentials_command == 'set-api':
        secret = args.secret_key or getpass.getpass('Secret key: ')
        store.save('api', {
            'clientId': args.client_id,
            'secretKey': secret,
            'accountKey': args.account_key,
        })
        print("API credentials saved")
    elif args.credentials_command == 'set-ftp':
        password = args.password or getpass.getpass('Password: ')
        store.save('ftp', {
            'host': args.host,
            'port': args.port,
            'username': args.username,
            'password': password,
            'directory': args.directory,
            'secure': not args.insecure,
        })
        print("FTP credentials saved")
    elif args.credentials_command == 'clear':
        store.clear(args.kind)
        print(f"{args.kind.upper()} credentials cleared")
    elif args.credentials_command == 'status':
        for kind, configured in store.status().items():
            print(f"{kind.upper()}: {'configured' if configured else 'not configured'}")
    return 0


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description='Morrisons EDI - Build and dispatch EDIFACT INVOIC documents for paid invoices'
    )
    parser.add_argument('--state', help='State file path (default: ~/.config/morrisons-edi/config.json)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    def add_dispatch_options(sub):
        sub.add_argument('--lookup', '-l', help='Store lookup CSV (default: stored table)')
        sub.add_argument('--config', '-c', help='EDI config JSON (default: stored config)')
        sub.add_argument('--output-dir', '-o', help='Directory interchanges are written to')
        sub.add_argument('--include-processed', action='store_true',
                         help='Dispatch invoices already in the registry')

    # Single run
    run_parser = subparsers.add_parser('run', help='Dispatch invoices paid since the last run')
    add_dispatch_options(run_parser)
    run_parser.add_argument('--report', '-r', help='Write a JSON report of the ledger')

    # Periodic runs
    schedule_parser = subparsers.add_parser('schedule', help='Run the sync periodically')
    add_dispatch_options(schedule_parser)
    schedule_parser.add_argument('--interval', '-i', type=float, default=15,
                                 help='Minutes between runs (default: 15)')

    # Offline build
    build_parser = subparsers.add_parser('build', help='Build an interchange from a saved invoice bundle')
    build_parser.add_argument('bundle', help='JSON file with invoice, items and saleOrder')
    build_parser.add_argument('--lookup', '-l', help='Store lookup CSV (default: stored table)')
    build_parser.add_argument('--config', '-c', help='EDI config JSON (default: stored config)')
    build_parser.add_argument('--output', '-o', help='Write the interchange to this file')

    # Registry
    registry_parser = subparsers.add_parser('registry', help='Processed-invoice registry')
    registry_sub = registry_parser.add_subparsers(dest='registry_command', required=True)
    registry_sub.add_parser('stats', help='Show registry statistics')
    check_parser = registry_sub.add_parser('check', help='Check whether an invoice was processed')
    check_parser.add_argument('invoice_id')
    mark_parser = registry_sub.add_parser('mark', help='Mark an invoice as processed')
    mark_parser.add_argument('invoice_id')
    clear_parser = registry_sub.add_parser('clear', help='Forget processed invoices')
    clear_parser.add_argument('--keep-recent', type=int, default=0,
                              help='Keep the N most recently processed ids')
    export_parser = registry_sub.add_parser('export', help='Export the registry as JSON')
    export_parser.add_argument('--output', '-o', help='Output file (default: stdout)')

    # Credentials
    credentials_parser = subparsers.add_parser('credentials', help='Manage stored credentials')
    credentials_sub = credentials_parser.add_subparsers(dest='credentials_command', required=True)
    api_parser = credentials_sub.add_parser('set-api', help='Store sales API credentials')
    api_parser.add_argument('--client-id', required=True)
    api_parser.add_argument('--account-key', required=True)
    api_parser.add_argument('--secret-key', help='Prompted for when omitted')
    ftp_parser = credentials_sub.add_parser('set-ftp', help='Store destination credentials')
    ftp_parser.add_argument('--host', required=True)
    ftp_parser.add_argument('--port', type=int, default=22)
    ftp_parser.add_argument('--username', required=True)
    ftp_parser.add_argument('--password', help='Prompted for when omitted')
    ftp_parser.add_argument('--directory', default='/')
    ftp_parser.add_argument('--insecure', action='store_true', help='Disable secure transfer')
    clear_credentials = credentials_sub.add_parser('clear', help='Remove stored credentials')
    clear_credentials.add_argument('kind', choices=['api', 'ftp'])
    credentials_sub.add_parser('status', help='Show which credentials are configured')

    # Parse arguments
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    # Setup logging
    setup_logging(args.verbose)

    handlers = {
        'run': run_sync,
        'schedule': run_schedule,
        'build': build_single,
        'registry': manage_registry,
        'credentials': manage_credentials,
    }

    # Execute command
    try:
        state = StateStore(args.state)
        logging.debug(f"Using state file {state.path}")
        return handlers[args.command](args, state)
    except CredentialError as e:
        logging.error(f"Credential error: {e}")
        return 1
    except KeyboardInterrupt:
        logging.info("Operation cancelled by user")
        return 130
    except Exception as e:
        logging.exception(f"Unexpected error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
