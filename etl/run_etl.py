#!/usr/bin/env python3
"""
Sync Pipeline CLI
Command-line interface for running the contract registry synchronization.
"""

import asyncio
import argparse
import sys
from pathlib import Path
import logging

# Make the repository root importable when run as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from etl.src.config import SyncConfig, get_api_config, get_db_config
from etl.src.orchestrator import SyncOrchestrator


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler('etl_pipeline.log')
        ]
    )


def build_config(args) -> SyncConfig:
    """Environment configuration with CLI flags applied on top."""
    overrides = {
        'force_reset': True if getattr(args, 'reset', False) else None,
        'force_extract_suppliers': True if getattr(args, 'force_suppliers', False) else None,
        'force_create_amendments': True if getattr(args, 'force_amendments', False) else None,
        'refresh_dumps': True if getattr(args, 'refresh', False) else None,
        'create_amendments': True if getattr(args, 'amendments', False) else None,
        'geocode': False if getattr(args, 'no_geocode', False) else None,
        'months_to_process': getattr(args, 'months', None),
    }
    return SyncConfig.from_env(**overrides)


async def run_sync(args):
    """Run (or resume) the synchronization."""
    config = build_config(args)
    print(f"Synchronizing the last {config.months_to_process} months...")

    orchestrator = SyncOrchestrator(config=config)
    results = await orchestrator.run_sync()

    print_results(results)
    return 0 if results['status'] in ['completed', 'partial'] else 1


async def run_suppliers(args):
    """Register suppliers of all stored contracts."""
    print("Extracting suppliers from all contracts...")

    orchestrator = SyncOrchestrator(config=build_config(args))
    results = await orchestrator.extract_suppliers_only()

    suppliers = results['suppliers']
    print(f"\nSuppliers: {suppliers['inserted']} inserted, {suppliers['updated']} updated, "
          f"{suppliers['skipped']} already known, {suppliers['errors']} errors")
    return 0 if suppliers['errors'] == 0 else 1


async def run_amendments(args):
    """Create synthetic amendments for eligible contracts."""
    print("Creating amendments for eligible contracts...")

    orchestrator = SyncOrchestrator(config=build_config(args))
    results = await orchestrator.create_amendments_only(limit=args.limit)

    amendments = results['amendments']
    print(f"\nAmendments: {amendments['created']} created for {amendments['contracts']} contracts, "
          f"{amendments['errors']} errors")
    return 0 if amendments['errors'] == 0 else 1


async def test_connection(args):
    """Test registry and database connections."""
    print("Testing connections...")

    # Test registry connection
    print("\nTesting registry connection...")
    import aiohttp

    api_config = get_api_config()
    try:
        async with aiohttp.ClientSession(headers={"User-Agent": api_config.user_agent}) as session:
            async with session.head(api_config.dump_base_url, allow_redirects=True) as response:
                print(f"✓ Registry reachable ({response.status}).")
    except Exception as e:
        print(f"✗ Registry connection failed: {e}")
        return 1

    # Test database connection
    print("\nTesting database connection...")
    from etl.src.database import Database

    try:
        async with Database(get_db_config()) as db:
            await db.resolve_table_names()
            stats = await db.get_statistics()
            print(f"✓ Database connection successful.")
            print(f"  Total contracts: {stats.get('total_contracts', 0)}")
            print(f"  Total suppliers: {stats.get('total_suppliers', 0)}")
            print(f"  Total amendments: {stats.get('total_amendments', 0)}")
    except Exception as e:
        print(f"✗ Database connection failed: {e}")
        return 1

    print("\n✓ All connections successful!")
    return 0


def print_results(results):
    """Print synchronization results."""
    print("\n" + "="*50)
    print("Synchronization Results")
    print("="*50)

    print(f"Status: {results['status']}")

    if results['duration_seconds']:
        duration = results['duration_seconds']
        if duration < 60:
            print(f"Duration: {duration:.2f} seconds")
        else:
            minutes = int(duration // 60)
            seconds = duration % 60
            print(f"Duration: {minutes}m {seconds:.0f}s")

    print(f"\nMonths: {results['months_completed']}/{len(results['months'])} complete")
    for month in results['months']:
        print(f"  - {month}")

    contracts = results['contracts']
    print(f"\nContracts:")
    print(f"  Records in dumps: {contracts['total']}")
    print(f"  Processed: {contracts['processed']}")
    print(f"  - new: {contracts['new']}")
    print(f"  - updated: {contracts['updated']}")
    print(f"  - skipped: {contracts['skipped']}")
    print(f"  - errors: {contracts['errors']}")

    print(f"\nSuppliers created: {results['suppliers']}")
    print(f"Amendments created: {results['amendments']}")

    if results['errors']:
        print(f"\nErrors: {len(results['errors'])}")
        for message in results['errors'][:20]:
            print(f"  - {message}")
        if len(results['errors']) > 20:
            print(f"  ... and {len(results['errors']) - 20} more")

    print("="*50)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Contract registry synchronization CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Synchronize the last months (resumes an interrupted run)
  python run_etl.py sync

  # Start over, ignoring the checkpoint
  python run_etl.py sync --reset

  # Register suppliers of all stored contracts
  python run_etl.py suppliers

  # Create synthetic amendments for up to 50 contracts
  python run_etl.py amendments --limit 50

  # Test connections
  python run_etl.py test
        """
    )

    parser.add_argument(
        '-v', '--verbose', '-d', '--debug',
        dest='verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    subparsers = parser.add_subparsers(
        dest='command',
        help='Command to run (default: sync)'
    )

    # Sync command
    parser_sync = subparsers.add_parser(
        'sync',
        help='Synchronize the trailing month window'
    )
    parser_sync.add_argument(
        '-r', '--reset',
        action='store_true',
        help='Ignore the checkpoint and start from scratch'
    )
    parser_sync.add_argument(
        '--months',
        type=int,
        help='Number of months to synchronize, counting back from the current one'
    )
    parser_sync.add_argument(
        '-s', '--force-suppliers',
        action='store_true',
        help='Also register suppliers of all stored contracts'
    )
    parser_sync.add_argument(
        '-a', '--force-amendments',
        action='store_true',
        help='Also create amendments for all eligible stored contracts'
    )
    parser_sync.add_argument(
        '--amendments',
        action='store_true',
        help='Create synthetic amendments for contracts touched by this run'
    )
    parser_sync.add_argument(
        '--refresh',
        action='store_true',
        help='Drop cached dumps of the month window and download them again'
    )
    parser_sync.add_argument(
        '--no-geocode',
        action='store_true',
        help='Do not look up coordinates'
    )
    parser_sync.set_defaults(func=run_sync)

    # Suppliers command
    parser_suppliers = subparsers.add_parser(
        'suppliers',
        help='Register suppliers of all stored contracts'
    )
    parser_suppliers.set_defaults(func=run_suppliers)

    # Amendments command
    parser_amendments = subparsers.add_parser(
        'amendments',
        help='Create synthetic amendments for eligible contracts'
    )
    parser_amendments.add_argument(
        '--limit',
        type=int,
        help='Maximum number of contracts'
    )
    parser_amendments.set_defaults(func=run_amendments)

    # Test command
    parser_test = subparsers.add_parser(
        'test',
        help='Test registry and database connections'
    )
    parser_test.set_defaults(func=test_connection)

    return parser


def main(argv=None):
    """Main entry point."""
    parser = build_parser()
    argv = list(sys.argv[1:] if argv is None else argv)

    args = parser.parse_args(argv)
    if not args.command:
        args = parser.parse_args(argv + ['sync'])

    # Setup logging
    setup_logging(args.verbose)

    # Run the command
    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print("\n\nSynchronization interrupted by user.")
        return 130
    except Exception as e:
        print(f"\nError: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
