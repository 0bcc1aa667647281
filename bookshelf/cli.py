"""
Bookshelf maintenance commands.

Available commands:
- reconcile: recompute genre and/or series book counts for a user
- purge-bin: permanently delete binned books past the retention window
"""

import sys
import asyncio
import argparse
import logging
from typing import List, Optional

from .services import ServiceRegistry
from .services.counter_service import kinds_from_name, total_updated

logger = logging.getLogger(__name__)


async def reconcile_counts(registry: ServiceRegistry, user_id: str, kind: str = 'all') -> int:
    """Reconcile counters and print a summary. Returns the number of documents updated."""
    results = {}
    for entity_kind in kinds_from_name(kind):
        results[entity_kind.value] = await registry.counters.reconcile(user_id, entity_kind)
    for name, result in results.items():
        print(f"{name}: {result.updated} updated, {result.total_books_scanned} active books scanned")
    return total_updated(results)


async def purge_bin(registry: ServiceRegistry, user_id: str, retention_days: Optional[int] = None) -> int:
    bin_service = registry.bin
    binned = await bin_service.list_bin(user_id, auto_purge=False)
    purged = await bin_service.purge_expired(user_id, binned, retention_days)
    print(f"Purged {purged} of {len(binned)} binned books")
    return purged


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Bookshelf maintenance tools',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument('--log-level', default='INFO', help='Logging level (default: INFO)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    reconcile_parser = subparsers.add_parser('reconcile', help='Recompute genre/series book counts')
    reconcile_parser.add_argument('--user', required=True, help='User id')
    reconcile_parser.add_argument('--kind', choices=['genres', 'series', 'all'], default='all',
                                  help='Which counters to reconcile (default: all)')

    purge_parser = subparsers.add_parser('purge-bin', help='Delete binned books past retention')
    purge_parser.add_argument('--user', required=True, help='User id')
    purge_parser.add_argument('--retention-days', type=int, default=None,
                              help='Override BIN_RETENTION_DAYS for this run')
    return parser


async def _run(args: argparse.Namespace, registry: ServiceRegistry) -> int:
    try:
        if args.command == 'reconcile':
            await reconcile_counts(registry, args.user, args.kind)
        else:
            await purge_bin(registry, args.user, args.retention_days)
        return 0
    finally:
        await registry.close()


def main(argv: Optional[List[str]] = None, registry: Optional[ServiceRegistry] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO))
    try:
        return asyncio.run(_run(args, registry or ServiceRegistry()))
    except Exception as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
