from __future__ import annotations

import argparse
import sys

from app.logging_config import configure_logging
from app.services.sync_service import SyncType, parse_timestamp, run_sync


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description='Mirror ERP customers, products and availability into the local cache.')
    parser.add_argument(
        'sync_type',
        nargs='?',
        default=SyncType.ALL.value,
        choices=[sync_type.value for sync_type in SyncType],
        help='Which data set to sync (default: all).',
    )
    parser.add_argument(
        '--since',
        default=None,
        help='Only process records modified at or after this ISO-8601 timestamp.',
    )
    args = parser.parse_args(argv)

    since = parse_timestamp(args.since) if args.since else None
    if args.since and since is None:
        parser.error(f'Invalid --since timestamp: {args.since}')

    configure_logging()
    result = run_sync(SyncType(args.sync_type), since=since)
    print(f'ERP {args.sync_type} sync {"complete" if result.success else "failed"}: {result.message}')
    if result.error:
        print(f'error={result.error}')
    return 0 if result.success else 1


if __name__ == '__main__':
    sys.exit(main())
