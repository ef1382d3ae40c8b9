from __future__ import annotations

import argparse
import json
import logging
import os
from typing import Any

from services.manifest_sync.config import get_settings
from services.manifest_sync.context import build_context
from services.manifest_sync.errors import ConfigurationError
from services.manifest_sync.metrics import push_run_metrics
from services.manifest_sync.pipeline import ManifestSync, RunResult

LOGGER = logging.getLogger('manifest_sync.main')


def run_once(*, dry_run: bool = False, notify_only: bool = False) -> RunResult:
    try:
        settings = get_settings()
        settings.validate(require_signer=not dry_run)
    except ConfigurationError as exc:
        LOGGER.error('invalid configuration: %s', exc.detail)
        return RunResult.failed(exc)

    with build_context(settings) as context:
        sync = ManifestSync(context)
        result = sync.notify_only() if notify_only else sync.run(dry_run=dry_run)

    push_run_metrics(result, settings)
    LOGGER.info(
        'manifest sync finished success=%s changed=%s new_cid=%s notified=%s error_kind=%s',
        result.success,
        result.changed,
        result.new_cid,
        result.notified,
        result.error_kind
    )
    return result


def handler(event: dict[str, Any] | None = None, context: Any = None) -> dict[str, Any]:
    event = event or {}
    result = run_once(dry_run=bool(event.get('dryRun')), notify_only=bool(event.get('notifyOnly')))
    return result.to_dict()


def main() -> None:
    parser = argparse.ArgumentParser(description='Sync the composite manifest with redeemed dots and commit its CID')
    parser.add_argument('--dry-run', action='store_true', help='Build and diff the manifest without publishing')
    parser.add_argument('--notify-only', action='store_true', help='Only trigger the downstream media refresh')
    parser.add_argument('--json', action='store_true', help='Print the run result as JSON')
    args = parser.parse_args()

    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )

    result = run_once(dry_run=args.dry_run, notify_only=args.notify_only)
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    raise SystemExit(0 if result.success else 1)


if __name__ == '__main__':
    main()
