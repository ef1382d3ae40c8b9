from __future__ import annotations

import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, push_to_gateway

from services.manifest_sync.config import Settings
from services.manifest_sync.pipeline import RunResult

LOGGER = logging.getLogger('manifest_sync.metrics')


def run_outcome(result: RunResult) -> str:
    if not result.success:
        return result.error_kind or 'failed'
    if result.changed and result.new_cid:
        return 'committed'
    if result.changed:
        return 'changed_dry_run'
    return 'unchanged'


def build_registry(result: RunResult, settings: Settings) -> CollectorRegistry:
    registry = CollectorRegistry()
    runs = Counter(
        'manifest_sync_runs_total',
        'Manifest sync runs by outcome',
        ['outcome', 'project_id'],
        registry=registry
    )
    added = Gauge(
        'manifest_sync_added_entries',
        'Manifest entries added by the last run',
        ['project_id'],
        registry=registry
    )
    missing = Gauge(
        'manifest_sync_missing_tokens',
        'Tokens still missing from the manifest at the start of the last run',
        ['project_id'],
        registry=registry
    )
    notified = Gauge(
        'manifest_sync_notified',
        'Whether the last run triggered a downstream refresh',
        ['project_id'],
        registry=registry
    )

    project_id = str(settings.composite_project_id)
    runs.labels(outcome=run_outcome(result), project_id=project_id).inc()
    added.labels(project_id=project_id).set(len(result.added_keys))
    missing.labels(project_id=project_id).set(len(result.missing_keys))
    notified.labels(project_id=project_id).set(1 if result.notified else 0)
    return registry


def push_run_metrics(result: RunResult, settings: Settings) -> bool:
    if not settings.pushgateway_url:
        return False
    registry = build_registry(result, settings)
    try:
        push_to_gateway(settings.pushgateway_url, job=settings.service_name, registry=registry)
    except OSError as exc:
        LOGGER.warning('pushing run metrics to %s failed: %s', settings.pushgateway_url, exc)
        return False
    return True
