from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from services.manifest_sync.context import RunContext
from services.manifest_sync.errors import CommitError, ConfigurationError, ManifestSyncError, NotifyError
from services.manifest_sync.manifest import ManifestBuilder, diff_manifests, missing_keys

LOGGER = logging.getLogger('manifest_sync.pipeline')


@dataclass
class RunResult:
    success: bool
    changed: bool = False
    new_cid: str | None = None
    previous_cid: str | None = None
    orphaned_cid: str | None = None
    tx_hash: str | None = None
    added_keys: list[str] = field(default_factory=list)
    missing_keys: list[str] = field(default_factory=list)
    notified: bool = False
    error: str | None = None
    error_kind: str | None = None

    @classmethod
    def failed(cls, exc: ManifestSyncError, **kwargs: Any) -> RunResult:
        return cls(success=False, error=exc.detail, error_kind=exc.kind, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            'success': self.success,
            'changed': self.changed,
            'addedKeys': list(self.added_keys),
            'missingKeys': list(self.missing_keys),
            'notified': self.notified
        }
        optional = {
            'newCid': self.new_cid,
            'previousCid': self.previous_cid,
            'orphanedCid': self.orphaned_cid,
            'txHash': self.tx_hash,
            'error': self.error,
            'errorKind': self.error_kind
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        return payload


class ManifestSync:
    """Reconciles the composite manifest with on-chain redemptions.

    Stages run strictly in order: discover missing tokens, build the candidate,
    diff, publish, commit, notify. Every stage before notify aborts the run on
    error; notify failures are logged and leave the result successful.
    """

    def __init__(self, context: RunContext) -> None:
        self.context = context
        self.settings = context.settings
        self.builder = ManifestBuilder(
            redemptions=context.resolver,
            dot_lookup=context.indexer,
            engine_address=self.settings.composite_contract_address,
            dots_contract_address=self.settings.dots_contract_address,
            dots_project_id=self.settings.dots_project_id,
            max_workers=self.settings.resolve_concurrency
        )

    def run(self, *, dry_run: bool = False) -> RunResult:
        contract = self.settings.composite_contract_address
        project_id = self.settings.composite_project_id
        LOGGER.info('manifest sync starting contract=%s project_id=%s dry_run=%s', contract, project_id, dry_run)

        try:
            project = self.context.indexer.get_project_info(contract, project_id)
            tokens = self.context.indexer.get_all_tokens(contract, project_id)
        except ManifestSyncError as exc:
            LOGGER.error('loading project state failed kind=%s: %s', exc.kind, exc.detail)
            return RunResult.failed(exc)

        indices = {token.invocation for token in tokens}
        unknown = sorted(key for key in project.manifest if not key.isdigit() or int(key) not in indices)
        if unknown:
            LOGGER.warning('manifest has keys without indexed tokens keys=%s', unknown)

        missing = missing_keys(indices, project.manifest)
        LOGGER.info(
            'sync state invocations=%s indexed=%s manifest_entries=%s missing=%s',
            project.invocation_count,
            len(tokens),
            len(project.manifest),
            len(missing)
        )
        result = RunResult(success=True, previous_cid=project.cid, missing_keys=missing)
        if not missing:
            LOGGER.info('no missing tokens; nothing to do')
            return result

        missing_set = set(missing)
        pending = [token for token in tokens if token.manifest_key in missing_set]

        try:
            candidate = self.builder.build(project.manifest, pending)
            diff = diff_manifests(project.manifest, candidate)
            diff.ensure_append_only()
        except ManifestSyncError as exc:
            LOGGER.error('building manifest failed kind=%s: %s', exc.kind, exc.detail)
            return RunResult.failed(exc, previous_cid=project.cid, missing_keys=missing)

        if not diff.changed:
            LOGGER.info('no changes detected in manifest; skipping publish')
            return result

        result.changed = True
        result.added_keys = diff.added
        LOGGER.info('manifest changed added=%s', diff.added)
        if dry_run:
            LOGGER.info('dry run; skipping publish, commit and notify')
            return result

        committer = self.context.committer
        if committer is None:
            exc = ConfigurationError('PRIVATE_KEY is required to commit a manifest update')
            return RunResult.failed(exc, changed=True, previous_cid=project.cid, added_keys=diff.added, missing_keys=missing)

        try:
            cid = self.context.store.publish(candidate)
        except ManifestSyncError as exc:
            LOGGER.error('publishing manifest failed kind=%s: %s', exc.kind, exc.detail)
            return RunResult.failed(exc, changed=True, previous_cid=project.cid, added_keys=diff.added, missing_keys=missing)

        try:
            receipt = committer.commit(project_id, cid)
        except ManifestSyncError as exc:
            LOGGER.error('committing cid=%s failed kind=%s: %s; pin is orphaned', cid, exc.kind, exc.detail)
            return RunResult.failed(
                exc,
                changed=True,
                previous_cid=project.cid,
                orphaned_cid=cid,
                tx_hash=exc.tx_hash if isinstance(exc, CommitError) else None,
                added_keys=diff.added,
                missing_keys=missing
            )

        result.new_cid = cid
        result.tx_hash = receipt.tx_hash
        LOGGER.info('manifest committed cid=%s tx_hash=%s', cid, receipt.tx_hash)

        result.notified = self._notify(project_id)
        return result

    def notify_only(self) -> RunResult:
        """Re-triggers the downstream refresh without touching the manifest."""
        project_id = self.settings.composite_project_id
        if self.context.notifier is None:
            exc = ConfigurationError('notifier is not configured (needs PRIVATE_KEY and NOTIFY_ENABLED)')
            return RunResult.failed(exc)
        try:
            self.context.notifier.notify(project_id)
        except NotifyError as exc:
            LOGGER.error('refresh failed project_id=%s: %s', project_id, exc.detail)
            return RunResult.failed(exc)
        return RunResult(success=True, notified=True)

    def _notify(self, project_id: int) -> bool:
        notifier = self.context.notifier
        if notifier is None:
            LOGGER.info('notifier disabled; skipping refresh')
            return False
        try:
            notifier.notify(project_id)
        except NotifyError as exc:
            LOGGER.warning('refresh failed after commit project_id=%s: %s', project_id, exc.detail)
            return False
        return True
