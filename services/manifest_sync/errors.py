from __future__ import annotations


class ManifestSyncError(Exception):
    kind = 'manifest_sync'

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ConfigurationError(ManifestSyncError):
    kind = 'configuration'


class TransientNetworkError(ManifestSyncError):
    kind = 'transient_network'


class MalformedResponseError(ManifestSyncError):
    kind = 'malformed_response'


class PaginationLoopError(MalformedResponseError):
    kind = 'pagination_loop'


class NotFoundError(ManifestSyncError):
    kind = 'not_found'


class ChainReadError(ManifestSyncError):
    kind = 'chain_read'


class PublishError(ManifestSyncError):
    kind = 'publish'


class CommitError(ManifestSyncError):
    kind = 'commit'

    def __init__(self, detail: str, tx_hash: str | None = None) -> None:
        super().__init__(detail)
        self.tx_hash = tx_hash


class NotifyError(ManifestSyncError):
    kind = 'notify'


class ManifestInvariantError(ManifestSyncError):
    kind = 'manifest_invariant'
