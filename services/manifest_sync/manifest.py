from __future__ import annotations

import copy
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, Protocol, Sequence

from services.manifest_sync.errors import ManifestInvariantError
from services.manifest_sync.models import DotToken, Manifest, Token

LOGGER = logging.getLogger('manifest_sync.manifest')


class RedemptionSource(Protocol):
    def get_redeemed_dots_for(self, engine_address: str, token_id: int) -> list[int]: ...


class DotLookup(Protocol):
    def get_dot_tokens(self, contract: str, project_id: int, token_ids: Sequence[int]) -> list[DotToken]: ...


def _key_order(key: str) -> tuple[int, int | str]:
    # numeric keys first in numeric order, anything else after in string order
    try:
        return 0, int(key)
    except ValueError:
        return 1, key


def order_manifest(manifest: Manifest) -> Manifest:
    return {key: manifest[key] for key in sorted(manifest, key=_key_order)}


def canonical_json(manifest: Manifest) -> str:
    return json.dumps(order_manifest(manifest), separators=(',', ':'), ensure_ascii=False)


def missing_keys(token_indices: Iterable[int], manifest: Manifest) -> list[str]:
    present = set(manifest.keys())
    keys = {str(index) for index in token_indices}
    return sorted(keys - present, key=_key_order)


@dataclass
class TokenResolution:
    key: str
    token_id: int
    dots: list[DotToken] = field(default_factory=list)

    @property
    def redeemed(self) -> bool:
        return bool(self.dots)


@dataclass
class ManifestDiff:
    added: list[str]
    removed: list[str]
    altered: list[str]

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed or self.altered)

    def ensure_append_only(self) -> None:
        if self.removed or self.altered:
            raise ManifestInvariantError(
                f'candidate manifest drops or rewrites entries removed={self.removed} altered={self.altered}'
            )


def diff_manifests(previous: Manifest, candidate: Manifest) -> ManifestDiff:
    """Structural comparison of two manifests.

    Key order is irrelevant and values compare by content, so a manifest
    re-read from the gateway equals the one that was published.
    """
    added = sorted((key for key in candidate if key not in previous), key=_key_order)
    removed = sorted((key for key in previous if key not in candidate), key=_key_order)
    altered = sorted(
        (key for key in previous if key in candidate and previous[key] != candidate[key]),
        key=_key_order
    )
    return ManifestDiff(added=added, removed=removed, altered=altered)


def fold_resolutions(current: Manifest, resolutions: Iterable[TokenResolution]) -> Manifest:
    """Merges per-token results into a copy of ``current`` in ascending key order.

    Existing entries are never touched and tokens without redeemed dots are
    left out so they stay missing until a later run.
    """
    manifest = copy.deepcopy(current)
    for resolution in sorted(resolutions, key=lambda item: _key_order(item.key)):
        if not resolution.redeemed:
            LOGGER.info('skipping token key=%s token_id=%s no redeemed dots', resolution.key, resolution.token_id)
            continue
        if resolution.key in manifest:
            LOGGER.warning('manifest already has key=%s; keeping existing entry', resolution.key)
            continue
        manifest[resolution.key] = {'dots': [dot.to_json() for dot in resolution.dots]}
    return order_manifest(manifest)


class ManifestBuilder:
    def __init__(
        self,
        *,
        redemptions: RedemptionSource,
        dot_lookup: DotLookup,
        engine_address: str,
        dots_contract_address: str,
        dots_project_id: int,
        max_workers: int = 4
    ) -> None:
        self.redemptions = redemptions
        self.dot_lookup = dot_lookup
        self.engine_address = engine_address
        self.dots_contract_address = dots_contract_address
        self.dots_project_id = dots_project_id
        self.max_workers = max(1, max_workers)

    def resolve_token(self, token: Token) -> TokenResolution:
        dot_ids = self.redemptions.get_redeemed_dots_for(self.engine_address, token.token_id)
        resolution = TokenResolution(key=token.manifest_key, token_id=token.token_id)
        if not dot_ids:
            return resolution

        dots = self.dot_lookup.get_dot_tokens(self.dots_contract_address, self.dots_project_id, dot_ids)
        found = {dot.token_id for dot in dots}
        unindexed = [dot_id for dot_id in dot_ids if dot_id not in found]
        if unindexed:
            LOGGER.warning(
                'dots not indexed yet key=%s token_id=%s dot_ids=%s; retrying next run',
                token.manifest_key,
                token.token_id,
                unindexed
            )
            return resolution

        LOGGER.info('resolved key=%s token_id=%s dots=%s', token.manifest_key, token.token_id, len(dots))
        resolution.dots = dots
        return resolution

    def resolve_all(self, tokens: Sequence[Token]) -> list[TokenResolution]:
        ordered = sorted(tokens, key=lambda token: token.invocation)
        if not ordered:
            return []
        if self.max_workers == 1 or len(ordered) == 1:
            return [self.resolve_token(token) for token in ordered]

        executor = ThreadPoolExecutor(max_workers=min(self.max_workers, len(ordered)))
        try:
            futures = [executor.submit(self.resolve_token, token) for token in ordered]
            # collected in submission order so completion order never leaks into the result
            return [future.result() for future in futures]
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    def build(self, current: Manifest, tokens: Sequence[Token]) -> Manifest:
        resolutions = self.resolve_all(tokens)
        return fold_resolutions(current, resolutions)
