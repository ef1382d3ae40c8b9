from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

import httpx
from eth_account import Account
from web3 import Web3

from services.manifest_sync.chain import ChainStateResolver, OnChainCommitter
from services.manifest_sync.config import Settings
from services.manifest_sync.graphql import GraphQLClient
from services.manifest_sync.indexer_client import INDEXER_BACKENDS, IndexerClient
from services.manifest_sync.notifier import RefreshNotifier
from services.manifest_sync.publisher import IpfsContentStore


@dataclass
class RunContext:
    """Collaborators for a single run, built once and handed to the pipeline."""

    settings: Settings
    indexer: IndexerClient
    resolver: ChainStateResolver
    store: IpfsContentStore
    committer: OnChainCommitter | None
    notifier: RefreshNotifier | None
    _closers: list[Callable[[], Any]] = field(default_factory=list, repr=False)

    def close(self) -> None:
        while self._closers:
            self._closers.pop()()

    def __enter__(self) -> RunContext:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def build_context(settings: Settings) -> RunContext:
    http = httpx.Client(timeout=settings.http_timeout_seconds)
    web3 = Web3(Web3.HTTPProvider(settings.rpc_url, request_kwargs={'timeout': settings.http_timeout_seconds}))

    store = IpfsContentStore(
        http,
        gateway_url=settings.ipfs_gateway_url,
        pin_url=settings.pinata_api_url,
        api_key=settings.pinata_api_key,
        secret_api_key=settings.pinata_secret_api_key,
        pin_name=f'{settings.composite_contract_address.lower()}-{settings.composite_project_id}-manifest'
    )
    indexer_cls = INDEXER_BACKENDS[settings.indexer_backend]
    indexer = indexer_cls(
        GraphQLClient(settings.indexer_url, http),
        store,
        page_size=settings.page_size,
        bootstrap_empty_manifest=settings.bootstrap_empty_manifest
    )
    resolver = ChainStateResolver(web3, settings.dots_minter_address)

    committer: OnChainCommitter | None = None
    notifier: RefreshNotifier | None = None
    if settings.private_key:
        account = Account.from_key(settings.private_key)
        committer = OnChainCommitter(
            web3,
            settings.composite_contract_address,
            account,
            receipt_timeout_seconds=settings.receipt_timeout_seconds
        )
        if settings.notify_enabled:
            notifier = RefreshNotifier(
                GraphQLClient(settings.hasura_graphql_url, http),
                private_key=settings.private_key,
                public_address=settings.public_address,
                domain=settings.auth_domain,
                uri=settings.auth_uri,
                role=settings.notify_role
            )

    return RunContext(
        settings=settings,
        indexer=indexer,
        resolver=resolver,
        store=store,
        committer=committer,
        notifier=notifier,
        _closers=[http.close]
    )
