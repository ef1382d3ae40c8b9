from __future__ import annotations

import copy
import random
import threading
import time
from dataclasses import replace
from typing import Sequence

from services.manifest_sync.chain import CommitReceipt
from services.manifest_sync.config import Settings
from services.manifest_sync.context import RunContext
from services.manifest_sync.errors import ChainReadError, NotifyError, PublishError
from services.manifest_sync.models import DotToken, Manifest, ProjectInfo, Token

COMPOSITE_CONTRACT = '0x1111111111111111111111111111111111111111'
DOTS_CONTRACT = '0x2222222222222222222222222222222222222222'
MINTER_CONTRACT = '0x3333333333333333333333333333333333333333'

JOB_ENV = {
    'RPC_PROVIDER_URL': 'https://eth-mainnet.g.alchemy.com/v2/',
    'ALCHEMY_API_KEY': 'alchemy-key',
    'SECONDARY_CONTRACT_ADDRESS': COMPOSITE_CONTRACT,
    'SECONDARY_PROJECT_ID': '7',
    'DOTS_CONTRACT_ADDRESS': DOTS_CONTRACT,
    'DOTS_PROJECT_ID': '3',
    'DOTS_MINTER_CONTRACT_ADDRESS': MINTER_CONTRACT,
    'PINATA_API_KEY': 'key',
    'PINATA_SECRET_API_KEY': 'secret',
    'HASURA_GRAPHQL_ENDPOINT': 'https://data.test/v1/graphql',
    'PRIVATE_KEY': '0x' + '11' * 32
}


def make_settings(**overrides) -> Settings:
    settings = Settings(
        service_name='manifest-sync-test',
        indexer_backend='hasura',
        hasura_graphql_url='https://indexer.test/v1/graphql',
        subgraph_url='https://subgraph.test',
        rpc_url='https://rpc.test',
        composite_contract_address=COMPOSITE_CONTRACT,
        composite_project_id=7,
        dots_contract_address=DOTS_CONTRACT,
        dots_project_id=3,
        dots_minter_address=MINTER_CONTRACT,
        private_key='0x' + '11' * 32,
        public_address='',
        pinata_api_key='key',
        pinata_secret_api_key='secret',
        pinata_api_url='https://pin.test/pinning/pinJSONToIPFS',
        ipfs_gateway_url='https://gateway.test/ipfs/',
        page_size=900,
        resolve_concurrency=4,
        http_timeout_seconds=5,
        receipt_timeout_seconds=5,
        notify_enabled=True,
        notify_role='artist',
        auth_domain='r4v3n.art',
        auth_uri='https://r4v3n.art/builder',
        bootstrap_empty_manifest=False,
        pushgateway_url=''
    )
    return replace(settings, **overrides)


def dot_hash(token_id: int) -> str:
    return f'0x{token_id:064x}'


class FakeLedger:
    """Shared world state: redemptions on chain plus the committed manifest pointer."""

    def __init__(self, invocations: int, redemptions: dict[int, list[int]] | None = None) -> None:
        self.invocations = invocations
        self.redemptions = redemptions or {}
        self.pinned: dict[str, Manifest] = {}
        self.committed_cid: str | None = None

    def token_id(self, invocation: int) -> int:
        return 7_000_000 + invocation

    def current_manifest(self) -> Manifest:
        if self.committed_cid is None:
            return {}
        return copy.deepcopy(self.pinned[self.committed_cid])


class FakeIndexer:
    def __init__(self, ledger: FakeLedger, unindexed_dots: set[int] | None = None) -> None:
        self.ledger = ledger
        self.unindexed_dots = unindexed_dots or set()
        self.dot_lookups: list[list[int]] = []

    def get_project_info(self, contract: str, project_id: int) -> ProjectInfo:
        return ProjectInfo(
            invocation_count=self.ledger.invocations,
            manifest=self.ledger.current_manifest(),
            cid=self.ledger.committed_cid
        )

    def get_all_tokens(self, contract: str, project_id: int) -> list[Token]:
        return [
            Token(id=f'{contract.lower()}-{self.ledger.token_id(i)}', token_id=self.ledger.token_id(i), invocation=i)
            for i in range(self.ledger.invocations)
        ]

    def get_dot_tokens(self, contract: str, project_id: int, token_ids: Sequence[int]) -> list[DotToken]:
        self.dot_lookups.append(list(token_ids))
        return [DotToken(token_id=t, hash=dot_hash(t)) for t in token_ids if t not in self.unindexed_dots]


class FakeResolver:
    def __init__(self, ledger: FakeLedger, failing: set[int] | None = None, jitter: bool = False) -> None:
        self.ledger = ledger
        self.failing = failing or set()
        self.jitter = jitter
        self.calls: list[int] = []
        self._lock = threading.Lock()

    def get_redeemed_dots_for(self, engine_address: str, token_id: int) -> list[int]:
        with self._lock:
            self.calls.append(token_id)
        if self.jitter:
            time.sleep(random.uniform(0, 0.02))
        if token_id in self.failing:
            raise ChainReadError(f'rpc unavailable token_id={token_id}')
        invocation = token_id - 7_000_000
        return list(self.ledger.redemptions.get(invocation, []))


class FakeStore:
    def __init__(self, ledger: FakeLedger, fail: bool = False) -> None:
        self.ledger = ledger
        self.fail = fail
        self.published: list[Manifest] = []

    def publish(self, manifest: Manifest) -> str:
        if self.fail:
            raise PublishError('pinning manifest failed: connection reset')
        self.published.append(copy.deepcopy(manifest))
        cid = f'bafy{len(self.ledger.pinned) + 1:04d}'
        self.ledger.pinned[cid] = copy.deepcopy(manifest)
        return cid


class FakeCommitter:
    def __init__(self, ledger: FakeLedger, error: Exception | None = None) -> None:
        self.ledger = ledger
        self.error = error
        self.commits: list[tuple[int, str]] = []

    def commit(self, project_id: int, cid: str) -> CommitReceipt:
        self.commits.append((project_id, cid))
        if self.error is not None:
            raise self.error
        self.ledger.committed_cid = cid
        return CommitReceipt(tx_hash=f'0x{len(self.commits):064x}', block_number=100, status=1, gas_used=52000)


class FakeNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[int] = []

    def notify(self, project_id: int) -> dict:
        self.calls.append(project_id)
        if self.fail:
            raise NotifyError('no auth message returned for address=0xabc')
        return {'__typename': 'UpdateProjectMediaOutput'}


def make_context(
    ledger: FakeLedger,
    *,
    settings: Settings | None = None,
    indexer: FakeIndexer | None = None,
    resolver: FakeResolver | None = None,
    store: FakeStore | None = None,
    committer: FakeCommitter | None = None,
    notifier: FakeNotifier | None = None
) -> RunContext:
    return RunContext(
        settings=settings or make_settings(),
        indexer=indexer or FakeIndexer(ledger),
        resolver=resolver or FakeResolver(ledger),
        store=store or FakeStore(ledger),
        committer=committer or FakeCommitter(ledger),
        notifier=notifier if notifier is not None else FakeNotifier()
    )
