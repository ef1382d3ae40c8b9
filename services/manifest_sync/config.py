from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Literal

from eth_account import Account
from web3 import Web3

from services.manifest_sync.errors import ConfigurationError

DEFAULT_PAGE_SIZE = 900


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {'1', 'true', 'yes', 'y', 'on'}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, '').strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f'{name} must be an integer, got {raw!r}') from exc


def _env_str(name: str, default: str = '') -> str:
    return os.getenv(name, default).strip()


def _rpc_url() -> str:
    base = _env_str('RPC_PROVIDER_URL')
    api_key = _env_str('ALCHEMY_API_KEY') or _env_str('ALCHEMY_KEY')
    if base and api_key:
        return f"{base.rstrip('/')}/{api_key}"
    return base


@dataclass(frozen=True)
class Settings:
    service_name: str
    indexer_backend: Literal['hasura', 'subgraph']
    hasura_graphql_url: str
    subgraph_url: str
    rpc_url: str
    composite_contract_address: str
    composite_project_id: int
    dots_contract_address: str
    dots_project_id: int
    dots_minter_address: str
    private_key: str
    public_address: str
    pinata_api_key: str
    pinata_secret_api_key: str
    pinata_api_url: str
    ipfs_gateway_url: str
    page_size: int
    resolve_concurrency: int
    http_timeout_seconds: int
    receipt_timeout_seconds: int
    notify_enabled: bool
    notify_role: str
    auth_domain: str
    auth_uri: str
    bootstrap_empty_manifest: bool
    pushgateway_url: str

    @property
    def indexer_url(self) -> str:
        if self.indexer_backend == 'subgraph':
            return self.subgraph_url
        return self.hasura_graphql_url

    def validate(self, *, require_signer: bool = True) -> None:
        required = {
            'RPC_PROVIDER_URL': self.rpc_url,
            'SECONDARY_CONTRACT_ADDRESS': self.composite_contract_address,
            'DOTS_CONTRACT_ADDRESS': self.dots_contract_address,
            'DOTS_MINTER_CONTRACT_ADDRESS': self.dots_minter_address,
            'PINATA_API_KEY': self.pinata_api_key,
            'PINATA_SECRET_API_KEY': self.pinata_secret_api_key,
        }
        if self.indexer_backend == 'subgraph':
            required['AB_GRAPH_ENDPOINT'] = self.subgraph_url
        else:
            required['HASURA_GRAPHQL_ENDPOINT'] = self.hasura_graphql_url
        if require_signer:
            required['PRIVATE_KEY'] = self.private_key
        if self.notify_enabled:
            required['HASURA_GRAPHQL_ENDPOINT'] = self.hasura_graphql_url

        missing = sorted(name for name, value in required.items() if not value)
        if missing:
            raise ConfigurationError(f"missing required settings: {', '.join(missing)}")

        addresses = {
            'SECONDARY_CONTRACT_ADDRESS': self.composite_contract_address,
            'DOTS_CONTRACT_ADDRESS': self.dots_contract_address,
            'DOTS_MINTER_CONTRACT_ADDRESS': self.dots_minter_address,
            'PUBLIC_ADDRESS': self.public_address
        }
        invalid = sorted(name for name, value in addresses.items() if value and not Web3.is_address(value))
        if invalid:
            raise ConfigurationError(f"not valid addresses: {', '.join(invalid)}")
        if self.private_key:
            try:
                Account.from_key(self.private_key)
            except Exception as exc:
                raise ConfigurationError(f'PRIVATE_KEY is not a valid signing key: {exc.__class__.__name__}') from exc
        if self.page_size <= 0:
            raise ConfigurationError('INDEXER_PAGE_SIZE must be > 0')
        if self.resolve_concurrency <= 0:
            raise ConfigurationError('RESOLVE_CONCURRENCY must be > 0')


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    backend = _env_str('INDEXER_BACKEND', 'hasura').lower()
    if backend not in {'hasura', 'subgraph'}:
        raise ConfigurationError(f'INDEXER_BACKEND must be hasura or subgraph, got {backend!r}')

    return Settings(
        service_name=_env_str('SERVICE_NAME', 'manifest-sync'),
        indexer_backend=backend,  # type: ignore[arg-type]
        hasura_graphql_url=_env_str('HASURA_GRAPHQL_ENDPOINT'),
        subgraph_url=_env_str('AB_GRAPH_ENDPOINT'),
        rpc_url=_rpc_url(),
        composite_contract_address=_env_str('SECONDARY_CONTRACT_ADDRESS'),
        composite_project_id=_env_int('SECONDARY_PROJECT_ID', 0),
        dots_contract_address=_env_str('DOTS_CONTRACT_ADDRESS'),
        dots_project_id=_env_int('DOTS_PROJECT_ID', 0),
        dots_minter_address=_env_str('DOTS_MINTER_CONTRACT_ADDRESS'),
        private_key=_env_str('PRIVATE_KEY'),
        public_address=_env_str('PUBLIC_ADDRESS'),
        pinata_api_key=_env_str('PINATA_API_KEY'),
        pinata_secret_api_key=_env_str('PINATA_SECRET_API_KEY'),
        pinata_api_url=_env_str('PINATA_API_URL', 'https://api.pinata.cloud/pinning/pinJSONToIPFS'),
        ipfs_gateway_url=_env_str('IPFS_GATEWAY_URL', 'https://gateway.pinata.cloud/ipfs/'),
        page_size=_env_int('INDEXER_PAGE_SIZE', DEFAULT_PAGE_SIZE),
        resolve_concurrency=_env_int('RESOLVE_CONCURRENCY', 4),
        http_timeout_seconds=_env_int('HTTP_TIMEOUT_SECONDS', 30),
        receipt_timeout_seconds=_env_int('RECEIPT_TIMEOUT_SECONDS', 300),
        notify_enabled=_env_bool('NOTIFY_ENABLED', True),
        notify_role=_env_str('NOTIFY_ROLE', 'artist'),
        auth_domain=_env_str('AUTH_DOMAIN', 'r4v3n.art'),
        auth_uri=_env_str('AUTH_URI', 'https://r4v3n.art/builder'),
        bootstrap_empty_manifest=_env_bool('BOOTSTRAP_EMPTY_MANIFEST', False),
        pushgateway_url=_env_str('PROMETHEUS_PUSHGATEWAY_URL')
    )
