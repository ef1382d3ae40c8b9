from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from web3 import Web3

from services.manifest_sync.errors import ChainReadError, CommitError

LOGGER = logging.getLogger('manifest_sync.chain')

# Slot 0 of the project's external asset dependencies holds the manifest CID;
# dependency type 0 is IPFS.
DEPENDENCY_SLOT = 0
DEPENDENCY_TYPE_IPFS = 0

MINTER_ABI = [
    {
        'inputs': [
            {'internalType': 'address', 'name': '_coreContract', 'type': 'address'},
            {'internalType': 'uint256', 'name': '_tokenId', 'type': 'uint256'}
        ],
        'name': 'redeemedDotsFor',
        'outputs': [{'internalType': 'uint256[]', 'name': '', 'type': 'uint256[]'}],
        'stateMutability': 'view',
        'type': 'function'
    }
]

ENGINE_ABI = [
    {
        'inputs': [
            {'internalType': 'uint256', 'name': '_projectId', 'type': 'uint256'},
            {'internalType': 'uint256', 'name': '_index', 'type': 'uint256'},
            {'internalType': 'string', 'name': '_cidOrData', 'type': 'string'},
            {'internalType': 'uint8', 'name': '_dependencyType', 'type': 'uint8'}
        ],
        'name': 'updateProjectExternalAssetDependency',
        'outputs': [],
        'stateMutability': 'nonpayable',
        'type': 'function'
    }
]


def _hex_prefixed(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    raw = str(value)
    if raw.startswith('0x'):
        return raw
    return f'0x{raw}'


class ChainStateResolver:
    """Reads ``redeemedDotsFor`` on the dots minter.

    An empty list means the token has not been redeemed yet. Any failure to
    read or decode the view call raises ChainReadError instead.
    """

    def __init__(self, web3: Web3, minter_address: str) -> None:
        self.web3 = web3
        self.minter_address = Web3.to_checksum_address(minter_address)
        self.minter = web3.eth.contract(address=self.minter_address, abi=MINTER_ABI)

    def get_redeemed_dots_for(self, engine_address: str, token_id: int) -> list[int]:
        try:
            dot_ids = self.minter.functions.redeemedDotsFor(
                Web3.to_checksum_address(engine_address),
                int(token_id)
            ).call()
        except Exception as exc:
            raise ChainReadError(f'redeemedDotsFor call failed token_id={token_id}: {exc}') from exc

        if not isinstance(dot_ids, (list, tuple)):
            raise ChainReadError(f'redeemedDotsFor returned {type(dot_ids).__name__} token_id={token_id}')

        LOGGER.debug('redeemed dots token_id=%s dots=%s', token_id, list(dot_ids))
        return [int(dot_id) for dot_id in dot_ids]


@dataclass(frozen=True)
class CommitReceipt:
    tx_hash: str
    block_number: int
    status: int
    gas_used: int


class OnChainCommitter:
    def __init__(self, web3: Web3, engine_address: str, account: Any, receipt_timeout_seconds: int = 300) -> None:
        self.web3 = web3
        self.engine_address = Web3.to_checksum_address(engine_address)
        self.account = account
        self.receipt_timeout_seconds = receipt_timeout_seconds
        self.engine = web3.eth.contract(address=self.engine_address, abi=ENGINE_ABI)

    def commit(self, project_id: int, cid: str) -> CommitReceipt:
        sender = self.account.address
        try:
            tx = self.engine.functions.updateProjectExternalAssetDependency(
                int(project_id),
                DEPENDENCY_SLOT,
                cid,
                DEPENDENCY_TYPE_IPFS
            ).build_transaction(
                {
                    'from': sender,
                    'nonce': self.web3.eth.get_transaction_count(sender, 'pending')
                }
            )
            signed = self.account.sign_transaction(tx)
            tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as exc:
            raise CommitError(f'submitting dependency update failed cid={cid}: {exc}') from exc

        tx_hash_hex = _hex_prefixed(tx_hash)
        LOGGER.info('dependency update submitted project_id=%s cid=%s tx_hash=%s', project_id, cid, tx_hash_hex)

        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout_seconds)
        except Exception as exc:
            raise CommitError(f'dependency update not confirmed tx_hash={tx_hash_hex}: {exc}', tx_hash=tx_hash_hex) from exc

        status = int(receipt.get('status', 0))
        if status != 1:
            raise CommitError(f'dependency update reverted tx_hash={tx_hash_hex} status={status}', tx_hash=tx_hash_hex)

        result = CommitReceipt(
            tx_hash=tx_hash_hex,
            block_number=int(receipt.get('blockNumber', 0)),
            status=status,
            gas_used=int(receipt.get('gasUsed', 0))
        )
        LOGGER.info(
            'dependency update confirmed tx_hash=%s block=%s gas_used=%s',
            result.tx_hash,
            result.block_number,
            result.gas_used
        )
        return result
