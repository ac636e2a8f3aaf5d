"""
EVM Token Registry

Registry implementation for an ERC-721 contract deployed on an
EVM-compatible chain. It uses web3.py for all blockchain interactions.

Reads are plain contract calls. Writes are signed by the operator account
(the ledger's custody wallet) and sent as EIP-1559 transactions, so they
can only be issued on behalf of that account. A write whose receipt does not
arrive in time raises TransactionPendingError with its hash instead of a
plain failure, since it may still be mined.
"""

import asyncio
import logging
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import (
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
    TransactionNotFound,
)

from nftmarket.models.base import ZERO_ADDRESS, normalize_address
from nftmarket.registry.base import (
    BaseTokenRegistry,
    TokenNotFoundError,
    TokenRegistryError,
    TransactionPendingError,
    TransferNotAuthorizedError,
)

logger: logging.Logger = logging.getLogger(__name__)

# Transport failures worth retrying for read-only calls
RETRYABLE_EXCEPTIONS = (ProviderConnectionError, asyncio.TimeoutError)


# ERC-721 ABI plus the marketplace NFT contract's minting extensions
ERC721_ABI: list[dict[str, Any]] = [
    {
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "name": "ownerOf",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "name": "getApproved",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "operator", "type": "address"},
        ],
        "name": "isApprovedForAll",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "name": "tokenURI",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "getTokensOwnedByMe",
        "outputs": [{"name": "", "type": "uint256[]"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "tokenId", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "operator", "type": "address"},
            {"name": "approved", "type": "bool"},
        ],
        "name": "setApprovalForAll",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "tokenId", "type": "uint256"},
        ],
        "name": "transferFrom",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "tokenId", "type": "uint256"},
            {"name": "data", "type": "bytes"},
        ],
        "name": "safeTransferFrom",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "tokenURI", "type": "string"}],
        "name": "mintToken",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    # Events
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "tokenId", "type": "uint256"},
            {"indexed": False, "name": "tokenURI", "type": "string"},
            {"indexed": False, "name": "owner", "type": "address"},
        ],
        "name": "TokenMinted",
        "type": "event",
    },
]


class EVMTokenRegistry(BaseTokenRegistry):
    """
    Token registry for a deployed ERC-721 contract.

    The registry is not connected until initialize() is called.
    """

    def __init__(
        self,
        address: str,
        rpc_url: str,
        operator_private_key: str | None = None,
        abi: list[dict[str, Any]] | None = None,
        receipt_timeout_seconds: float = 120,
    ) -> None:
        """
        Args:
            address: Deployed ERC-721 contract address
            rpc_url: JSON-RPC endpoint of the chain
            operator_private_key: Key of the account writes are signed with
            abi: Contract ABI override (defaults to ERC721_ABI)
            receipt_timeout_seconds: How long to wait for a receipt
        """
        super().__init__(self._checksum(address))
        self._rpc_url = rpc_url
        self._operator_private_key = operator_private_key
        self._abi = abi or ERC721_ABI
        self._receipt_timeout = receipt_timeout_seconds
        self._w3: AsyncWeb3 | None = None
        self._contract: Any = None
        self._operator_account: LocalAccount | None = None

    # ==================== Lifecycle ====================

    async def initialize(self) -> None:
        """Connect to the RPC endpoint and load the operator account."""
        self._w3 = AsyncWeb3(AsyncHTTPProvider(self._rpc_url))

        try:
            chain_id: int = await self._w3.eth.chain_id
            logger.info(f"Token registry {self.address} connected (chain_id: {chain_id})")
        except Exception as e:
            raise TokenRegistryError(f"Failed to connect to {self._rpc_url}: {e}") from e

        self._contract = self._w3.eth.contract(address=self.address, abi=self._abi)

        if self._operator_private_key:
            self._operator_account = Account.from_key(self._operator_private_key)
            logger.info(f"Registry operator account loaded: {self._operator_account.address}")

        self._initialized = True

    async def close(self) -> None:
        if self._w3 and hasattr(self._w3.provider, "disconnect"):
            await self._w3.provider.disconnect()
        self._w3 = None
        self._contract = None
        self._operator_account = None
        self._initialized = False

    @property
    def operator_address(self) -> str | None:
        return self._operator_account.address if self._operator_account else None

    # ==================== Queries ====================

    async def owner_of(self, token_id: int) -> str:
        owner: str = await self._call("ownerOf", token_id, not_found=True)
        return owner

    async def balance_of(self, owner: str) -> int:
        balance: int = await self._call("balanceOf", self._checksum(owner))
        return balance

    async def tokens_of_owner(self, owner: str) -> list[int]:
        # The contract answers for msg.sender, so the call is issued from the owner
        tokens = await self._call("getTokensOwnedByMe", tx_params={"from": self._checksum(owner)})
        return sorted(int(t) for t in tokens)

    async def get_approved(self, token_id: int) -> str:
        approved: str = await self._call("getApproved", token_id, not_found=True)
        return approved or ZERO_ADDRESS

    async def is_approved_for_all(self, owner: str, operator: str) -> bool:
        approved: bool = await self._call(
            "isApprovedForAll", self._checksum(owner), self._checksum(operator)
        )
        return approved

    async def token_uri(self, token_id: int) -> str:
        uri: str = await self._call("tokenURI", token_id, not_found=True)
        return uri

    # ==================== Writes ====================

    async def mint(self, caller: str, token_uri: str) -> int:
        receipt = await self._transact(caller, "mintToken", token_uri)
        minted = self._get_contract().events.TokenMinted().process_receipt(receipt)
        if not minted:
            raise TokenRegistryError("mintToken receipt carries no TokenMinted event")
        token_id = int(minted[0]["args"]["tokenId"])
        logger.info(f"Minted token {token_id} on {self.address}")
        return token_id

    async def approve(self, caller: str, spender: str, token_id: int) -> None:
        await self._transact(caller, "approve", self._checksum(spender), token_id)

    async def set_approval_for_all(self, caller: str, operator: str, approved: bool) -> None:
        await self._transact(caller, "setApprovalForAll", self._checksum(operator), approved)

    async def transfer_from(self, caller: str, from_address: str, to_address: str, token_id: int) -> None:
        await self._transact(
            caller,
            "transferFrom",
            self._checksum(from_address),
            self._checksum(to_address),
            token_id,
        )

    async def safe_transfer_from(
        self,
        caller: str,
        from_address: str,
        to_address: str,
        token_id: int,
        data: bytes = b"",
    ) -> None:
        await self._transact(
            caller,
            "safeTransferFrom",
            self._checksum(from_address),
            self._checksum(to_address),
            token_id,
            data,
        )

    # ==================== Helper Methods ====================

    def _get_w3(self) -> AsyncWeb3:
        if self._w3 is None:
            raise TokenRegistryError(
                f"Token registry {self.address} not initialized. Call initialize() first."
            )
        return self._w3

    def _get_contract(self) -> Any:
        self._get_w3()
        return self._contract

    @staticmethod
    def _checksum(address: str) -> str:
        try:
            return normalize_address(address)
        except ValueError as e:
            raise TokenRegistryError(f"Invalid address: {address!r}") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
        reraise=True,
    )
    async def _read(
        self,
        function_name: str,
        *args: Any,
        tx_params: dict[str, Any] | None = None,
    ) -> Any:
        func: Any = getattr(self._get_contract().functions, function_name)
        if tx_params is None:
            return await func(*args).call()
        return await func(*args).call(tx_params)

    async def _call(
        self,
        function_name: str,
        *args: Any,
        not_found: bool = False,
        tx_params: dict[str, Any] | None = None,
    ) -> Any:
        try:
            return await self._read(function_name, *args, tx_params=tx_params)
        except ContractLogicError as e:
            if not_found:
                raise TokenNotFoundError(f"{function_name}{args} reverted: {e}") from e
            raise TokenRegistryError(f"{function_name}{args} reverted: {e}") from e
        except RETRYABLE_EXCEPTIONS as e:
            logger.error(f"{function_name} on {self.address} failed after retries: {e}")
            raise TokenRegistryError(f"RPC unavailable for {function_name}: {e}") from e

    async def _transact(self, caller: str, function_name: str, *args: Any) -> Any:
        """Sign and send a contract transaction as the operator; return its receipt."""
        w3 = self._get_w3()
        if self._operator_account is None:
            raise TokenRegistryError("No operator account configured")
        operator: LocalAccount = self._operator_account
        if self._checksum(caller) != operator.address:
            raise TransferNotAuthorizedError(
                f"{caller} cannot sign for this registry; only {operator.address} can"
            )

        func: Any = getattr(self._get_contract().functions, function_name)
        try:
            tx: dict[str, Any] = await func(*args).build_transaction({
                "from": operator.address,
                "nonce": await w3.eth.get_transaction_count(operator.address),
                "chainId": await w3.eth.chain_id,
            })
        except ContractLogicError as e:
            # Gas estimation executes the call, so reverts surface here
            raise TransferNotAuthorizedError(f"{function_name} would revert: {e}") from e

        signed: Any = operator.sign_transaction(tx)
        tx_hash = Web3.to_hex(await w3.eth.send_raw_transaction(signed.raw_transaction))
        # Broadcast: from here on a failure may not mean the write is lost
        return await self._confirm(function_name, tx_hash)

    async def wait_for_transaction(self, tx_hash: str) -> None:
        await self._confirm("transaction", tx_hash)

    async def _confirm(self, function_name: str, tx_hash: str) -> Any:
        w3 = self._get_w3()
        try:
            receipt: Any = await w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._receipt_timeout
            )
        except (TimeExhausted, *RETRYABLE_EXCEPTIONS) as e:
            if await self._was_dropped(tx_hash):
                raise TokenRegistryError(f"{function_name} transaction {tx_hash} was dropped") from e
            logger.warning(f"{function_name} transaction {tx_hash} still pending")
            raise TransactionPendingError(
                f"{function_name} not confirmed in time: {tx_hash}", tx_hash
            ) from e

        if receipt["status"] != 1:
            raise TokenRegistryError(f"{function_name} reverted in transaction {tx_hash}")

        logger.info(f"{function_name} confirmed in block {receipt['blockNumber']}")
        return receipt

    async def _was_dropped(self, tx_hash: str) -> bool:
        """True only when the node positively no longer knows the transaction."""
        try:
            await self._get_w3().eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return True
        except RETRYABLE_EXCEPTIONS:
            return False
        return False
