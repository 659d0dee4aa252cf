import logging
from decimal import Decimal
from typing import Any, Optional

from services.chain_verification import VerificationFailure, VerificationResult
from services.json_rpc_client import ChainConnectionError, JsonRpcClient, JsonRpcResponseError
from services.payment_errors import CryptoPaymentNotConfigured
from utils.get_env import (
    env_float,
    get_bsc_rpc_url_env,
    get_bsc_usdt_contract_env,
    get_chain_rpc_timeout_seconds_env,
)

logger = logging.getLogger(__name__)

USDT_BSC_CONTRACT = "0x55d398326f99059fF775485246999027B3197955"

# keccak256("Transfer(address,address,uint256)")
TRANSFER_EVENT_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
DECIMALS_SELECTOR = "0x313ce567"
DEFAULT_TOKEN_DECIMALS = 18
MIN_CONFIRMATIONS = 3
MIN_TRANSFER_AMOUNT = Decimal("0.01")
# "0x" + 4-byte selector + two 32-byte arguments of transfer(address,uint256).
TRANSFER_CALLDATA_LENGTH = 138


def _hex_to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(str(value), 16)


def _topic_to_address(topic: str) -> str:
    return "0x" + topic[-40:].lower()


class Bep20Verifier:
    """
    Verifies a USDT transfer on BNB Smart Chain from its receipt's Transfer log.

    The amount is discovered, not dictated: any transfer above the dust floor to
    the expected wallet verifies, and credits are computed from what arrived.
    """

    def __init__(
        self,
        rpc: JsonRpcClient,
        token_contract: str = USDT_BSC_CONTRACT,
        token_symbol: str = "USDT",
        min_confirmations: int = MIN_CONFIRMATIONS,
    ):
        self.rpc = rpc
        self.token_contract = token_contract.lower()
        self.token_symbol = token_symbol
        self.min_confirmations = min_confirmations

    @classmethod
    def from_env(cls) -> "Bep20Verifier":
        rpc_url = (get_bsc_rpc_url_env() or "").strip()
        if not rpc_url:
            raise CryptoPaymentNotConfigured("BSC_RPC_URL is not configured.")
        rpc = JsonRpcClient(rpc_url, env_float(get_chain_rpc_timeout_seconds_env(), 20))
        contract = (get_bsc_usdt_contract_env() or "").strip() or USDT_BSC_CONTRACT
        return cls(rpc, token_contract=contract)

    async def verify(
        self, txn_hash: str, expected_address: str, memo: Optional[str] = None
    ) -> VerificationResult:
        logger.info(f"Fetching BSC receipt for {txn_hash}")
        receipt = await self.rpc.call("eth_getTransactionReceipt", [txn_hash])

        if not receipt:
            return VerificationResult.failed(
                VerificationFailure.NOT_FOUND, "Transaction not found on blockchain"
            )
        if _hex_to_int(receipt.get("status", "0x0")) != 1:
            return VerificationResult.failed(
                VerificationFailure.FAILED_ON_CHAIN, "Transaction failed on blockchain"
            )

        current_block = await self._head_block()
        confirmation_count = current_block - _hex_to_int(receipt["blockNumber"])
        logger.info(f"Transaction {txn_hash} has {confirmation_count} confirmations")
        if confirmation_count < self.min_confirmations:
            return VerificationResult.failed(
                VerificationFailure.INSUFFICIENT_CONFIRMATIONS,
                f"Transaction needs at least {self.min_confirmations} confirmations. "
                f"Current: {confirmation_count}",
            )

        if memo:
            await self._check_memo(txn_hash, memo)

        transfer_log = self._find_transfer_log(receipt.get("logs") or [])
        if transfer_log is None:
            return VerificationResult.failed(
                VerificationFailure.TRANSFER_NOT_FOUND,
                f"{self.token_symbol} Transfer event not found in transaction logs",
            )

        topics = transfer_log["topics"]
        from_address = _topic_to_address(topics[1])
        to_address = _topic_to_address(topics[2])
        if to_address != expected_address.strip().lower():
            return VerificationResult.failed(
                VerificationFailure.RECIPIENT_MISMATCH,
                f"Recipient address mismatch. Expected: {expected_address}, Got: {to_address}",
            )

        decimals = await self._token_decimals()
        raw_value = _hex_to_int(transfer_log.get("data") or "0x0")
        amount = Decimal(raw_value) / (Decimal(10) ** decimals)
        if amount < MIN_TRANSFER_AMOUNT:
            return VerificationResult.failed(
                VerificationFailure.AMOUNT_TOO_SMALL,
                f"Amount too small. Minimum: {MIN_TRANSFER_AMOUNT} {self.token_symbol}, "
                f"Got: {amount} {self.token_symbol}",
            )

        logger.info(
            f"BEP20 transfer verified: {amount} {self.token_symbol} from {from_address} "
            f"to {to_address} ({confirmation_count} confirmations)"
        )
        return VerificationResult.success(float(amount), from_address, confirmation_count)

    def _find_transfer_log(self, logs: list) -> Optional[dict]:
        for log in logs:
            topics = log.get("topics") or []
            if (log.get("address") or "").lower() != self.token_contract:
                continue
            if len(topics) < 3 or topics[0].lower() != TRANSFER_EVENT_TOPIC:
                continue
            return log
        return None

    async def _head_block(self) -> int:
        head = await self.rpc.call("eth_blockNumber", [])
        try:
            return _hex_to_int(head)
        except (TypeError, ValueError) as exc:
            raise ChainConnectionError(f"RPC node returned no usable block number: {head!r}") from exc

    async def _token_decimals(self) -> int:
        try:
            result = await self.rpc.call(
                "eth_call", [{"to": self.token_contract, "data": DECIMALS_SELECTOR}, "latest"]
            )
            return _hex_to_int(result)
        except (ChainConnectionError, JsonRpcResponseError, TypeError, ValueError) as exc:
            logger.warning(
                f"Could not read token decimals from {self.token_contract} ({exc}), "
                f"using default {DEFAULT_TOKEN_DECIMALS}"
            )
            return DEFAULT_TOKEN_DECIMALS

    async def _check_memo(self, txn_hash: str, memo: str) -> None:
        # Advisory only: the memo helps humans reconcile, it never blocks verification.
        try:
            tx = await self.rpc.call("eth_getTransactionByHash", [txn_hash])
        except (ChainConnectionError, JsonRpcResponseError) as exc:
            logger.warning(f"Could not load transaction input for memo check: {exc}")
            return
        input_data = ((tx or {}).get("input") or "")
        if len(input_data) <= TRANSFER_CALLDATA_LENGTH:
            return
        suffix = input_data[TRANSFER_CALLDATA_LENGTH:]
        try:
            decoded = bytes.fromhex(suffix).decode("utf-8", errors="ignore")
        except ValueError as exc:
            logger.warning(f"Could not parse memo from transaction data: {exc}")
            return
        if memo not in decoded:
            logger.warning(f"Memo mismatch. Expected: {memo}, Found in data: {decoded[:20]}...")
