import json
import logging
import re
from typing import Any, List, Optional, Tuple

import base58

from services.chain_verification import VerificationFailure, VerificationResult
from services.json_rpc_client import ChainConnectionError, JsonRpcClient
from services.payment_errors import CryptoPaymentNotConfigured
from utils.get_env import env_float, get_chain_rpc_timeout_seconds_env, get_solana_rpc_url_env

logger = logging.getLogger(__name__)

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
MEMO_PROGRAM_IDS = {
    "Memo1UhkJRfHyvLMcVucJwxXeuD728EqVDDwQDxFMNo",
    "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr",
}
LAMPORTS_PER_SOL = 1_000_000_000
MIN_CONFIRMATIONS = 32
AMOUNT_TOLERANCE = 0.001


def _key_to_str(key: Any) -> str:
    if isinstance(key, dict):
        return str(key.get("pubkey") or "")
    return str(key)


def _account_keys(transaction: dict) -> List[str]:
    message = (transaction.get("transaction") or {}).get("message") or {}
    keys = [_key_to_str(key) for key in message.get("accountKeys") or []]
    # v0 transactions append lookup-table accounts after the static keys.
    loaded = (transaction.get("meta") or {}).get("loadedAddresses") or {}
    keys.extend(loaded.get("writable") or [])
    keys.extend(loaded.get("readonly") or [])
    return keys


def _decode_instruction_data(data: Any) -> bytes:
    if not data:
        return b""
    return base58.b58decode(data)


class SolanaVerifier:
    """
    Verifies a native SOL transfer to the receiving wallet.

    Detection prefers the recipient's lamport balance delta and falls back to
    decoding System Program transfer instructions. Slot depth is reported but
    not enforced: a transaction returned at confirmed/finalized commitment is
    trusted.
    """

    def __init__(self, rpc: JsonRpcClient, min_confirmations: int = MIN_CONFIRMATIONS):
        self.rpc = rpc
        self.min_confirmations = min_confirmations

    @classmethod
    def from_env(cls) -> "SolanaVerifier":
        rpc_url = (get_solana_rpc_url_env() or "").strip()
        if not rpc_url:
            raise CryptoPaymentNotConfigured("SOLANA_RPC_URL is not configured.")
        return cls(JsonRpcClient(rpc_url, env_float(get_chain_rpc_timeout_seconds_env(), 20)))

    async def verify(
        self,
        txn_hash: str,
        expected_address: str,
        memo: Optional[str] = None,
        expected_amount: Optional[float] = None,
    ) -> VerificationResult:
        signature = re.sub(r"\s+", "", (txn_hash or "").strip())
        logger.info(f"Fetching Solana transaction {signature}")

        transaction = await self._load_transaction(signature)
        if transaction is None:
            return VerificationResult.failed(
                VerificationFailure.NOT_FOUND, "Transaction not found on blockchain"
            )

        meta = transaction.get("meta") or {}
        if meta.get("err"):
            return VerificationResult.failed(
                VerificationFailure.FAILED_ON_CHAIN,
                f"Transaction failed: {json.dumps(meta['err'])}",
            )

        current_slot = await self._current_slot()
        confirmation_count = max(0, current_slot - int(transaction.get("slot") or 0))
        if confirmation_count < self.min_confirmations:
            logger.warning(
                f"Low confirmations for {signature}: {confirmation_count} "
                f"(recommended: {self.min_confirmations})"
            )

        keys = _account_keys(transaction)
        instructions = ((transaction.get("transaction") or {}).get("message") or {}).get(
            "instructions"
        ) or []

        detected = self._detect_by_balance_delta(keys, meta, expected_address)
        method = "balance delta"
        if detected is None:
            detected = self._detect_by_instruction(keys, instructions, expected_address)
            method = "instruction parse"
        if detected is None:
            return VerificationResult.failed(
                VerificationFailure.TRANSFER_NOT_FOUND,
                "SOL transfer to the payment wallet not found in transaction",
            )

        amount, from_address = detected
        if expected_amount is not None and amount is not None:
            if abs(amount - expected_amount) > AMOUNT_TOLERANCE:
                return VerificationResult.failed(
                    VerificationFailure.AMOUNT_MISMATCH,
                    f"Amount mismatch. Expected: {expected_amount} SOL, Got: {amount} SOL",
                )

        if memo:
            self._check_memo(keys, instructions, memo)

        logger.info(
            f"SOL transfer verified by {method}: {amount} SOL from {from_address or 'unknown'} "
            f"to {expected_address} ({confirmation_count} confirmations)"
        )
        return VerificationResult.success(
            amount, from_address, max(confirmation_count, self.min_confirmations)
        )

    async def _current_slot(self) -> int:
        slot = await self.rpc.call("getSlot", [{"commitment": "confirmed"}])
        try:
            return int(slot)
        except (TypeError, ValueError) as exc:
            raise ChainConnectionError(f"RPC node returned no usable slot: {slot!r}") from exc

    async def _load_transaction(self, signature: str) -> Optional[dict]:
        statuses = await self.rpc.call(
            "getSignatureStatuses", [[signature], {"searchTransactionHistory": True}]
        )
        values = (statuses or {}).get("value") or [None]
        if not values[0]:
            return None

        for commitment in ("finalized", "confirmed"):
            transaction = await self.rpc.call(
                "getTransaction",
                [
                    signature,
                    {
                        "encoding": "json",
                        "commitment": commitment,
                        "maxSupportedTransactionVersion": 0,
                    },
                ],
            )
            if transaction:
                return transaction
        return None

    @staticmethod
    def _detect_by_balance_delta(
        keys: List[str], meta: dict, expected_address: str
    ) -> Optional[Tuple[float, Optional[str]]]:
        pre_balances = meta.get("preBalances")
        post_balances = meta.get("postBalances")
        if not isinstance(pre_balances, list) or not isinstance(post_balances, list):
            return None
        if expected_address not in keys:
            return None

        index = keys.index(expected_address)
        pre = int(pre_balances[index]) if index < len(pre_balances) else 0
        post = int(post_balances[index]) if index < len(post_balances) else 0
        delta_lamports = post - pre
        if delta_lamports <= 0:
            return None

        # Sender is advisory: the first account whose balance went down.
        from_address = None
        for i, (before, after) in enumerate(zip(pre_balances, post_balances)):
            if int(after) < int(before):
                from_address = keys[i] if i < len(keys) else None
                break
        return delta_lamports / LAMPORTS_PER_SOL, from_address

    @staticmethod
    def _detect_by_instruction(
        keys: List[str], instructions: list, expected_address: str
    ) -> Optional[Tuple[Optional[float], Optional[str]]]:
        for instruction in instructions:
            program_index = instruction.get("programIdIndex")
            if program_index is None or program_index >= len(keys):
                continue
            if keys[program_index] != SYSTEM_PROGRAM_ID:
                continue
            accounts = [keys[i] for i in instruction.get("accounts") or [] if i < len(keys)]
            if len(accounts) < 2 or accounts[1] != expected_address:
                continue

            amount = None
            try:
                data = _decode_instruction_data(instruction.get("data"))
            except ValueError:
                data = b""
            if len(data) >= 12:
                lamports = int.from_bytes(data[4:12], "little")
                amount = lamports / LAMPORTS_PER_SOL
            return amount, accounts[0]
        return None

    @staticmethod
    def _check_memo(keys: List[str], instructions: list, memo: str) -> None:
        for instruction in instructions:
            program_index = instruction.get("programIdIndex")
            if program_index is None or program_index >= len(keys):
                continue
            if keys[program_index] not in MEMO_PROGRAM_IDS:
                continue
            try:
                memo_data = _decode_instruction_data(instruction.get("data")).decode(
                    "utf-8", errors="ignore"
                )
            except ValueError:
                memo_data = ""
            if memo not in memo_data:
                logger.warning(f"Memo mismatch. Expected: {memo}, Found: {memo_data[:20]}...")
