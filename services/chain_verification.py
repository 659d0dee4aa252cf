"""
Shared types for on-chain payment verification.

Each supported network maps to one verifier implementing `ChainVerifier`.
Expected business outcomes (not found, failed, too few confirmations,
wrong recipient) come back as a `VerificationResult`. Node problems raise
from the RPC client: `ChainConnectionError` for transport failures and
`JsonRpcResponseError` for error objects the node returns.
"""

import re
from enum import Enum
from functools import lru_cache
from typing import Dict, Optional, Protocol

from pydantic import BaseModel

from models.crypto import CryptoNetwork
from services.payment_errors import InvalidPaymentRequest
from utils.get_env import get_bsc_rpc_url_env, get_solana_rpc_url_env


class VerificationFailure(str, Enum):
    NOT_FOUND = "not_found"
    FAILED_ON_CHAIN = "failed_on_chain"
    INSUFFICIENT_CONFIRMATIONS = "insufficient_confirmations"
    RECIPIENT_MISMATCH = "recipient_mismatch"
    TRANSFER_NOT_FOUND = "transfer_not_found"
    AMOUNT_TOO_SMALL = "amount_too_small"
    AMOUNT_MISMATCH = "amount_mismatch"


RETRYABLE_FAILURES = {VerificationFailure.INSUFFICIENT_CONFIRMATIONS}


class VerificationResult(BaseModel):
    verified: bool
    amount: Optional[float] = None
    from_address: Optional[str] = None
    confirmation_count: Optional[int] = None
    error: Optional[str] = None
    failure: Optional[VerificationFailure] = None

    @property
    def retryable(self) -> bool:
        return self.failure in RETRYABLE_FAILURES

    @classmethod
    def success(
        cls, amount: Optional[float], from_address: Optional[str], confirmation_count: int
    ) -> "VerificationResult":
        return cls(
            verified=True,
            amount=amount,
            from_address=from_address,
            confirmation_count=confirmation_count,
        )

    @classmethod
    def failed(cls, failure: VerificationFailure, error: str) -> "VerificationResult":
        return cls(verified=False, failure=failure, error=error)


class ChainVerifier(Protocol):
    async def verify(
        self, txn_hash: str, expected_address: str, memo: Optional[str] = None
    ) -> VerificationResult:
        ...


_EVM_TX_HASH_RE = re.compile(r"^0x[0-9a-f]{64}$")
_SOLANA_SIGNATURE_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{64,88}$")


def parse_network(raw_network: str) -> CryptoNetwork:
    try:
        return CryptoNetwork((raw_network or "").strip().upper())
    except ValueError:
        supported = " or ".join(network.value for network in CryptoNetwork)
        raise InvalidPaymentRequest(f"Invalid network. Must be {supported}")


def normalize_transaction_hash(network: CryptoNetwork, raw_hash: str) -> str:
    """Canonical form used for storage and every duplicate-hash comparison."""
    compact = re.sub(r"\s+", "", raw_hash or "")
    if network == CryptoNetwork.BEP20:
        normalized = compact.lower()
        if not normalized.startswith("0x"):
            normalized = "0x" + normalized
        if not _EVM_TX_HASH_RE.match(normalized):
            raise InvalidPaymentRequest("Invalid BEP20 transaction hash.")
        return normalized
    if not _SOLANA_SIGNATURE_RE.match(compact):
        raise InvalidPaymentRequest("Invalid Solana transaction signature.")
    return compact


@lru_cache
def get_chain_verifiers() -> Dict[CryptoNetwork, ChainVerifier]:
    """Verifiers for every network whose RPC endpoint is configured."""
    # Imported here so the verifiers can depend on the types above.
    from services.bep20_verifier import Bep20Verifier
    from services.solana_verifier import SolanaVerifier

    verifiers: Dict[CryptoNetwork, ChainVerifier] = {}
    if (get_bsc_rpc_url_env() or "").strip():
        verifiers[CryptoNetwork.BEP20] = Bep20Verifier.from_env()
    if (get_solana_rpc_url_env() or "").strip():
        verifiers[CryptoNetwork.SOL] = SolanaVerifier.from_env()
    return verifiers
