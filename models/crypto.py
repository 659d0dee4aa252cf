from enum import Enum


class CryptoNetwork(str, Enum):
    BEP20 = "BEP20"
    SOL = "SOL"


class CryptoPaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"


# Token received on each network's receiving wallet.
NETWORK_TOKENS = {
    CryptoNetwork.BEP20: "USDT",
    CryptoNetwork.SOL: "SOL",
}

# Forward-only lifecycle. `processing -> processing` covers resubmission after a
# recoverable verification failure (low confirmations, node outage).
ALLOWED_STATUS_TRANSITIONS = {
    CryptoPaymentStatus.PENDING: {
        CryptoPaymentStatus.PROCESSING,
        CryptoPaymentStatus.EXPIRED,
    },
    CryptoPaymentStatus.PROCESSING: {
        CryptoPaymentStatus.PROCESSING,
        CryptoPaymentStatus.CONFIRMED,
        CryptoPaymentStatus.FAILED,
    },
    CryptoPaymentStatus.CONFIRMED: set(),
    CryptoPaymentStatus.FAILED: set(),
    CryptoPaymentStatus.EXPIRED: set(),
}
