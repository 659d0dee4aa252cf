import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, Index, text
from sqlmodel import Field, SQLModel


class LedgerTransactionModel(SQLModel, table=True):
    """
    Immutable settlement record: one row per purchase that granted credits.

    At most one row may reference a given on-chain transaction hash. The
    partial unique index is the authoritative double-spend guard; card
    settlements leave the crypto columns empty and are not constrained.
    """

    __tablename__ = "ledger_transactions"
    __table_args__ = (
        Index("ix_ledger_transactions_user_created", "user_id", "created_at"),
        Index(
            "uq_ledger_crypto_tx_hash",
            "crypto_transaction_hash",
            unique=True,
            sqlite_where=text("crypto_transaction_hash IS NOT NULL"),
            postgresql_where=text("crypto_transaction_hash IS NOT NULL"),
        ),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True, nullable=False)
    # Minor units (cents).
    amount: int = Field(nullable=False)
    currency: str = Field(default="USD", nullable=False)
    quota_amount: int = Field(nullable=False)
    status: str = Field(default="succeeded", nullable=False, index=True)
    payment_method: str = Field(default="crypto", nullable=False)
    description: str = Field(nullable=False)

    crypto_transaction_hash: Optional[str] = Field(default=None, nullable=True)
    crypto_network: Optional[str] = Field(default=None, nullable=True)
    crypto_token: Optional[str] = Field(default=None, nullable=True)
    crypto_payment_id: Optional[str] = Field(default=None, nullable=True, index=True)
    plan_id: Optional[uuid.UUID] = Field(default=None, nullable=True)
    plan_name: Optional[str] = Field(default=None, nullable=True)
    confirmation_count: int = Field(default=0, nullable=False)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
