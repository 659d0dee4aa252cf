import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, Index, text
from sqlmodel import Field, SQLModel


class CryptoPaymentModel(SQLModel, table=True):
    __tablename__ = "crypto_payments"
    __table_args__ = (
        Index("ix_crypto_payments_user_status", "user_id", "status"),
        # No two confirmed payments may share one on-chain transaction.
        Index(
            "uq_crypto_payments_confirmed_tx_hash",
            "transaction_hash",
            unique=True,
            sqlite_where=text("status = 'confirmed'"),
            postgresql_where=text("status = 'confirmed'"),
        ),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    payment_id: str = Field(nullable=False, unique=True, index=True)
    user_id: uuid.UUID = Field(index=True, nullable=False)
    plan_id: uuid.UUID = Field(nullable=False)
    network: str = Field(nullable=False, index=True)
    token: str = Field(nullable=False)
    # USD basis: plan price at creation, effective USD value once confirmed.
    amount: float = Field(nullable=False)
    wallet_address: str = Field(nullable=False)
    memo: str = Field(nullable=False, index=True)
    transaction_hash: Optional[str] = Field(default=None, nullable=True, index=True)
    status: str = Field(default="pending", nullable=False, index=True)
    expires_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True)
    )
    confirmed_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )

    verified_amount: Optional[float] = Field(default=None, nullable=True)
    verified_from_address: Optional[str] = Field(default=None, nullable=True)
    confirmation_count: int = Field(default=0, nullable=False)

    error_message: Optional[str] = Field(default=None, nullable=True)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
