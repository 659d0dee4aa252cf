import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


class PaymentPlanModel(SQLModel, table=True):
    __tablename__ = "payment_plans"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(nullable=False, index=True)
    description: str = Field(default="", nullable=False)
    quota_amount: int = Field(nullable=False)
    # USD, major units.
    price: float = Field(nullable=False)
    currency: str = Field(default="USD", nullable=False)
    is_active: bool = Field(default=True, nullable=False, index=True)
    sort_order: int = Field(default=0, nullable=False)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
