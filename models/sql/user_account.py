import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


DEFAULT_AVAILABLE_CREDITS = 40


class UserAccountModel(SQLModel, table=True):
    __tablename__ = "user_accounts"

    id: uuid.UUID = Field(primary_key=True)
    available_credits: int = Field(default=DEFAULT_AVAILABLE_CREDITS, nullable=False)
    total_spent: float = Field(default=0.0, nullable=False)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
