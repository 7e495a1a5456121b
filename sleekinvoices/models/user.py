"""User model."""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func

from sleekinvoices.database import Base
from sleekinvoices.models.base import generate_id


class User(Base):
    """User model - an account owner issuing invoices."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: generate_id("user"))
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    company_name = Column(String, nullable=True)  # Business name shown on invoices
    base_currency = Column(String, nullable=False, default="USD")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
