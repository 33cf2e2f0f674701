from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()

STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_DELIVERED = "delivered"
STATUS_EXPIRED = "expired"

PAYMENT_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED, STATUS_DELIVERED, STATUS_EXPIRED)


def utcnow() -> datetime:
    # Naive UTC: SQLite drops tzinfo on round-trip
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PaymentIntent(Base):
    __tablename__ = "payment_intents"

    id = Column(String(32), primary_key=True)
    product_ref = Column(String, nullable=False)
    buyer_contact = Column(String, nullable=False)
    amount_usd = Column(Numeric(20, 2), nullable=False)
    amount_crypto = Column(Numeric(30, 9), nullable=False)
    asset = Column(String(16), nullable=False)
    chain = Column(String(32), nullable=False, index=True)
    pay_address = Column(String, nullable=False, index=True)
    address_index = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default=STATUS_PENDING, index=True)
    # One external transaction can confirm at most one intent
    observed_tx_ref = Column(String, unique=True, nullable=True)
    delivery_credential = Column(String(64), unique=True, nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    confirmed_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<PaymentIntent {self.id} {self.chain}/{self.asset} {self.status}>"


class Product(Base):
    __tablename__ = "products"

    slug = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    price_usd = Column(Numeric(20, 2), nullable=False)
    file_path = Column(String, nullable=False)
    active = Column(Boolean, nullable=False, default=True)


class AddressCounter(Base):
    __tablename__ = "address_counter"
    __table_args__ = (CheckConstraint("id = 1", name="ck_address_counter_singleton"),)

    id = Column(Integer, primary_key=True)
    next_index = Column(Integer, nullable=False, default=0)
