from datetime import timedelta
from decimal import Decimal

import pytest

from paywatch.ledger.database import Database
from paywatch.ledger.models import PaymentIntent, utcnow
from paywatch.ledger.store import PaymentLedger


@pytest.fixture
def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'payments.db'}")
    database.init_schema()
    yield database
    database.dispose()


@pytest.fixture
def ledger(db):
    return PaymentLedger(db)


@pytest.fixture
def product(ledger, tmp_path):
    artifact = tmp_path / "ebook.pdf"
    artifact.write_bytes(b"%PDF-1.4 fake ebook")
    return ledger.upsert_product(
        slug="ebook",
        name="The Ebook",
        price_usd=Decimal("24"),
        file_path=str(artifact),
        description="A test product",
    )


@pytest.fixture
def make_intent(ledger, product):
    """Factory for pending intents with sensible defaults."""

    def _make(
        amount_crypto="24",
        asset="USDC",
        chain="base",
        pay_address="0x00000000000000000000000000000000000000A5",
        address_index=5,
        amount_usd="24",
        age=None,
    ):
        intent = ledger.create_intent(
            product_ref=product.slug,
            buyer_contact="buyer@example.com",
            amount_usd=Decimal(amount_usd),
            amount_crypto=Decimal(amount_crypto),
            asset=asset,
            chain=chain,
            pay_address=pay_address,
            address_index=address_index,
        )
        if age is not None:
            backdate(ledger, intent.id, age)
        return ledger.get_intent(intent.id)

    return _make


def backdate(ledger, intent_id, age: timedelta):
    with ledger.db.transaction() as session:
        session.get(PaymentIntent, intent_id).created_at = utcnow() - age
