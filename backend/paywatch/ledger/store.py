"""
PaymentLedger - the authoritative record of payment intents.

State machine:
    pending -> confirmed -> delivered
    pending -> expired

Every transition is a single conditional UPDATE guarded by the status it
leaves, so racing writers (two observations of one transaction, a monitor and
the expiry sweep) can only ever apply the first winning transition.
"""

import json
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from paywatch.ledger.database import Database
from paywatch.ledger.models import (
    STATUS_CONFIRMED,
    STATUS_DELIVERED,
    STATUS_EXPIRED,
    STATUS_PENDING,
    PaymentIntent,
    Product,
    utcnow,
)

logger = logging.getLogger(__name__)

CREDENTIAL_BYTES = 32


def new_credential() -> str:
    """High-entropy single-purpose token authorising artifact retrieval."""
    return secrets.token_hex(CREDENTIAL_BYTES)


@dataclass
class Confirmation:
    """Outcome of a confirm_intent call."""

    intent_id: str
    applied: bool  # True only for the call that performed pending -> confirmed
    status: Optional[str]  # status after the call, None if the intent does not exist
    credential: Optional[str] = None
    tx_ref: Optional[str] = None


class PaymentLedger:
    """Payment intents, products and their lifecycle transitions."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # --- Intents -------------------------------------------------------------

    def create_intent(
        self,
        product_ref: str,
        buyer_contact: str,
        amount_usd: Decimal,
        amount_crypto: Decimal,
        asset: str,
        chain: str,
        pay_address: str,
        address_index: int,
    ) -> PaymentIntent:
        if amount_usd <= 0 or amount_crypto <= 0:
            raise ValueError(f"Intent amounts must be positive: usd={amount_usd} crypto={amount_crypto}")

        intent = PaymentIntent(
            id=uuid.uuid4().hex,
            product_ref=product_ref,
            buyer_contact=buyer_contact,
            amount_usd=Decimal(amount_usd),
            amount_crypto=Decimal(amount_crypto),
            asset=asset,
            chain=chain,
            pay_address=pay_address,
            address_index=address_index,
            status=STATUS_PENDING,
            created_at=utcnow(),
        )
        with self.db.transaction() as session:
            session.add(intent)
        logger.info(
            f"Intent {intent.id} created: {product_ref} ${amount_usd} = {amount_crypto} {asset} "
            f"on {chain} -> {pay_address}"
        )
        return intent

    def get_intent(self, intent_id: str) -> Optional[PaymentIntent]:
        with self.db.session() as session:
            return session.get(PaymentIntent, intent_id)

    def get_intent_by_credential(self, credential: str) -> Optional[PaymentIntent]:
        """Only confirmed or delivered intents can be redeemed."""
        with self.db.session() as session:
            return session.scalar(
                select(PaymentIntent).where(
                    PaymentIntent.delivery_credential == credential,
                    PaymentIntent.status.in_((STATUS_CONFIRMED, STATUS_DELIVERED)),
                )
            )

    def get_pending_intents(self, chain: Optional[str] = None, asset: Optional[str] = None) -> List[PaymentIntent]:
        """Pending intents, oldest first, optionally scoped to a chain and asset."""
        query = select(PaymentIntent).where(PaymentIntent.status == STATUS_PENDING)
        if chain is not None:
            query = query.where(PaymentIntent.chain == chain)
        if asset is not None:
            query = query.where(PaymentIntent.asset == asset)
        query = query.order_by(PaymentIntent.created_at, PaymentIntent.id)
        with self.db.session() as session:
            return list(session.scalars(query))

    def confirm_intent(self, intent_id: str, tx_ref: str) -> Confirmation:
        """Transition pending -> confirmed, minting the delivery credential.

        Idempotent: a repeat call (same or different tx_ref) is a no-op that
        reports the credential minted by the first call. A tx_ref already
        credited to another intent is refused.
        """
        try:
            with self.db.transaction() as session:
                owner = session.scalar(select(PaymentIntent.id).where(PaymentIntent.observed_tx_ref == tx_ref))
                applied = False
                if owner is None or owner == intent_id:
                    result = session.execute(
                        update(PaymentIntent)
                        .where(PaymentIntent.id == intent_id, PaymentIntent.status == STATUS_PENDING)
                        .values(
                            status=STATUS_CONFIRMED,
                            observed_tx_ref=tx_ref,
                            delivery_credential=new_credential(),
                            confirmed_at=utcnow(),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    applied = result.rowcount == 1
                else:
                    logger.warning(f"Transaction {tx_ref} already credited to intent {owner}; not confirming {intent_id}")
        except IntegrityError:
            # Another writer credited this tx_ref between our check and update
            logger.warning(f"Transaction {tx_ref} already credited; not confirming {intent_id}")
            applied = False

        current = self.get_intent(intent_id)
        if current is None:
            logger.error(f"confirm_intent: intent {intent_id} not found")
            return Confirmation(intent_id=intent_id, applied=False, status=None)

        if applied:
            logger.info(f"Intent {intent_id} confirmed by {tx_ref}")
        else:
            logger.debug(f"confirm_intent no-op for {intent_id} (status={current.status})")

        return Confirmation(
            intent_id=intent_id,
            applied=applied,
            status=current.status,
            credential=current.delivery_credential,
            tx_ref=current.observed_tx_ref,
        )

    def mark_delivered(self, intent_id: str) -> bool:
        """Transition confirmed -> delivered. Returns True only for the first call."""
        with self.db.transaction() as session:
            result = session.execute(
                update(PaymentIntent)
                .where(PaymentIntent.id == intent_id, PaymentIntent.status == STATUS_CONFIRMED)
                .values(status=STATUS_DELIVERED, delivered_at=utcnow())
                .execution_options(synchronize_session=False)
            )
        delivered = result.rowcount == 1
        if delivered:
            logger.info(f"Intent {intent_id} delivered")
        return delivered

    def expire_pending_older_than(self, deadline: datetime) -> int:
        """Expire pending intents created before ``deadline``. Never touches other statuses."""
        with self.db.transaction() as session:
            result = session.execute(
                update(PaymentIntent)
                .where(PaymentIntent.status == STATUS_PENDING, PaymentIntent.created_at < deadline)
                .values(status=STATUS_EXPIRED)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.info(f"Expired {result.rowcount} pending intent(s) created before {deadline.isoformat()}")
        return result.rowcount

    # --- Products ------------------------------------------------------------

    def upsert_product(
        self,
        slug: str,
        name: str,
        price_usd: Decimal,
        file_path: str,
        description: str = "",
    ) -> Product:
        with self.db.transaction() as session:
            product = session.get(Product, slug)
            if product is None:
                product = Product(slug=slug)
                session.add(product)
            product.name = name
            product.description = description
            product.price_usd = Decimal(str(price_usd))
            product.file_path = file_path
            product.active = True
        return product

    def get_product(self, slug: str) -> Optional[Product]:
        with self.db.session() as session:
            return session.scalar(select(Product).where(Product.slug == slug, Product.active.is_(True)))

    def list_products(self) -> List[Product]:
        with self.db.session() as session:
            return list(session.scalars(select(Product).where(Product.active.is_(True)).order_by(Product.slug)))

    def load_catalog(self, path: str) -> int:
        """Seed products from a JSON catalog.

        Format::

            {"slug": {"name": "...", "price_usd": 19, "file": "products/slug.zip", "description": ""}}

        Relative file paths resolve against the catalog's directory.
        """
        catalog_path = Path(path)
        if not catalog_path.exists():
            logger.warning(f"Product catalog not found: {catalog_path}")
            return 0

        with open(catalog_path, "r") as f:
            entries = json.load(f)

        for slug, info in entries.items():
            file_path = Path(info.get("file", f"{slug}.zip"))
            if not file_path.is_absolute():
                file_path = catalog_path.parent / file_path
            self.upsert_product(
                slug=slug,
                name=info["name"],
                price_usd=Decimal(str(info["price_usd"])),
                file_path=str(file_path),
                description=info.get("description", ""),
            )
        logger.info(f"Loaded {len(entries)} products from {catalog_path}")
        return len(entries)
