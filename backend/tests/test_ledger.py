import json
from datetime import timedelta
from decimal import Decimal

import pytest

from paywatch.ledger.expiry import ExpirySweeper
from paywatch.ledger.models import (
    STATUS_CONFIRMED,
    STATUS_DELIVERED,
    STATUS_EXPIRED,
    STATUS_PENDING,
    utcnow,
)


def test_create_intent_is_pending(make_intent):
    intent = make_intent()
    assert intent.status == STATUS_PENDING
    assert intent.delivery_credential is None
    assert intent.observed_tx_ref is None
    assert intent.amount_crypto == Decimal("24")


def test_create_intent_rejects_non_positive_amount(ledger, product):
    with pytest.raises(ValueError):
        ledger.create_intent(product.slug, "a@b.c", Decimal("0"), Decimal("1"), "USDC", "base", "0xabc", 0)


def test_confirm_twice_transitions_once(ledger, make_intent):
    intent = make_intent()

    first = ledger.confirm_intent(intent.id, "0xaaa")
    second = ledger.confirm_intent(intent.id, "0xaaa")

    assert first.applied is True
    assert second.applied is False
    assert second.status == STATUS_CONFIRMED
    assert second.credential == first.credential
    assert len(first.credential) == 64


def test_confirm_with_different_tx_ref_keeps_first(ledger, make_intent):
    intent = make_intent()

    first = ledger.confirm_intent(intent.id, "0xaaa")
    second = ledger.confirm_intent(intent.id, "0xbbb")

    assert second.applied is False
    assert second.credential == first.credential
    assert ledger.get_intent(intent.id).observed_tx_ref == "0xaaa"


def test_one_tx_ref_confirms_at_most_one_intent(ledger, make_intent):
    a = make_intent(pay_address="0xA")
    b = make_intent(pay_address="0xB")

    assert ledger.confirm_intent(a.id, "0xshared").applied is True
    result = ledger.confirm_intent(b.id, "0xshared")

    assert result.applied is False
    assert ledger.get_intent(b.id).status == STATUS_PENDING


def test_confirm_unknown_intent(ledger):
    result = ledger.confirm_intent("missing", "0xaaa")
    assert result.applied is False
    assert result.status is None


def test_confirm_expired_intent_is_noop(ledger, make_intent):
    intent = make_intent(age=timedelta(hours=1))
    ledger.expire_pending_older_than(utcnow())

    result = ledger.confirm_intent(intent.id, "0xaaa")

    assert result.applied is False
    assert result.status == STATUS_EXPIRED
    assert result.credential is None


def test_mark_delivered_is_idempotent(ledger, make_intent):
    intent = make_intent()
    ledger.confirm_intent(intent.id, "0xaaa")

    assert ledger.mark_delivered(intent.id) is True
    delivered_at = ledger.get_intent(intent.id).delivered_at
    assert ledger.mark_delivered(intent.id) is False

    stored = ledger.get_intent(intent.id)
    assert stored.status == STATUS_DELIVERED
    assert stored.delivered_at == delivered_at


def test_mark_delivered_requires_confirmation(ledger, make_intent):
    intent = make_intent()
    assert ledger.mark_delivered(intent.id) is False
    assert ledger.get_intent(intent.id).status == STATUS_PENDING


def test_sweep_only_touches_old_pending(ledger, make_intent):
    old_pending = make_intent(age=timedelta(minutes=45))
    fresh_pending = make_intent()
    old_confirmed = make_intent(age=timedelta(minutes=45))
    old_delivered = make_intent(age=timedelta(minutes=45))
    ledger.confirm_intent(old_confirmed.id, "0x1")
    ledger.confirm_intent(old_delivered.id, "0x2")
    ledger.mark_delivered(old_delivered.id)

    expired = ledger.expire_pending_older_than(utcnow() - timedelta(minutes=30))

    assert expired == 1
    assert ledger.get_intent(old_pending.id).status == STATUS_EXPIRED
    assert ledger.get_intent(fresh_pending.id).status == STATUS_PENDING
    assert ledger.get_intent(old_confirmed.id).status == STATUS_CONFIRMED
    assert ledger.get_intent(old_delivered.id).status == STATUS_DELIVERED

    # A second pass has nothing left to do
    assert ledger.expire_pending_older_than(utcnow() - timedelta(minutes=30)) == 0


def test_expiry_sweeper_tick(ledger, make_intent):
    intent = make_intent(age=timedelta(minutes=31))
    sweeper = ExpirySweeper(ledger, timeout=timedelta(minutes=30), interval=1)

    assert sweeper.tick() == 1
    assert ledger.get_intent(intent.id).status == STATUS_EXPIRED


def test_get_pending_intents_filters(ledger, make_intent):
    usdc = make_intent()
    sol = make_intent(asset="SOL", chain="solana", pay_address="SoLAddr", address_index=-1)
    make_intent(age=timedelta(hours=2))
    ledger.expire_pending_older_than(utcnow() - timedelta(hours=1))

    assert [i.id for i in ledger.get_pending_intents(chain="base")] == [usdc.id]
    assert [i.id for i in ledger.get_pending_intents(chain="solana", asset="SOL")] == [sol.id]
    assert len(ledger.get_pending_intents()) == 2


def test_get_intent_by_credential_requires_confirmation(ledger, make_intent):
    intent = make_intent()
    confirmation = ledger.confirm_intent(intent.id, "0xaaa")

    assert ledger.get_intent_by_credential(confirmation.credential).id == intent.id
    assert ledger.get_intent_by_credential("not-a-token") is None


def test_load_catalog(ledger, tmp_path):
    (tmp_path / "files").mkdir()
    catalog = tmp_path / "products.json"
    catalog.write_text(
        json.dumps(
            {
                "guide": {"name": "Guide", "price_usd": 19.99, "file": "files/guide.zip"},
                "course": {"name": "Course", "price_usd": 49, "file": "/srv/course.zip", "description": "Video"},
            }
        )
    )

    assert ledger.load_catalog(str(catalog)) == 2

    guide = ledger.get_product("guide")
    assert guide.price_usd == Decimal("19.99")
    assert guide.file_path == str(tmp_path / "files" / "guide.zip")
    assert ledger.get_product("course").file_path == "/srv/course.zip"
    assert [p.slug for p in ledger.list_products()] == ["course", "guide"]


def test_load_catalog_missing_file(ledger, tmp_path):
    assert ledger.load_catalog(str(tmp_path / "nope.json")) == 0
