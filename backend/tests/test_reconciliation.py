import smtplib
from decimal import Decimal

import paywatch.delivery as delivery_module
from paywatch.delivery import EmailDelivery, LogDelivery, download_url
from paywatch.ledger.models import STATUS_CONFIRMED
from paywatch.reconciliation import Reconciler


class FakeDeliverer:
    def __init__(self, result=True, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def deliver(self, intent, product):
        self.calls.append((intent.id, intent.status, product.slug if product else None))
        if self.error:
            raise self.error
        return self.result


def test_confirms_and_delivers_once(ledger, make_intent):
    intent = make_intent()
    deliverer = FakeDeliverer()
    reconcile = Reconciler(ledger, deliverer)

    first = reconcile(intent, "0xaaa", Decimal("24"))
    second = reconcile(intent, "0xaaa", Decimal("24"))

    assert first.applied is True
    assert second.applied is False
    assert deliverer.calls == [(intent.id, STATUS_CONFIRMED, "ebook")]


def test_delivery_failure_keeps_confirmation(ledger, make_intent):
    intent = make_intent()
    reconcile = Reconciler(ledger, FakeDeliverer(error=ConnectionError("smtp down")))

    result = reconcile(intent, "0xaaa", Decimal("24"))

    assert result.applied is True
    stored = ledger.get_intent(intent.id)
    assert stored.status == STATUS_CONFIRMED
    assert stored.delivery_credential == result.credential


def test_delivery_returning_false_keeps_confirmation(ledger, make_intent):
    intent = make_intent()
    Reconciler(ledger, FakeDeliverer(result=False))(intent, "0xaaa", Decimal("24"))
    assert ledger.get_intent(intent.id).status == STATUS_CONFIRMED


def test_without_deliverer(ledger, make_intent):
    intent = make_intent()
    assert Reconciler(ledger)(intent, "0xaaa", Decimal("24")).applied is True


def test_download_url(ledger, make_intent):
    intent = make_intent()
    credential = ledger.confirm_intent(intent.id, "0xaaa").credential
    confirmed = ledger.get_intent(intent.id)

    assert download_url("https://shop.example/", confirmed) == (
        f"https://shop.example/api/download/ebook?token={credential}"
    )


def test_log_delivery(ledger, make_intent, product):
    intent = make_intent()
    ledger.confirm_intent(intent.id, "0xaaa")
    assert LogDelivery("http://localhost:3000").deliver(ledger.get_intent(intent.id), product) is True


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in = None
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def send_message(self, message):
        self.sent.append(message)


def test_email_delivery_sends_download_link(monkeypatch, ledger, make_intent, product):
    FakeSMTP.instances = []
    monkeypatch.setattr(delivery_module.smtplib, "SMTP", FakeSMTP)
    intent = make_intent()
    credential = ledger.confirm_intent(intent.id, "0xaaa").credential
    mailer = EmailDelivery("smtp.example", 587, "shop@example.com", "secret", "https://shop.example")

    assert mailer.deliver(ledger.get_intent(intent.id), product) is True

    smtp = FakeSMTP.instances[0]
    assert smtp.started_tls is True
    assert smtp.logged_in == ("shop@example.com", "secret")
    message = smtp.sent[0]
    assert message["To"] == "buyer@example.com"
    assert "The Ebook" in message["Subject"]
    assert f"token={credential}" in message.get_content()
    assert "0xaaa" in message.get_content()


def test_email_delivery_failure_returns_false(monkeypatch, ledger, make_intent, product):
    class BrokenSMTP(FakeSMTP):
        def send_message(self, message):
            raise smtplib.SMTPRecipientsRefused({"buyer@example.com": (550, b"no such user")})

    monkeypatch.setattr(delivery_module.smtplib, "SMTP", BrokenSMTP)
    intent = make_intent()
    ledger.confirm_intent(intent.id, "0xaaa")
    mailer = EmailDelivery("smtp.example", 587, "", "", "https://shop.example", sender="shop@example.com")

    assert mailer.deliver(ledger.get_intent(intent.id), product) is False


def test_email_delivery_refuses_unconfirmed_intent(make_intent, product):
    mailer = EmailDelivery("smtp.example", 587, "", "", "https://shop.example", sender="shop@example.com")
    assert mailer.deliver(make_intent(), product) is False


def test_email_delivery_skips_contact_without_address(monkeypatch, ledger, product):
    FakeSMTP.instances = []
    monkeypatch.setattr(delivery_module.smtplib, "SMTP", FakeSMTP)
    intent = ledger.create_intent(
        product_ref=product.slug,
        buyer_contact="x402",
        amount_usd=Decimal("24"),
        amount_crypto=Decimal("24"),
        asset="USDC",
        chain="base",
        pay_address="0x00000000000000000000000000000000000000A5",
        address_index=7,
    )
    ledger.confirm_intent(intent.id, "0xbbb")
    mailer = EmailDelivery("smtp.example", 587, "", "", "https://shop.example", sender="shop@example.com")

    assert mailer.deliver(ledger.get_intent(intent.id), product) is False
    assert FakeSMTP.instances == []
