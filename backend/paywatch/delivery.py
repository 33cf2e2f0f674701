"""
Product delivery via email.

The message carries a download link built from the delivery credential; the
intent becomes ``delivered`` only when that link is redeemed.
"""

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional
from urllib.parse import quote

from paywatch.ledger.models import PaymentIntent, Product

logger = logging.getLogger(__name__)

SMTP_TIMEOUT = 20  # seconds


def download_url(site_url: str, intent: PaymentIntent) -> str:
    base = site_url.rstrip("/")
    return f"{base}/api/download/{quote(intent.product_ref)}?token={intent.delivery_credential}"


class LogDelivery:
    """Fallback when no mailer is configured: log what would be sent."""

    def __init__(self, site_url: str) -> None:
        self.site_url = site_url

    def deliver(self, intent: PaymentIntent, product: Optional[Product]) -> bool:
        name = product.name if product else intent.product_ref
        logger.info(f"[Delivery] No mailer configured; would send {name} to {intent.buyer_contact}")
        logger.info(f"[Delivery] Download link: {download_url(self.site_url, intent)}")
        return True


class EmailDelivery:
    """Sends the download link over SMTP."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        site_url: str,
        sender: Optional[str] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.site_url = site_url
        self.sender = sender or user

    def build_message(self, intent: PaymentIntent, product: Optional[Product]) -> EmailMessage:
        name = product.name if product else intent.product_ref
        link = download_url(self.site_url, intent)

        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = intent.buyer_contact
        message["Subject"] = f"Your purchase: {name}"
        message.set_content(
            f"Thanks for your purchase!\n\n"
            f"Product: {name}\n"
            f"Amount: ${intent.amount_usd} ({intent.amount_crypto} {intent.asset} on {intent.chain})\n"
            f"Transaction: {intent.observed_tx_ref}\n\n"
            f"Download: {link}\n\n"
            f"The link is personal; keep it private.\n"
        )
        return message

    def deliver(self, intent: PaymentIntent, product: Optional[Product]) -> bool:
        if not intent.delivery_credential:
            logger.error(f"[Delivery] Intent {intent.id} has no credential; refusing to send")
            return False
        if "@" not in (intent.buyer_contact or ""):
            logger.info(f"[Delivery] Intent {intent.id} has no email contact; download link is served by the API")
            return False

        message = self.build_message(intent, product)
        try:
            if self.port == 465:
                smtp = smtplib.SMTP_SSL(self.host, self.port, timeout=SMTP_TIMEOUT)
            else:
                smtp = smtplib.SMTP(self.host, self.port, timeout=SMTP_TIMEOUT)
            with smtp:
                if self.port != 465:
                    smtp.starttls()
                if self.user:
                    smtp.login(self.user, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"[Delivery] Email to {intent.buyer_contact} failed: {e}")
            return False

        logger.info(f"[Delivery] Sent {message['Subject']!r} to {intent.buyer_contact}")
        return True
