"""
Checkout API routes.

Endpoints for the product list, checkout, payment status polling,
credential-gated downloads and the x402 (HTTP 402 Payment Required) flow.
Services are read from ``request.app.state`` (see paywatch.main).
"""

import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from paywatch.delivery import download_url
from paywatch.errors import ConfigurationError, DerivationError, PriceUnavailable, UnknownProduct, UnsupportedAsset
from paywatch.ledger.models import STATUS_CONFIRMED, STATUS_DELIVERED, STATUS_EXPIRED, PaymentIntent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["payment"])

X402_VERSION = "1"
X402_CONTACT = "x402"  # buyer contact for intents opened without an email


class CheckoutRequest(BaseModel):
    """Request body for checkout. Missing fields are reported as 400."""
    email: Optional[str] = None
    product_slug: Optional[str] = None
    asset: str = "USDC"
    chain: str = "base"


class CheckoutResponse(BaseModel):
    payment_id: str
    pay_address: str
    amount_usd: str
    amount_crypto: str
    asset: str
    chain: str
    expires_in_minutes: int


class ProductResponse(BaseModel):
    slug: str
    name: str
    description: str
    price_usd: str


class X402PaymentRequest(BaseModel):
    payment_id: Optional[str] = None
    # Informational only; settlement is decided by the chain monitors
    tx_hash: Optional[str] = None


def _create_intent(request: Request, slug: str, contact: str, asset: str, chain: str) -> PaymentIntent:
    service = request.app.state.checkout
    try:
        return service.create_intent(slug, contact, asset, chain)
    except UnknownProduct as e:
        raise HTTPException(status_code=404, detail=str(e))
    except UnsupportedAsset as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PriceUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except (ConfigurationError, DerivationError) as e:
        logger.error(f"Checkout failed: {e}")
        raise HTTPException(status_code=503, detail="Payment address unavailable")


@router.get("/products", response_model=List[ProductResponse])
def list_products(request: Request) -> List[ProductResponse]:
    ledger = request.app.state.ledger
    return [
        ProductResponse(slug=p.slug, name=p.name, description=p.description or "", price_usd=str(p.price_usd))
        for p in ledger.list_products()
    ]


@router.post("/checkout", response_model=CheckoutResponse)
def checkout(body: CheckoutRequest, request: Request) -> CheckoutResponse:
    """Create a pending payment intent for a product.

    Raises:
        HTTPException: 400 on bad input, 404 for unknown products, 503 when
            pricing or address derivation is unavailable
    """
    if not body.email or "@" not in body.email:
        raise HTTPException(status_code=400, detail="A valid email is required")
    if not body.product_slug:
        raise HTTPException(status_code=400, detail="product_slug is required")

    intent = _create_intent(request, body.product_slug, body.email, body.asset, body.chain)

    return CheckoutResponse(
        payment_id=intent.id,
        pay_address=intent.pay_address,
        amount_usd=str(intent.amount_usd),
        amount_crypto=str(intent.amount_crypto),
        asset=intent.asset,
        chain=intent.chain,
        expires_in_minutes=request.app.state.settings.payment_timeout_minutes,
    )


@router.get("/payment/{payment_id}")
def payment_status(payment_id: str, request: Request) -> Dict[str, Any]:
    state = request.app.state
    intent = state.ledger.get_intent(payment_id)
    if intent is None:
        raise HTTPException(status_code=404, detail="Payment not found")

    expires_at = intent.created_at + timedelta(minutes=state.settings.payment_timeout_minutes)
    result: Dict[str, Any] = {
        "payment_id": intent.id,
        "status": intent.status,
        "product": intent.product_ref,
        "amount_usd": str(intent.amount_usd),
        "amount_crypto": str(intent.amount_crypto),
        "asset": intent.asset,
        "chain": intent.chain,
        "pay_address": intent.pay_address,
        "created_at": intent.created_at.isoformat(),
        "expires_at": expires_at.isoformat(),
        "tx_ref": intent.observed_tx_ref,
    }
    if intent.status in (STATUS_CONFIRMED, STATUS_DELIVERED):
        result["download_url"] = download_url(state.settings.site_url, intent)
    return result


@router.get("/download/{slug}")
def download(slug: str, request: Request, token: Optional[str] = Query(default=None)) -> FileResponse:
    """Redeem a delivery credential. The first redemption marks the intent delivered."""
    if not token:
        raise HTTPException(status_code=401, detail="Download token required")

    ledger = request.app.state.ledger
    intent = ledger.get_intent_by_credential(token)
    if intent is None or intent.product_ref != slug:
        raise HTTPException(status_code=403, detail="Invalid or expired download token")

    product = ledger.get_product(slug)
    if product is None or not Path(product.file_path).is_file():
        logger.error(f"Product file missing for {slug}")
        raise HTTPException(status_code=404, detail="Product file not found")

    if intent.status == STATUS_CONFIRMED:
        ledger.mark_delivered(intent.id)

    path = Path(product.file_path)
    return FileResponse(path, filename=path.name, media_type="application/octet-stream")


def _payment_required(request: Request, intent: PaymentIntent) -> JSONResponse:
    state = request.app.state
    product = state.ledger.get_product(intent.product_ref)
    return JSONResponse(
        status_code=402,
        content={
            "status": 402,
            "message": "Payment Required",
            "x402_version": X402_VERSION,
            "accepts": [
                {
                    "scheme": "exact",
                    "network": intent.chain,
                    "asset": intent.asset,
                    "address": intent.pay_address,
                    "amount": str(state.checkout.base_units(intent)),
                    "amount_crypto": str(intent.amount_crypto),
                    "amount_usd": str(intent.amount_usd),
                    "payment_id": intent.id,
                    "expires_in_minutes": state.settings.payment_timeout_minutes,
                }
            ],
            "product": {
                "slug": intent.product_ref,
                "name": product.name if product else intent.product_ref,
                "description": (product.description if product else None) or "",
            },
        },
    )


@router.get("/x402/products/{slug}")
def x402_discover(
    slug: str,
    request: Request,
    asset: str = Query(default="USDC"),
    chain: str = Query(default="base"),
    contact: Optional[str] = Query(default=None),
) -> JSONResponse:
    """Answer with 402 and a fresh payment intent the client can pay on-chain."""
    intent = _create_intent(request, slug, contact or X402_CONTACT, asset, chain)
    logger.info(f"[x402] Issued intent {intent.id} for {slug} ({intent.amount_crypto} {intent.asset} on {intent.chain})")
    return _payment_required(request, intent)


@router.post("/x402/products/{slug}")
def x402_redeem(slug: str, body: X402PaymentRequest, request: Request) -> Any:
    """Report an x402 intent's state from the ledger.

    A client-supplied tx_hash is never trusted: the intent is settled only once
    a monitor has observed the payment on-chain. Until then the 402 payload is
    repeated.
    """
    if not body.payment_id:
        raise HTTPException(status_code=400, detail="payment_id is required")

    state = request.app.state
    intent = state.ledger.get_intent(body.payment_id)
    if intent is None or intent.product_ref != slug:
        raise HTTPException(status_code=404, detail="Payment not found")

    if body.tx_hash and body.tx_hash != intent.observed_tx_ref:
        logger.info(f"[x402] Intent {intent.id}: client reported tx {body.tx_hash}, ledger has {intent.observed_tx_ref}")

    if intent.status == STATUS_EXPIRED:
        raise HTTPException(status_code=410, detail="Payment intent expired")
    if intent.status not in (STATUS_CONFIRMED, STATUS_DELIVERED):
        return _payment_required(request, intent)

    return {
        "payment_id": intent.id,
        "status": intent.status,
        "tx_ref": intent.observed_tx_ref,
        "download_url": download_url(state.settings.site_url, intent),
    }
