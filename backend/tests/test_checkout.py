from decimal import Decimal

import pytest

from paywatch.chains.networks import BASE_NETWORK, SHARED_ADDRESS_INDEX, SolanaNetworkConfig
from paywatch.checkout import CheckoutService
from paywatch.errors import PriceUnavailable, UnknownProduct, UnsupportedAsset
from paywatch.ledger.models import STATUS_PENDING

SHARED = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"


class FakeOracle:
    def __init__(self, prices=None):
        self.prices = prices if prices is not None else {"ETH": Decimal("3000"), "SOL": Decimal("150")}

    def usd_to_crypto(self, usd, asset):
        if asset == "USDC":
            return usd
        if asset not in self.prices:
            raise PriceUnavailable(asset)
        return (usd / self.prices[asset]).quantize(Decimal("0.00000001"))


class FakeAllocator:
    def __init__(self):
        self.next_index = 0

    def allocate_address(self):
        index = self.next_index
        self.next_index += 1
        return index, f"0x{index:040x}"


@pytest.fixture
def allocator():
    return FakeAllocator()


@pytest.fixture
def service(ledger, product, allocator):
    solana = SolanaNetworkConfig(rpc_url="http://localhost:8899", receive_address=SHARED)
    return CheckoutService(ledger, allocator, FakeOracle(), {"base": BASE_NETWORK}, solana)


def test_usdc_checkout_allocates_address(service, ledger):
    intent = service.create_intent("ebook", "buyer@example.com", "usdc", "BASE")

    assert intent.status == STATUS_PENDING
    assert intent.asset == "USDC"
    assert intent.chain == "base"
    assert intent.address_index == 0
    assert intent.pay_address == "0x" + "0" * 40
    assert ledger.get_intent(intent.id).amount_crypto == Decimal("24")


def test_each_checkout_gets_its_own_address(service):
    a = service.create_intent("ebook", "a@example.com", "ETH", "base")
    b = service.create_intent("ebook", "b@example.com", "ETH", "base")

    assert a.pay_address != b.pay_address
    assert a.amount_crypto == Decimal("0.008")


def test_solana_checkout_uses_shared_address(service, allocator):
    intent = service.create_intent("ebook", "buyer@example.com", "SOL", "solana")

    assert intent.pay_address == SHARED
    assert intent.address_index == SHARED_ADDRESS_INDEX
    assert intent.amount_crypto == Decimal("0.16")
    assert allocator.next_index == 0


def test_unknown_product(service):
    with pytest.raises(UnknownProduct):
        service.create_intent("missing", "buyer@example.com", "USDC", "base")


def test_unsupported_asset(service):
    with pytest.raises(UnsupportedAsset):
        service.create_intent("ebook", "buyer@example.com", "DOGE", "base")


def test_unconfigured_chain(service):
    with pytest.raises(UnsupportedAsset):
        service.create_intent("ebook", "buyer@example.com", "USDC", "ethereum")


def test_solana_not_configured(ledger, product, allocator):
    service = CheckoutService(ledger, allocator, FakeOracle(), {"base": BASE_NETWORK})
    with pytest.raises(UnsupportedAsset):
        service.create_intent("ebook", "buyer@example.com", "SOL", "solana")


def test_price_unavailable_burns_no_index(ledger, product, allocator):
    service = CheckoutService(ledger, allocator, FakeOracle(prices={}), {"base": BASE_NETWORK})

    with pytest.raises(PriceUnavailable):
        service.create_intent("ebook", "buyer@example.com", "ETH", "base")
    assert allocator.next_index == 0
    assert ledger.get_pending_intents() == []


def test_base_units_per_asset(service):
    usdc = service.create_intent("ebook", "buyer@example.com", "USDC", "base")
    eth = service.create_intent("ebook", "buyer@example.com", "ETH", "base")
    sol = service.create_intent("ebook", "buyer@example.com", "SOL", "solana")

    assert service.base_units(usdc) == 24_000_000
    assert service.base_units(eth) == 8 * 10**15
    assert service.base_units(sol) == 160_000_000
