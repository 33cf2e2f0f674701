"""
Checkout - turns a product purchase request into a pending payment intent.
"""

import logging
from decimal import ROUND_CEILING, Decimal
from typing import Dict, List, Optional

from paywatch.chains.networks import LAMPORTS_PER_SOL, SHARED_ADDRESS_INDEX, SOLANA_CHAIN, EvmNetworkConfig, SolanaNetworkConfig
from paywatch.errors import UnknownProduct, UnsupportedAsset
from paywatch.ledger.models import PaymentIntent
from paywatch.ledger.store import PaymentLedger
from paywatch.pricing import PriceOracle
from paywatch.wallet.allocator import AddressAllocator

logger = logging.getLogger(__name__)


class CheckoutService:
    """Prices a product, picks a receive address and records the intent."""

    def __init__(
        self,
        ledger: PaymentLedger,
        allocator: AddressAllocator,
        oracle: PriceOracle,
        evm_networks: Dict[str, EvmNetworkConfig],
        solana_network: Optional[SolanaNetworkConfig] = None,
    ) -> None:
        """
        Args:
            evm_networks: Monitored EVM chains by name; other chains are rejected
            solana_network: Shared-address Solana config, None when not monitored
        """
        self.ledger = ledger
        self.allocator = allocator
        self.oracle = oracle
        self.evm_networks = evm_networks
        self.solana_network = solana_network

    def supported_pairs(self) -> List[str]:
        pairs = [f"{asset}@{name}" for name, network in self.evm_networks.items() for asset in network.assets]
        if self.solana_network is not None:
            pairs.extend(f"{asset}@{self.solana_network.name}" for asset in self.solana_network.assets)
        return pairs

    def create_intent(self, product_slug: str, buyer_contact: str, asset: str, chain: str) -> PaymentIntent:
        """
        Raises:
            UnknownProduct: If the product is missing or inactive
            UnsupportedAsset: If no configured monitor watches (chain, asset)
            PriceUnavailable: If the asset has no fresh price
            ConfigurationError / DerivationError: If the receive address cannot be derived
        """
        asset = asset.upper()
        chain = chain.lower()

        product = self.ledger.get_product(product_slug)
        if product is None:
            raise UnknownProduct(f"Product not found: {product_slug}")

        if chain == SOLANA_CHAIN:
            if self.solana_network is None or asset not in self.solana_network.assets:
                raise UnsupportedAsset(f"{asset} on {chain} is not supported (supported: {self.supported_pairs()})")
        else:
            network = self.evm_networks.get(chain)
            if network is None or asset not in network.assets:
                raise UnsupportedAsset(f"{asset} on {chain} is not supported (supported: {self.supported_pairs()})")

        amount_usd = Decimal(product.price_usd)
        amount_crypto = self.oracle.usd_to_crypto(amount_usd, asset)

        if chain == SOLANA_CHAIN:
            index, pay_address = SHARED_ADDRESS_INDEX, self.solana_network.receive_address
        else:
            index, pay_address = self.allocator.allocate_address()

        return self.ledger.create_intent(
            product_ref=product.slug,
            buyer_contact=buyer_contact,
            amount_usd=amount_usd,
            amount_crypto=amount_crypto,
            asset=asset,
            chain=chain,
            pay_address=pay_address,
            address_index=index,
        )

    def base_units(self, intent: PaymentIntent) -> int:
        """Expected amount in the asset's smallest unit (wei, token units, lamports)."""
        if intent.chain == SOLANA_CHAIN:
            scale = LAMPORTS_PER_SOL
        else:
            network = self.evm_networks[intent.chain]
            token = network.token(intent.asset)
            scale = 10 ** (token.decimals if token is not None else network.native_decimals)
        return int((Decimal(intent.amount_crypto) * scale).to_integral_value(rounding=ROUND_CEILING))
