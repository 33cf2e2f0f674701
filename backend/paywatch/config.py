"""
Configuration for the paywatch backend.

Loads and validates environment variables (and a local .env file) for the
ledger store, the watch-only wallet, each chain monitor, pricing and delivery.
"""

from decimal import Decimal
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

from paywatch.chains.networks import (
    DEFAULT_SOLANA_RPC,
    KNOWN_EVM_NETWORKS,
    EvmNetworkConfig,
    SolanaNetworkConfig,
    TokenConfig,
)
from paywatch.errors import ConfigurationError
from paywatch.monitors.tolerance import (
    DEFAULT_NATIVE_TOLERANCE,
    DEFAULT_SOLANA_TOLERANCE,
    DEFAULT_TOKEN_TOLERANCE,
    TolerancePolicy,
)


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Ledger store
    database_url: str = "sqlite:///payments.db"
    catalog_path: str = "products.json"

    # Watch-only HD wallet (extended public key, never a private key)
    xpub: str = ""

    # EVM chains to monitor, comma separated (see chains.networks)
    evm_chains: str = "base"
    base_rpc_url: str = ""
    base_usdc_contract: str = ""
    ethereum_rpc_url: str = ""
    ethereum_usdc_contract: str = ""
    rpc_timeout_seconds: int = 10

    # Solana (single shared receive address)
    solana_enabled: bool = True
    solana_rpc_url: str = DEFAULT_SOLANA_RPC
    solana_receive_address: str = ""
    solana_signature_page_size: int = 20

    # Monitoring
    poll_interval_seconds: float = 15.0
    native_scan_window: int = 5  # backlog blocks per tick beyond the head advance
    token_tolerance: Decimal = DEFAULT_TOKEN_TOLERANCE
    native_tolerance: Decimal = DEFAULT_NATIVE_TOLERANCE
    solana_tolerance: Decimal = DEFAULT_SOLANA_TOLERANCE

    # Payment lifecycle
    payment_timeout_minutes: int = 30
    expiry_sweep_interval_seconds: float = 60.0

    # Pricing
    coingecko_url: str = "https://api.coingecko.com/api/v3/simple/price"
    price_cache_ttl_seconds: float = 60.0
    price_max_age_seconds: float = 300.0

    # Delivery
    site_url: str = "http://localhost:3000"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""
    mail_from: str = ""

    def enabled_evm_chains(self) -> List[str]:
        return [name.strip().lower() for name in self.evm_chains.split(",") if name.strip()]

    def evm_network(self, name: str) -> EvmNetworkConfig:
        """Resolve the network config for an EVM chain, applying overrides.

        Raises:
            ConfigurationError: If the chain is unknown or has no RPC endpoint
        """
        known = KNOWN_EVM_NETWORKS.get(name)
        if known is None:
            raise ConfigurationError(f"Unknown EVM chain '{name}' (known: {sorted(KNOWN_EVM_NETWORKS)})")

        rpc_override = getattr(self, f"{name}_rpc_url", "")
        rpc_urls = [rpc_override] if rpc_override else list(known.rpc_urls)
        if not rpc_urls:
            raise ConfigurationError(f"No RPC endpoint configured for chain '{name}'")

        tokens = dict(known.tokens)
        usdc_override = getattr(self, f"{name}_usdc_contract", "")
        if usdc_override:
            if not usdc_override.startswith("0x") or len(usdc_override) != 42:
                raise ConfigurationError(f"{name.upper()}_USDC_CONTRACT must be a valid address: {usdc_override}")
            tokens["USDC"] = TokenConfig(symbol="USDC", contract=usdc_override, decimals=6)

        return EvmNetworkConfig(
            name=known.name,
            chain_id=known.chain_id,
            rpc_urls=rpc_urls,
            native_asset=known.native_asset,
            native_decimals=known.native_decimals,
            tokens=tokens,
        )

    def solana_network(self) -> SolanaNetworkConfig:
        """
        Raises:
            ConfigurationError: If Solana is disabled or the shared address is missing
        """
        if not self.solana_enabled:
            raise ConfigurationError("Solana monitoring is disabled")
        if not self.solana_rpc_url:
            raise ConfigurationError("SOLANA_RPC_URL environment variable is required")
        if not self.solana_receive_address:
            raise ConfigurationError("SOLANA_RECEIVE_ADDRESS environment variable is required")
        return SolanaNetworkConfig(rpc_url=self.solana_rpc_url, receive_address=self.solana_receive_address)

    def tolerance_policy(self) -> TolerancePolicy:
        return TolerancePolicy(
            token=self.token_tolerance,
            native=self.native_tolerance,
            solana=self.solana_tolerance,
        )
