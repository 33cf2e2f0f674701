"""
RPC provider pool with failover for EVM chains.

This module provides:
- RPC pool management with automatic failover
- Health checks (eth_chainId must match the expected chain)
- Periodic re-check of endpoints previously marked unhealthy
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional

import requests
from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

from paywatch.errors import ChainClientError

logger = logging.getLogger(__name__)

# Default timeout for RPC calls
DEFAULT_RPC_TIMEOUT = 10  # seconds

# Health check timeout (shorter for quick failover)
HEALTH_CHECK_TIMEOUT = 3  # seconds


class RPCProviderError(ChainClientError):
    """Raised when no RPC endpoint in the pool is usable."""


class ProviderManager:
    """
    Manages a pool of RPC endpoints for one chain.

    Features:
    - Automatic health checks
    - Failover on errors or timeouts
    - Unhealthy endpoints are retried after ``health_check_interval``
    """

    def __init__(
        self,
        rpc_urls: List[str],
        chain_id: int,
        timeout: int = DEFAULT_RPC_TIMEOUT,
        health_check_interval: int = 60,
    ) -> None:
        """
        Args:
            rpc_urls: RPC URLs in order of preference
            chain_id: Chain id every endpoint must report
            timeout: Request timeout in seconds
            health_check_interval: How often to re-check failed endpoints (seconds)
        """
        self.rpc_urls = [url for url in rpc_urls if url]
        if not self.rpc_urls:
            raise RPCProviderError("No RPC URLs provided to ProviderManager.")

        self.chain_id = chain_id
        self.timeout = timeout
        self.health_check_interval = health_check_interval

        self._endpoint_status: dict[str, dict] = {
            url: {"healthy": True, "last_check": 0.0, "failure_count": 0, "last_error": None}
            for url in self.rpc_urls
        }

        self._current_index = 0
        self._web3_instance: Optional[Web3] = None

    @property
    def current_url(self) -> str:
        return self.rpc_urls[self._current_index]

    def _is_endpoint_healthy(self, url: str) -> bool:
        status = self._endpoint_status[url]
        if not status["healthy"]:
            if time.time() - status["last_check"] >= self.health_check_interval:
                return self._check_endpoint_health(url)
        return status["healthy"]

    def _record_failure(self, url: str, error: str) -> None:
        status = self._endpoint_status[url]
        status["healthy"] = False
        status["last_check"] = time.time()
        status["failure_count"] += 1
        status["last_error"] = error

    def _check_endpoint_health(self, url: str) -> bool:
        """
        Perform a quick eth_chainId check against an endpoint.

        Returns:
            True if the endpoint answers with the expected chain id
        """
        try:
            payload = {"jsonrpc": "2.0", "id": 1, "method": "eth_chainId", "params": []}
            response = requests.post(url, json=payload, timeout=HEALTH_CHECK_TIMEOUT)

            if response.status_code == 200:
                data = response.json()
                if "result" in data:
                    chain_id_hex = data["result"]
                    is_valid = int(chain_id_hex, 16) == self.chain_id

                    status = self._endpoint_status[url]
                    status["healthy"] = is_valid
                    status["last_check"] = time.time()
                    if is_valid:
                        status["failure_count"] = 0
                        status["last_error"] = None
                    else:
                        status["last_error"] = f"wrong chain id {chain_id_hex}"
                        logger.warning(f"RPC {url} returned wrong chain_id: {chain_id_hex} (expected {hex(self.chain_id)})")
                    return is_valid

            self._record_failure(url, f"HTTP {response.status_code}")
            return False

        except requests.exceptions.Timeout:
            self._record_failure(url, "Timeout")
            logger.warning(f"RPC {url} health check timed out")
            return False

        except (requests.RequestException, ValueError) as e:
            self._record_failure(url, str(e))
            logger.warning(f"RPC {url} health check failed: {e}")
            return False

    def get_web3(self, force_refresh: bool = False) -> Web3:
        """
        Get a Web3 instance connected to a healthy RPC endpoint.

        Raises:
            RPCProviderError: If no healthy endpoints are available
        """
        if self._web3_instance and not force_refresh:
            if self._is_endpoint_healthy(self.current_url):
                return self._web3_instance

        healthy_url = self._find_healthy_endpoint()
        if not healthy_url:
            raise RPCProviderError(
                f"No healthy RPC endpoints available. Last errors: "
                f"{[(url, self._endpoint_status[url]['last_error']) for url in self.rpc_urls]}"
            )

        self._web3_instance = Web3(Web3.HTTPProvider(healthy_url, request_kwargs={"timeout": self.timeout}))
        self._web3_instance.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        logger.info(f"Using RPC: {healthy_url} (chain_id={self.chain_id})")
        return self._web3_instance

    def _find_healthy_endpoint(self) -> Optional[str]:
        # Start from current index and rotate
        for i in range(len(self.rpc_urls)):
            idx = (self._current_index + i) % len(self.rpc_urls)
            url = self.rpc_urls[idx]
            if self._is_endpoint_healthy(url):
                self._current_index = idx
                return url

        logger.warning("No endpoints marked healthy, attempting to re-check all...")
        for idx, url in enumerate(self.rpc_urls):
            if self._check_endpoint_health(url):
                self._current_index = idx
                return url

        return None

    def mark_endpoint_unhealthy(self, url: str, error: Optional[str] = None) -> None:
        """Mark an endpoint unhealthy after a failed call so the next call fails over."""
        if url in self._endpoint_status:
            self._record_failure(url, error or "Manually marked unhealthy")
            logger.warning(f"Marked RPC {url} as unhealthy: {error}")
            if self.current_url == url:
                self._web3_instance = None
