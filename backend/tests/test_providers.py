import pytest
import requests

import paywatch.chains.providers as providers_module
from paywatch.chains.evm import EvmChainClient
from paywatch.chains.networks import BASE_NETWORK
from paywatch.chains.providers import ProviderManager, RPCProviderError
from paywatch.errors import ChainClientError


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def json(self):
        return self._payload


def fake_chain_id_post(answers):
    """requests.post replacement answering eth_chainId per URL."""

    def post(url, json=None, timeout=None):
        answer = answers[url]
        if isinstance(answer, Exception):
            raise answer
        return FakeResponse({"jsonrpc": "2.0", "id": 1, "result": answer})

    return post


def test_requires_urls():
    with pytest.raises(RPCProviderError):
        ProviderManager(["", ""], chain_id=8453)


def test_fails_over_after_marked_unhealthy(monkeypatch):
    monkeypatch.setattr(providers_module.requests, "post", fake_chain_id_post({}))
    manager = ProviderManager(["https://a.example", "https://b.example"], chain_id=8453)

    manager.get_web3()
    assert manager.current_url == "https://a.example"

    manager.mark_endpoint_unhealthy("https://a.example", "502 Bad Gateway")
    manager.get_web3()

    assert manager.current_url == "https://b.example"
    assert manager._endpoint_status["https://a.example"]["failure_count"] == 1


def test_rechecks_all_when_every_endpoint_failed(monkeypatch):
    answers = {"https://a.example": requests.ConnectionError("refused"), "https://b.example": hex(8453)}
    monkeypatch.setattr(providers_module.requests, "post", fake_chain_id_post(answers))
    manager = ProviderManager(["https://a.example", "https://b.example"], chain_id=8453)
    manager.mark_endpoint_unhealthy("https://a.example")
    manager.mark_endpoint_unhealthy("https://b.example")

    # Unhealthy endpoints are only re-checked after the interval or when none is left
    manager.health_check_interval = 3600
    manager.get_web3()

    assert manager.current_url == "https://b.example"


def test_wrong_chain_id_is_unhealthy(monkeypatch):
    answers = {"https://a.example": hex(1)}
    monkeypatch.setattr(providers_module.requests, "post", fake_chain_id_post(answers))
    manager = ProviderManager(["https://a.example"], chain_id=8453)
    manager.mark_endpoint_unhealthy("https://a.example")

    with pytest.raises(RPCProviderError):
        manager.get_web3()


class FakeEth:
    @property
    def block_number(self):
        raise TimeoutError("read timed out")


class FakeW3:
    eth = FakeEth()


class FakeProviders:
    current_url = "https://a.example"

    def __init__(self):
        self.unhealthy = []

    def get_web3(self):
        return FakeW3()

    def mark_endpoint_unhealthy(self, url, error=None):
        self.unhealthy.append(url)


def test_client_wraps_rpc_errors():
    providers = FakeProviders()
    client = EvmChainClient(BASE_NETWORK, providers=providers)

    with pytest.raises(ChainClientError):
        client.block_number()
    assert providers.unhealthy == ["https://a.example"]
