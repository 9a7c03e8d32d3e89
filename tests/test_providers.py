import logging
from datetime import datetime, timedelta, timezone

import pytest

from tronrelay.config import new_default
from tronrelay.digester import DigestError, OffchainConfigDigester
from tronrelay.providers import (
    ConfigProvider,
    MedianProvider,
    PluginProvider,
    ServiceStateError,
)
from tronrelay.types import OffchainContractConfig, TransmissionDetails

CONTRACT_EVM = bytes(range(1, 21))
CONTRACT = b"\x41" + CONTRACT_EVM
SENDER = b"\x41" + bytes([0x22]) * 20
CHAIN_ID = 2**40 + 3


class FakeReader:
    def __init__(self, height=42):
        self.height = height

    def call_contract(self, address, method, params):
        if method == "latestConfigDetails":
            return {"blockNumber": 0, "configDigest": bytes(32)}
        raise RuntimeError(f"unexpected method {method}")

    def call_contract_full_node(self, address, method, params):
        raise RuntimeError(f"unexpected method {method}")

    def latest_block_height(self):
        return self.height

    def get_events_from_block(self, address, event_name, block_num):
        return []


class FakeMedianContract:
    def __init__(self, details):
        self.details = details

    def latest_transmission_details(self):
        return self.details

    def latest_round_requested(self, lookback):
        return bytes(32), 0, 0


class FakeTxm:
    def __init__(self):
        self.requests = []

    def enqueue(self, request):
        self.requests.append(request)


def make_config_provider(height=42):
    return ConfigProvider(CHAIN_ID, CONTRACT, FakeReader(height), new_default())


def test_config_provider_start_populates_tracker():
    provider = make_config_provider(height=42)
    provider.start()
    try:
        assert provider.contract_config_tracker().latest_block_height() == 42
        assert provider.health_report() == {provider.name(): None}
    finally:
        provider.close()


def test_config_provider_starts_only_once():
    provider = make_config_provider()
    provider.start()
    try:
        with pytest.raises(ServiceStateError, match="already been started"):
            provider.start()
    finally:
        provider.close()
    with pytest.raises(ServiceStateError):
        provider.close()


def test_config_provider_cannot_close_before_start():
    provider = make_config_provider()
    with pytest.raises(ServiceStateError, match="cannot be stopped"):
        provider.close()
    report = provider.health_report()
    assert isinstance(report[provider.name()], ServiceStateError)


def test_config_provider_name():
    provider = make_config_provider()
    assert provider.name().endswith("ConfigProvider")


def test_config_provider_digester_uses_evm_contract_address():
    provider = make_config_provider()
    cfg = OffchainContractConfig(signers=[bytes([0xAA]) * 20], transmitters=[], f=1)
    expected = OffchainConfigDigester(CHAIN_ID, CONTRACT_EVM).config_digest(cfg)
    assert provider.offchain_config_digester().config_digest(cfg) == expected


def test_config_provider_rejects_invalid_contract_address():
    with pytest.raises(DigestError):
        ConfigProvider(CHAIN_ID, b"\x01\x02", FakeReader(), new_default())


def make_median_provider(details):
    config_provider = make_config_provider(height=7)
    txm = FakeTxm()
    provider = MedianProvider(
        new_default(), FakeMedianContract(details), config_provider, CONTRACT, SENDER, txm
    )
    return provider, config_provider, txm


def test_median_provider_starts_both_caches():
    timestamp = datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=100)
    details = TransmissionDetails(
        digest=b"\x07" * 32, epoch=3, round=1, latest_answer=5, latest_timestamp=timestamp
    )
    provider, config_provider, _ = make_median_provider(details)
    provider.start()
    try:
        assert provider.median_contract().latest_transmission_details().epoch == 3
        assert provider.contract_transmitter().latest_config_digest_and_epoch() == (b"\x07" * 32, 3)
        assert provider.contract_config_tracker().latest_block_height() == 7
        assert provider.health_report() == {provider.name(): None}
    finally:
        provider.close()


def test_median_provider_shares_config_provider_identity():
    provider, config_provider, _ = make_median_provider(TransmissionDetails())
    assert provider.name() == config_provider.name()
    assert provider.offchain_config_digester() is config_provider.offchain_config_digester()
    assert provider.contract_config_tracker() is config_provider.contract_config_tracker()


def test_median_provider_round_requested_passes_through():
    provider, _, _ = make_median_provider(TransmissionDetails())
    assert provider.median_contract().latest_round_requested(timedelta(seconds=1)) == (bytes(32), 0, 0)


def test_median_provider_close_before_start_fails():
    provider, _, _ = make_median_provider(TransmissionDetails())
    with pytest.raises(ServiceStateError):
        provider.close()


def test_plugin_provider_delegates():
    config_provider = make_config_provider()
    chain_reader = object()
    codec = object()
    transmitter = object()
    plugin = PluginProvider(chain_reader, codec, transmitter, config_provider, logging.getLogger("plugin"))
    assert plugin.name() == "plugin"
    assert plugin.contract_reader() is chain_reader
    assert plugin.codec() is codec
    assert plugin.contract_transmitter() is transmitter
    assert plugin.offchain_config_digester() is config_provider.offchain_config_digester()
    assert plugin.contract_config_tracker() is config_provider.contract_config_tracker()


def test_plugin_provider_health_includes_config_provider():
    config_provider = make_config_provider()
    plugin = PluginProvider(None, None, None, config_provider, logging.getLogger("plugin"))
    before = plugin.health_report()
    assert before["plugin"] is None
    assert isinstance(before[config_provider.name()], ServiceStateError)

    plugin.start()
    try:
        assert plugin.health_report() == {"plugin": None, config_provider.name(): None}
    finally:
        plugin.close()
    with pytest.raises(ServiceStateError):
        plugin.close()