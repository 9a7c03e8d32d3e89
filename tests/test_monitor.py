import os
import threading
from datetime import timedelta
from types import SimpleNamespace

import pytest

from tronrelay.monitor import (
    TRON_BALANCE,
    BalanceGauge,
    BalanceMonitor,
    _public_key_to_tron_address,
    sun_to_trx,
)


class _Config:
    def __init__(self, period):
        self._period = period

    def balance_poll_period(self):
        return self._period


class _Keystore:
    def __init__(self, keys):
        self._keys = list(keys)

    def accounts(self):
        return list(self._keys)


class _FailingKeystore:
    def accounts(self):
        raise OSError("keystore unavailable")


class _Client:
    def __init__(self, balances):
        self.balances = balances
        self.calls = 0

    def get_account(self, address):
        self.calls += 1
        if address not in self.balances:
            raise LookupError("address not found")
        return SimpleNamespace(balance=self.balances[address])


def _public_key_hex():
    return "04" + os.urandom(64).hex()


def _setup():
    keys = [_public_key_hex() for _ in range(3)]
    accounts = [_public_key_to_tron_address(k) for k in keys]
    bals = [0, 1, 1_000_000]
    client = _Client(dict(zip(accounts, bals)))
    expected = list(zip(accounts, ["0.000000", "0.000001", "1.000000"]))
    return keys, accounts, client, expected


def test_update_balances_reports_each_account():
    keys, _, client, expected = _setup()
    got = []
    monitor = BalanceMonitor(
        "Chainlinktest-42",
        _Config(timedelta(seconds=1)),
        _Keystore(keys),
        lambda: client,
        update=lambda acc, sun: got.append((acc, f"{sun_to_trx(sun):.6f}")),
    )
    monitor.update_balances()
    assert got == expected


def test_balance_monitor_polls_in_background():
    keys, _, client, expected = _setup()
    got = []
    done = threading.Event()
    lock = threading.Lock()

    def update(acc, sun):
        with lock:
            if done.is_set():
                return
            got.append((acc, f"{sun_to_trx(sun):.6f}"))
            if len(got) == len(expected):
                done.set()

    monitor = BalanceMonitor(
        "Chainlinktest-42",
        _Config(timedelta(milliseconds=20)),
        _Keystore(keys),
        lambda: client,
        update=update,
        reader=client,
    )
    monitor.start()
    try:
        assert done.wait(5)
    finally:
        monitor.close()
    assert got == expected


def test_tron_address_format():
    address = _public_key_to_tron_address(_public_key_hex())
    assert address.startswith("T")
    assert len(address) == 34


def test_tron_address_accepts_key_without_prefix():
    raw = os.urandom(64).hex()
    assert _public_key_to_tron_address(raw) == _public_key_to_tron_address("04" + raw)


def test_bad_keys_and_failed_lookups_are_skipped():
    keys, accounts, client, _ = _setup()
    unknown = _public_key_hex()
    got = []
    monitor = BalanceMonitor(
        "c",
        _Config(timedelta(seconds=1)),
        _Keystore(["not-hex", unknown] + keys[2:]),
        lambda: client,
        update=lambda acc, sun: got.append((acc, sun)),
    )
    monitor.update_balances()
    assert got == [(accounts[2], 1_000_000)]
    assert monitor.reader is client


def test_reader_is_dropped_when_no_balance_was_read():
    client = _Client({})
    created = []

    def new_reader():
        created.append(client)
        return client

    monitor = BalanceMonitor("c", _Config(timedelta(seconds=1)), _Keystore([_public_key_hex()]), new_reader)
    monitor.update_balances()
    assert monitor.reader is None
    monitor.update_balances()
    assert len(created) == 2


def test_keystore_failure_reports_nothing():
    got = []
    monitor = BalanceMonitor(
        "c",
        _Config(timedelta(seconds=1)),
        _FailingKeystore(),
        lambda: _Client({}),
        update=lambda acc, sun: got.append(acc),
    )
    monitor.update_balances()
    assert got == []
    assert monitor.reader is None


def test_reader_factory_failure_reports_nothing():
    def new_reader():
        raise ConnectionError("no node")

    got = []
    monitor = BalanceMonitor(
        "c", _Config(timedelta(seconds=1)), _Keystore([_public_key_hex()]), new_reader,
        update=lambda acc, sun: got.append(acc),
    )
    monitor.update_balances()
    assert got == []


def test_lifecycle_and_health():
    monitor = BalanceMonitor("c", _Config(timedelta(seconds=60)), _Keystore([]), lambda: _Client({}))
    assert monitor.name().endswith("BalanceMonitor")
    assert isinstance(monitor.health_report()[monitor.name()], RuntimeError)
    with pytest.raises(RuntimeError):
        monitor.close()
    monitor.start()
    assert monitor.health_report() == {monitor.name(): None}
    with pytest.raises(RuntimeError):
        monitor.start()
    monitor.close()
    with pytest.raises(RuntimeError):
        monitor.close()


@pytest.mark.parametrize(
    "sun, expected",
    [
        (0, 0),
        (1_000_000, 1),
        (1_500_000, 1.5),
        (1_000_000_000_000, 1_000_000),
    ],
)
def test_update_prom(sun, expected):
    monitor = BalanceMonitor("testChainID", _Config(timedelta(seconds=1)), _Keystore([]), lambda: None)
    address = "TJRabPrwbZy45sbavfcjinPJC18kjpRTv8"
    TRON_BALANCE.reset()
    monitor.update_prom(address, sun)
    assert TRON_BALANCE.get(address, "testChainID", "tron", "TRX") == expected


def test_gauge_reset_and_unknown_labels():
    gauge = BalanceGauge("g", "help")
    gauge.set("acct", "chain", "tron", "TRX", 2.5)
    assert gauge.get("acct", "chain", "tron", "TRX") == 2.5
    assert gauge.get("other", "chain", "tron", "TRX") == 0.0
    gauge.reset()
    assert gauge.get("acct", "chain", "tron", "TRX") == 0.0


def test_update_prom_uses_given_gauge():
    gauge = BalanceGauge("g", "help")
    monitor = BalanceMonitor("id", _Config(timedelta(seconds=1)), _Keystore([]), lambda: None, gauge=gauge)
    monitor.update_prom("acct", 2_000_000)
    assert gauge.get("acct", "id", "tron", "TRX") == 2.0