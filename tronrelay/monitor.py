"""Periodic reporting of the TRX balance of every keystore account."""

from __future__ import annotations

import hashlib
import logging
import random
import threading
from datetime import timedelta
from typing import Any, Callable, Protocol

from Crypto.Hash import keccak

_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_TRON_ADDRESS_PREFIX = b"\x41"
_SERVICE = "TronBalanceMonitor"


class _Config(Protocol):
    def balance_poll_period(self) -> timedelta: ...


class _Keystore(Protocol):
    def accounts(self) -> list[str]: ...


class _BalanceClient(Protocol):
    def get_account(self, address: str) -> Any: ...


def sun_to_trx(sun: int) -> float:
    """Convert SUN to TRX (1 TRX = 1,000,000 SUN)."""
    return sun / 1_000_000


def _base58check(payload: bytes) -> str:
    data = payload + hashlib.sha256(hashlib.sha256(payload).digest()).digest()[:4]
    number = int.from_bytes(data, "big")
    chars = []
    while number:
        number, rem = divmod(number, 58)
        chars.append(_BASE58_ALPHABET[rem])
    leading = len(data) - len(data.lstrip(b"\x00"))
    return "1" * leading + "".join(reversed(chars))


def _public_key_to_tron_address(public_key_hex: str) -> str:
    """Derive the base58 Tron address of an uncompressed secp256k1 public key."""
    text = public_key_hex[2:] if public_key_hex.startswith("0x") else public_key_hex
    key = bytes.fromhex(text)
    if len(key) == 65 and key[0] == 0x04:
        key = key[1:]
    if len(key) != 64:
        raise ValueError(f"expected an uncompressed public key, got {len(key)} bytes")
    digest = keccak.new(digest_bits=256, data=key).digest()
    return _base58check(_TRON_ADDRESS_PREFIX + digest[12:])


def _with_jitter(period: timedelta) -> float:
    return period.total_seconds() * random.uniform(0.9, 1.1)


class BalanceGauge:
    """A labelled gauge holding one value per label combination."""

    def __init__(self, name: str, help_text: str) -> None:
        self.name = name
        self.help = help_text
        self._values: dict[tuple[str, str, str, str], float] = {}
        self._lock = threading.Lock()

    def set(self, account: str, chain_id: str, chain_set: str, denomination: str, value: float) -> None:
        with self._lock:
            self._values[(account, chain_id, chain_set, denomination)] = float(value)

    def get(self, account: str, chain_id: str, chain_set: str, denomination: str) -> float:
        """The current value; a label set never written reads as 0."""
        with self._lock:
            return self._values.get((account, chain_id, chain_set, denomination), 0.0)

    def reset(self) -> None:
        with self._lock:
            self._values.clear()


TRON_BALANCE = BalanceGauge("tron_balance", "Tron account balances")


class BalanceMonitor:
    """A service that polls the balance of every keystore account and publishes it."""

    def __init__(
        self,
        chain_id: str,
        config: _Config,
        keystore: _Keystore,
        new_reader: Callable[[], _BalanceClient],
        *,
        logger: logging.Logger | None = None,
        update: Callable[[str, int], None] | None = None,
        reader: _BalanceClient | None = None,
        gauge: BalanceGauge | None = None,
    ) -> None:
        parent = logger or logging.getLogger("tronrelay")
        self._log = parent.getChild("BalanceMonitor")
        self.chain_id = chain_id
        self._config = config
        self._keystore = keystore
        self._new_reader = new_reader
        self._update = update or self.update_prom
        self.reader = reader
        self._gauge = gauge or TRON_BALANCE
        self._state_lock = threading.Lock()
        self._started = False
        self._stopped = False
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def name(self) -> str:
        return self._log.name

    def start(self) -> None:
        """Start polling in a background thread; a monitor starts only once."""
        with self._state_lock:
            if self._started:
                raise RuntimeError(f"{_SERVICE} has already been started")
            self._started = True
            self._thread = threading.Thread(target=self._run, name=self.name(), daemon=True)
            self._thread.start()

    def close(self) -> None:
        """Stop polling and wait for the background thread to finish."""
        with self._state_lock:
            if not self._started:
                raise RuntimeError(f"{_SERVICE} cannot be stopped: it was never started")
            if self._stopped:
                raise RuntimeError(f"{_SERVICE} has already been stopped")
            self._stopped = True
        self._stop.set()
        if self._thread is not None:
            self._thread.join()

    def health_report(self) -> dict[str, Exception | None]:
        healthy = self._started and not self._stopped
        error = None if healthy else RuntimeError(f"{_SERVICE} is not started")
        return {self.name(): error}

    def _run(self) -> None:
        while not self._stop.wait(_with_jitter(self._config.balance_poll_period())):
            self.update_balances()

    def _get_reader(self) -> _BalanceClient:
        if self.reader is None:
            self.reader = self._new_reader()
        return self.reader

    def update_balances(self) -> None:
        """Fetch and publish the balance of every account; failures are logged."""
        try:
            keys = self._keystore.accounts()
        except Exception as exc:
            self._log.error("Failed to get keys: %s", exc)
            return
        if not keys:
            return
        try:
            reader = self._get_reader()
        except Exception as exc:
            self._log.error("Failed to get client: %s", exc)
            return

        got_some = False
        for key in keys:
            if self._stop.is_set():
                return
            try:
                address = _public_key_to_tron_address(key)
            except ValueError as exc:
                self._log.error("Failed to decode public key %s from keystore: %s", key, exc)
                continue
            try:
                response = reader.get_account(address)
            except Exception as exc:
                self._log.warning(
                    "Failed to get account info, account %s may have no funds: %s", address, exc
                )
                continue
            got_some = True
            self._update(address, response.balance)

        if not got_some:
            # Try a new client next time.
            self.reader = None

    def update_prom(self, account: str, sun: int) -> None:
        """Publish a balance, given in SUN, as TRX."""
        self._gauge.set(account, self.chain_id, "tron", "TRX", sun_to_trx(sun))