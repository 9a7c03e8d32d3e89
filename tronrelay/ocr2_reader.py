"""Typed reads of an OCR2 aggregator contract."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from .monitor import _base58check
from .reader import Reader
from .types import (
    BillingDetails,
    ContractConfig,
    ContractConfigDetails,
    OffchainContractConfig,
    RoundData,
    TransmissionDetails,
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class OCR2ReaderError(Exception):
    """An aggregator read failed or returned values of the wrong shape."""


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _uint(bits: int) -> Callable[[Any], bool]:
    return lambda value: _is_int(value) and 0 <= value < (1 << bits)


def _bytes_of(length: int | None = None) -> Callable[[Any], bool]:
    return lambda value: isinstance(value, bytes) and (length is None or len(value) == length)


def _addresses(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(a, bytes) and len(a) == 20 for a in value)


def _expect(values: dict, key: str, type_name: str, check: Callable[[Any], bool], label: str | None = None) -> Any:
    value = values.get(key)
    if not check(value):
        raise OCR2ReaderError(
            f"expected {label or key} {value!r} to be of type {type_name}, got {type(value).__name__}"
        )
    return value


def _unix(seconds: int) -> datetime:
    try:
        return _EPOCH + timedelta(seconds=seconds)
    except OverflowError as exc:
        raise OCR2ReaderError(f"timestamp {seconds} is out of range") from exc


def _tron_address(evm_address: bytes) -> str:
    return _base58check(b"\x41" + evm_address)


class OCR2Reader:
    """Reads configuration, transmissions, rounds and billing from an OCR2 aggregator."""

    def __init__(self, reader: Reader, logger: logging.Logger | None = None) -> None:
        self._reader = reader
        self._log = logger or logging.getLogger("tronrelay")

    def base_reader(self) -> Reader:
        return self._reader

    def _call(self, address: bytes, method: str, *, full_node: bool = False, what: str = "couldn't call the contract") -> dict:
        call = self._reader.call_contract_full_node if full_node else self._reader.call_contract
        try:
            return call(address, method, None)
        except Exception as exc:
            raise OCR2ReaderError(f"{what}: {exc}") from exc

    def billing_details(self, address: bytes) -> BillingDetails:
        res = self._call(address, "getBilling", what="failed to call contract")
        observation = _expect(res, "observationPaymentGjuels", "uint32", _uint(32))
        transmission = _expect(res, "transmissionPaymentGjuels", "uint32", _uint(32))
        return BillingDetails(
            observation_payment_gjuels=observation,
            transmission_payment_gjuels=transmission,
        )

    def latest_config_details(self, address: bytes) -> ContractConfigDetails:
        res = self._call(address, "latestConfigDetails")
        block = _expect(res, "blockNumber", "uint32", _uint(32))
        digest = _expect(res, "configDigest", "bytes32", _bytes_of(32))
        return ContractConfigDetails(block=block, digest=digest)

    def latest_transmission_details(self, address: bytes) -> TransmissionDetails:
        # The full node's view is used so a transmission is seen before it is finalized,
        # which keeps rounds from retrying or duplicating transmits.
        res = self._call(address, "latestTransmissionDetails", full_node=True)
        digest = _expect(res, "configDigest", "bytes32", _bytes_of(32))
        epoch = _expect(res, "epoch", "uint32", _uint(32))
        round_ = _expect(res, "round", "uint8", _uint(8))
        answer = _expect(res, "latestAnswer_", "int", _is_int, label="latestAnswer")
        timestamp = _expect(res, "latestTimestamp_", "uint64", _uint(64), label="latestTimestamp")
        return TransmissionDetails(
            digest=digest,
            epoch=epoch,
            round=round_,
            latest_answer=answer,
            latest_timestamp=_unix(timestamp),
        )

    def latest_round_data(self, address: bytes) -> RoundData:
        res = self._call(address, "latestRoundData")
        round_id = _expect(res, "roundId", "int", _is_int)
        answer = _expect(res, "answer", "int", _is_int)
        started_at = _expect(res, "startedAt", "int", _is_int)
        updated_at = _expect(res, "updatedAt", "int", _is_int)
        return RoundData(
            round_id=round_id & 0xFFFFFFFF,
            answer=answer,
            started_at=_unix(started_at),
            updated_at=_unix(updated_at),
        )

    def link_available_for_payment(self, address: bytes) -> int:
        res = self._call(address, "linkAvailableForPayment")
        return _expect(res, "availableBalance", "int", _is_int)

    def config_from_event_at(self, address: bytes, block_num: int) -> ContractConfig:
        """Read the configuration from the single ConfigSet event emitted in a block."""
        try:
            events = self._reader.get_events_from_block(address, "ConfigSet", block_num)
        except Exception as exc:
            raise OCR2ReaderError(f"failed to fetch ConfigSet event logs: {exc}") from exc
        if len(events) != 1:
            raise OCR2ReaderError(
                f"expected to find at exactly one ConfigSet event in block {block_num} "
                f"for address {_base58check(bytes(address))} but found {len(events)}"
            )
        event = events[0]

        digest = _expect(event, "configDigest", "bytes32", _bytes_of(32))
        config_count = _expect(event, "configCount", "uint64", _uint(64))
        signers = _expect(event, "signers", "list of addresses", _addresses)
        transmitters = _expect(event, "transmitters", "list of addresses", _addresses)
        f = _expect(event, "f", "uint8", _uint(8))
        onchain_config = _expect(event, "onchainConfig", "bytes", _bytes_of())
        offchain_version = _expect(event, "offchainConfigVersion", "uint64", _uint(64))
        offchain_config = _expect(event, "offchainConfig", "bytes", _bytes_of())

        return ContractConfig(
            config=OffchainContractConfig(
                config_digest=digest,
                config_count=config_count,
                # EVM-format signer addresses, as recovered on chain.
                signers=[bytes(s) for s in signers],
                # Tron-format transmitter addresses, matching the transmitter's account.
                transmitters=[_tron_address(t) for t in transmitters],
                f=f,
                onchain_config=onchain_config,
                offchain_config_version=offchain_version,
                offchain_config=offchain_config,
            ),
            config_block=block_num,
        )