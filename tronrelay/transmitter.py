"""Submission of OCR2 reports to an aggregator contract through the transaction manager."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

from .digester import _to_evm_address, keccak256
from .monitor import _base58check
from .types import DIGEST_LENGTH, TransmissionDetails

TRANSMIT_METHOD = "transmit(bytes32[3],bytes,bytes32[],bytes32[],bytes32)"
MAX_SIGNATURES = 32
SIGNATURE_LENGTH = 65


class TransmitError(Exception):
    """A report could not be transmitted, or transmission state could not be read."""


class _TransmissionsSource(Protocol):
    def latest_transmission_details(self) -> TransmissionDetails: ...


class _TxManager(Protocol):
    def enqueue(self, request: TransmitRequest) -> Any: ...


@dataclass(frozen=True)
class ReportContext:
    """The digest, epoch and round a report belongs to, with the extra hash."""

    config_digest: bytes
    epoch: int
    round: int
    extra_hash: bytes = bytes(DIGEST_LENGTH)

    def __post_init__(self) -> None:
        if len(self.config_digest) != DIGEST_LENGTH:
            raise ValueError("config_digest must be 32 bytes")
        if len(self.extra_hash) != DIGEST_LENGTH:
            raise ValueError("extra_hash must be 32 bytes")
        if not 0 <= self.epoch < 2**32:
            raise ValueError(f"epoch {self.epoch} does not fit in uint32")
        if not 0 <= self.round < 2**8:
            raise ValueError(f"round {self.round} does not fit in uint8")


@dataclass(frozen=True)
class AttributedOnchainSignature:
    """A 65-byte signature and the index of the oracle that made it."""

    signature: bytes
    signer: int


@dataclass
class TransmitRequest:
    """A contract call handed to the transaction manager."""

    from_address: bytes
    contract_address: bytes
    method: str
    params: list = field(default_factory=list)


def raw_report_context(report_context: ReportContext) -> list[bytes]:
    """The three 32-byte words of the report context as passed on chain."""
    epoch_and_round = (
        bytes(27) + report_context.epoch.to_bytes(4, "big") + bytes([report_context.round])
    )
    return [bytes(report_context.config_digest), epoch_and_round, bytes(report_context.extra_hash)]


def split_signature(signature: bytes) -> tuple[bytes, bytes, int]:
    """Split a 65-byte signature into r, s and v."""
    signature = bytes(signature)
    if len(signature) != SIGNATURE_LENGTH:
        raise ValueError("SplitSignature: wrong size")
    return signature[:32], signature[32:64], signature[64]


def _checksum_address(evm_address: bytes) -> str:
    lower = evm_address.hex()
    hashed = keccak256(lower.encode()).hex()
    return "0x" + "".join(
        char.upper() if int(nibble, 16) >= 8 else char for char, nibble in zip(lower, hashed)
    )


class ContractTransmitter:
    """Sends reports to the aggregator's transmit method."""

    def __init__(
        self,
        transmissions_cache: _TransmissionsSource,
        contract_address: bytes,
        sender_address: bytes,
        txm: _TxManager,
        logger: logging.Logger | None = None,
    ) -> None:
        parent = logger or logging.getLogger("tronrelay")
        self._log = parent.getChild("OCRContractTransmitter")
        self._cache = transmissions_cache
        self.contract_address = bytes(contract_address)
        self.sender_address = bytes(sender_address)
        self._txm = txm
        self._exclude_signatures = False
        self._ethereum_keystore = False
        self.running = False

    def with_exclude_signatures(self) -> ContractTransmitter:
        """Leave signatures out of the transmitted payload."""
        self._exclude_signatures = True
        return self

    def with_ethereum_keystore(self) -> ContractTransmitter:
        """Expose the sender as an EVM address rather than a Tron address."""
        self._ethereum_keystore = True
        return self

    def transmit(
        self,
        report_context: ReportContext,
        report: bytes,
        signatures: Iterable[AttributedOnchainSignature],
    ) -> None:
        """Queue a call of the contract's transmit method carrying the report."""
        signatures = list(signatures)
        if len(signatures) > MAX_SIGNATURES:
            raise TransmitError(f"too many signatures, maximum is {MAX_SIGNATURES}")
        raw_context = raw_report_context(report_context)

        rs: list[bytes] = []
        ss: list[bytes] = []
        vs = bytearray(32)
        for i, attributed in enumerate(signatures):
            r, s, v = split_signature(attributed.signature)
            if not self._exclude_signatures:
                rs.append(r)
                ss.append(s)
                vs[i] = v

        self._log.debug(
            "Transmitting report: report=%s rawReportCtx=%s contractAddress=%s",
            bytes(report).hex(),
            [word.hex() for word in raw_context],
            self.contract_address.hex(),
        )
        params = [
            "bytes32[3]", raw_context,
            "bytes", bytes(report),
            "bytes32[]", rs,
            "bytes32[]", ss,
            "bytes32", bytes(vs),
        ]
        self._txm.enqueue(
            TransmitRequest(
                from_address=self.sender_address,
                contract_address=self.contract_address,
                method=TRANSMIT_METHOD,
                params=params,
            )
        )

    def latest_config_digest_and_epoch(self) -> tuple[bytes, int]:
        try:
            details = self._cache.latest_transmission_details()
        except Exception as exc:
            raise TransmitError(f"couldn't fetch latest transmission details: {exc}") from exc
        return details.digest, details.epoch

    def from_account(self) -> str:
        """The account the transmitter sends from, as a Tron or EVM address."""
        evm = _to_evm_address(self.sender_address)
        if self._ethereum_keystore:
            return _checksum_address(evm)
        return _base58check(b"\x41" + evm)

    def start(self) -> bool:
        """Mark the transmitter as running; it has nothing else to start."""
        self.running = True
        return self.running

    def close(self) -> bool:
        """Mark the transmitter as stopped; it holds no resources."""
        self.running = False
        return self.running

    def ready(self) -> bool:
        """Always ready: the transmitter has no lifecycle of its own."""
        return self.health_report()[self.name()] is None

    def health_report(self) -> dict[str, Exception | None]:
        return {self.name(): None}

    def name(self) -> str:
        return self._log.name