"""Value types shared by the OCR2 readers, caches and transmitter."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

DIGEST_LENGTH = 32
ZERO_DIGEST = bytes(DIGEST_LENGTH)
# The zero instant: what an unset timestamp holds.
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


def _digest(value: bytes | bytearray, what: str) -> bytes:
    value = bytes(value)
    if len(value) != DIGEST_LENGTH:
        raise ValueError(f"{what} must be {DIGEST_LENGTH} bytes, got {len(value)}")
    return value


@dataclass
class OffchainContractConfig:
    """A contract configuration as the OCR protocol sees it."""

    config_digest: bytes = ZERO_DIGEST
    config_count: int = 0
    signers: list[bytes] = field(default_factory=list)
    transmitters: list[str] = field(default_factory=list)
    f: int = 0
    onchain_config: bytes = b""
    offchain_config_version: int = 0
    offchain_config: bytes = b""

    def __post_init__(self) -> None:
        self.config_digest = _digest(self.config_digest, "config_digest")


@dataclass
class ContractConfig:
    """A contract configuration together with the block it was set in."""

    config: OffchainContractConfig = field(default_factory=OffchainContractConfig)
    config_block: int = 0


@dataclass
class ContractConfigDetails:
    """The block and digest of the latest configuration."""

    block: int = 0
    digest: bytes = ZERO_DIGEST

    def __post_init__(self) -> None:
        self.digest = _digest(self.digest, "digest")


@dataclass
class TransmissionDetails:
    """Details of the latest report transmitted to the aggregator."""

    digest: bytes = ZERO_DIGEST
    epoch: int = 0
    round: int = 0
    latest_answer: int = 0
    latest_timestamp: datetime = ZERO_TIME

    def __post_init__(self) -> None:
        self.digest = _digest(self.digest, "digest")


@dataclass
class BillingDetails:
    """Per-observation and per-transmission payments in gjuels."""

    observation_payment_gjuels: int = 0
    transmission_payment_gjuels: int = 0


@dataclass
class RoundData:
    """The latest round as reported by the aggregator."""

    round_id: int = 0
    answer: int = 0
    started_at: datetime = ZERO_TIME
    updated_at: datetime = ZERO_TIME


@dataclass
class NewTransmissionEvent:
    """A decoded NewTransmission event."""

    round_id: int = 0
    latest_answer: int = 0
    transmitter: str | None = None
    latest_timestamp: datetime = ZERO_TIME
    observers: list[int] = field(default_factory=list)
    observations_len: int = 0
    observations: list[int] = field(default_factory=list)
    juels_per_fee_coin: int = 0
    gas_price: int = 0
    config_digest: bytes = ZERO_DIGEST
    epoch: int = 0
    round: int = 0
    reimbursement: int = 0

    def __post_init__(self) -> None:
        self.config_digest = _digest(self.config_digest, "config_digest")