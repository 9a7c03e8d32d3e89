"""An aggregator contract bound to one address, seen as a config tracker and median contract."""

from __future__ import annotations

import logging
from datetime import timedelta

from .ocr2_reader import OCR2Reader
from .types import (
    ZERO_DIGEST,
    BillingDetails,
    ContractConfigDetails,
    OffchainContractConfig,
    TransmissionDetails,
)


class ContractReaderError(Exception):
    """A read of the bound aggregator contract failed."""


class ContractReader:
    """Reads configuration, transmissions and billing of one aggregator contract."""

    def __init__(
        self, address: bytes, reader: OCR2Reader, logger: logging.Logger | None = None
    ) -> None:
        self.address = bytes(address)
        self._reader = reader
        self._log = logger or logging.getLogger("tronrelay")

    def notify(self) -> None:
        """Configuration changes are not pushed; callers poll instead."""
        return None

    def latest_config_details(self) -> ContractConfigDetails:
        try:
            return self._reader.latest_config_details(self.address)
        except Exception as exc:
            raise ContractReaderError(f"couldn't get latest config details: {exc}") from exc

    def latest_config(self, changed_in_block: int) -> OffchainContractConfig:
        try:
            resp = self._reader.config_from_event_at(self.address, changed_in_block)
        except Exception as exc:
            raise ContractReaderError(f"couldn't get latest config: {exc}") from exc
        return resp.config

    def latest_block_height(self) -> int:
        return self._reader.base_reader().latest_block_height()

    def latest_transmission_details(self) -> TransmissionDetails:
        try:
            return self._reader.latest_transmission_details(self.address)
        except Exception as exc:
            raise ContractReaderError(f"couldn't get transmission details: {exc}") from exc

    def latest_round_requested(self, lookback: timedelta) -> tuple[bytes, int, int]:
        """Round requests are not tracked: always the zero digest, epoch 0 and round 0."""
        return ZERO_DIGEST, 0, 0

    def latest_billing_details(self) -> BillingDetails:
        try:
            return self._reader.billing_details(self.address)
        except Exception as exc:
            raise ContractReaderError(f"couldn't get billing details: {exc}") from exc