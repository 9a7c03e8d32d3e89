"""Background-refreshed caches of contract configuration and latest transmission."""

from __future__ import annotations

import dataclasses
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

from .monitor import _with_jitter
from .types import (
    ContractConfig,
    ContractConfigDetails,
    OffchainContractConfig,
    TransmissionDetails,
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class CacheError(Exception):
    """A cache could not be refreshed, or holds no fresh data."""


class _CacheConfig(Protocol):
    def ocr2_cache_poll_period(self) -> timedelta: ...

    def ocr2_cache_ttl(self) -> timedelta: ...


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def _unix_seconds(moment: datetime) -> int:
    return math.floor((_aware(moment) - _EPOCH).total_seconds())


class _PollingCache(ABC):
    _label = "cache"
    _initial_failure = "failed to populate cache: %s"
    _poll_failure = "failed to update cache: %s"

    def __init__(
        self,
        config: _CacheConfig,
        logger: logging.Logger | None,
        clock: Callable[[], float],
    ) -> None:
        self._config = config
        self._log = logger or logging.getLogger("tronrelay")
        self._clock = clock
        self._lock = threading.Lock()
        self._last_checked: float | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @abstractmethod
    def _refresh(self) -> None:
        """Fetch fresh data from the reader into the cache."""

    def _start(self) -> None:
        if self._thread is not None:
            raise CacheError(f"{self._label} has already been started")
        try:
            self._refresh()
        except CacheError as exc:
            self._log.warning(self._initial_failure, exc)
        self._thread = threading.Thread(target=self._poll, name=self._label, daemon=True)
        self._thread.start()

    def _close(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def _poll(self) -> None:
        while not self._stop.is_set():
            try:
                self._refresh()
            except CacheError as exc:
                self._log.error(self._poll_failure, exc)
            if self._stop.wait(_with_jitter(self._config.ocr2_cache_poll_period())):
                return

    def _assert_fresh(self) -> None:
        if self._last_checked is None:
            raise CacheError(f"{self._label} not yet initialized")
        since = self._clock() - self._last_checked
        if since > self._config.ocr2_cache_ttl().total_seconds():
            raise CacheError(f"{self._label} expired: checked last {timedelta(seconds=since)} ago")


class ContractCache(_PollingCache):
    """Caches the latest contract configuration and block height."""

    _label = "contract config cache"
    _initial_failure = "Failed to populate initial config: %s"
    _poll_failure = "Failed to update config: %s"

    def __init__(
        self,
        config: _CacheConfig,
        reader: Any,
        logger: logging.Logger | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(config, logger, clock)
        self._reader = reader
        self._contract_config = ContractConfig()
        self._block_height = 0

    def _refresh(self) -> None:
        self.update_config()

    def start(self) -> None:
        """Populate the cache once, then keep refreshing it in a background thread."""
        self._start()

    def close(self) -> None:
        """Stop the background refresh."""
        self._close()

    def update_config(self) -> None:
        """Refresh the block height, and the configuration when its block or digest changed."""
        try:
            details = self._reader.latest_config_details()
        except Exception as exc:
            raise CacheError(f"couldn't fetch latest config details: {exc}") from exc

        with self._lock:
            same = (
                self._contract_config.config_block == details.block
                and self._contract_config.config.config_digest == details.digest
            )

        new_config: OffchainContractConfig | None = None
        if not same:
            try:
                new_config = self._reader.latest_config(details.block)
            except Exception as exc:
                raise CacheError(f"couldn't fetch latest config: {exc}") from exc

        try:
            block_height = self._reader.latest_block_height()
        except Exception as exc:
            raise CacheError(f"failed to fetch latest block height: {exc}") from exc

        self._log.debug(
            "contract cache update: blockHeight=%s configBlock=%s configDigest=%s",
            block_height,
            details.block,
            details.digest.hex(),
        )

        with self._lock:
            self._last_checked = self._clock()
            self._block_height = block_height
            if new_config is not None:
                self._contract_config = ContractConfig(config=new_config, config_block=details.block)

    def notify(self) -> None:
        """Configuration changes are not pushed; callers poll instead."""
        return None

    def latest_config_details(self) -> ContractConfigDetails:
        with self._lock:
            self._assert_fresh()
            return ContractConfigDetails(
                block=self._contract_config.config_block,
                digest=self._contract_config.config.config_digest,
            )

    def latest_config(self, changed_in_block: int) -> OffchainContractConfig:
        with self._lock:
            self._assert_fresh()
            return self._contract_config.config

    def latest_block_height(self) -> int:
        with self._lock:
            self._assert_fresh()
            return self._block_height


class TransmissionsCache(_PollingCache):
    """Caches the details of the latest transmission to the aggregator."""

    _label = "transmissions cache"
    _initial_failure = "failed to populate initial transmission details: %s"
    _poll_failure = "Failed to update transmission: %s"

    def __init__(
        self,
        config: _CacheConfig,
        reader: Any,
        logger: logging.Logger | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(config, logger, clock)
        self._reader = reader
        self._details = TransmissionDetails()
        self._skipped = 0
        self._skipped_since: float | None = None

    @property
    def consecutive_skipped_transmissions(self) -> int:
        with self._lock:
            return self._skipped

    def _refresh(self) -> None:
        self.update_transmission()

    def start(self) -> None:
        """Populate the cache once, then keep refreshing it in a background thread."""
        self._start()

    def close(self) -> None:
        """Stop the background refresh."""
        self._close()

    def update_transmission(self) -> None:
        """Refresh the cached transmission, skipping ones not yet included in a block."""
        try:
            td = self._reader.latest_transmission_details()
        except Exception as exc:
            raise CacheError(f"couldn't fetch latest transmission details: {exc}") from exc

        with self._lock:
            now = self._clock()
            self._last_checked = now

            # A zero timestamp with a non-zero answer means the transmit has executed on the
            # full node but is not yet in a block; wait for it rather than caching a zero time.
            # A zero answer with it means nothing was transmitted yet, which is safe to cache.
            if _unix_seconds(td.latest_timestamp) == 0 and td.latest_answer != 0:
                if self._skipped == 0:
                    self._skipped_since = now
                elapsed = now - (self._skipped_since if self._skipped_since is not None else now)
                self._skipped += 1
                level = logging.WARNING if self._skipped > 1 else logging.DEBUG
                self._log.log(
                    level,
                    "transmission cache not updated: latestTimestamp is 0 "
                    "(consecutiveSkippedTransmissions=%d secondsSinceFirstSkipped=%.3f newTransmission=%r)",
                    self._skipped,
                    elapsed,
                    td,
                )
                return

            self._skipped = 0
            self._skipped_since = None
            since_last = (
                _aware(td.latest_timestamp) - _aware(self._details.latest_timestamp)
            ).total_seconds()
            self._details = td
            self._log.debug(
                "transmission cache update: secondsSinceLastCacheUpdate=%s details=%r",
                since_last,
                td,
            )

    def latest_transmission_details(self) -> TransmissionDetails:
        with self._lock:
            self._assert_fresh()
            return dataclasses.replace(self._details)

    def latest_round_requested(self, lookback: timedelta) -> tuple[bytes, int, int]:
        return self._reader.latest_round_requested(lookback)