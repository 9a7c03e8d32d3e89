"""Services bundling the config tracker, digester, caches and transmitter for one contract."""

from __future__ import annotations

import enum
import logging
import threading
from typing import Any, Callable

from .caches import CacheError, ContractCache, TransmissionsCache
from .contract_reader import ContractReader
from .digester import DigestError, OffchainConfigDigester, _to_evm_address
from .ocr2_reader import OCR2Reader
from .transmitter import ContractTransmitter


class ServiceStateError(Exception):
    """A service could not change state, or is not in a healthy state."""


class _State(enum.Enum):
    UNSTARTED = "Unstarted"
    STARTED = "Started"
    START_FAILED = "StartFailed"
    STOPPED = "Stopped"
    STOP_FAILED = "StopFailed"


class _Lifecycle:
    """Allows a service to start once and stop once."""

    def __init__(self) -> None:
        self._state = _State.UNSTARTED
        self._lock = threading.Lock()

    def start_once(self, name: str, begin: Callable[[], None]) -> None:
        with self._lock:
            if self._state is not _State.UNSTARTED:
                raise ServiceStateError(
                    f"{name} has already been started once; state={self._state.value}"
                )
            try:
                begin()
            except Exception:
                self._state = _State.START_FAILED
                raise
            self._state = _State.STARTED

    def stop_once(self, name: str, end: Callable[[], None]) -> None:
        with self._lock:
            if self._state is not _State.STARTED:
                raise ServiceStateError(
                    f"{name} cannot be stopped from this state; state={self._state.value}"
                )
            try:
                end()
            except Exception:
                self._state = _State.STOP_FAILED
                raise
            self._state = _State.STOPPED

    def healthy(self) -> Exception | None:
        state = self._state
        if state is _State.STARTED:
            return None
        if state is _State.UNSTARTED:
            return ServiceStateError("service has not been started")
        return ServiceStateError(f"service is not running; state={state.value}")


class ConfigProvider:
    """Tracks an aggregator's configuration and digests it."""

    def __init__(
        self,
        chain_id: int,
        contract_address: bytes,
        reader: Any,
        config: Any,
        logger: logging.Logger | None = None,
    ) -> None:
        parent = logger or logging.getLogger("tronrelay")
        self._log = parent.getChild("ConfigProvider")
        ocr2_reader = OCR2Reader(reader, self._log)
        self.reader = ContractReader(contract_address, ocr2_reader, self._log)
        self.contract_cache = ContractCache(config, self.reader, self._log)
        try:
            evm_address = _to_evm_address(contract_address)
        except ValueError as exc:
            raise DigestError(str(exc)) from exc
        self._digester = OffchainConfigDigester(chain_id, evm_address, self._log)
        self._lifecycle = _Lifecycle()

    def name(self) -> str:
        return self._log.name

    def start(self) -> None:
        def begin() -> None:
            self._log.debug("Config provider starting")
            self.contract_cache.start()

        self._lifecycle.start_once("ConfigProvider", begin)

    def close(self) -> None:
        def end() -> None:
            self._log.debug("Config provider stopping")
            self.contract_cache.close()

        self._lifecycle.stop_once("ConfigProvider", end)

    def health_report(self) -> dict[str, Exception | None]:
        return {self.name(): self._lifecycle.healthy()}

    def contract_config_tracker(self) -> ContractCache:
        return self.contract_cache

    def offchain_config_digester(self) -> OffchainConfigDigester:
        return self._digester


class MedianProvider:
    """Everything a median reporting plugin needs for one aggregator.

    It shares the name and start/stop state of the config provider it extends.
    """

    def __init__(
        self,
        config: Any,
        median_contract: Any,
        config_provider: ConfigProvider,
        contract_address: bytes,
        sender_address: bytes,
        txm: Any,
        logger: logging.Logger | None = None,
    ) -> None:
        parent = logger or logging.getLogger("tronrelay")
        log = parent.getChild("MedianProvider")
        self._config_provider = config_provider
        self.transmissions_cache = TransmissionsCache(config, median_contract, log)
        self._transmitter = ContractTransmitter(
            self.transmissions_cache, contract_address, sender_address, txm, log
        )

    def name(self) -> str:
        return self._config_provider.name()

    def start(self) -> None:
        """Start both the contract cache and the transmissions cache."""

        def begin() -> None:
            self._config_provider._log.debug("Median provider starting")
            try:
                self._config_provider.contract_cache.start()
            except CacheError as exc:
                raise ServiceStateError(f"couldn't start contractCache: {exc}") from exc
            self.transmissions_cache.start()

        self._config_provider._lifecycle.start_once("MedianProvider", begin)

    def close(self) -> None:
        """Stop both the contract cache and the transmissions cache."""

        def end() -> None:
            self._config_provider._log.debug("Median provider stopping")
            try:
                self._config_provider.contract_cache.close()
            except CacheError as exc:
                raise ServiceStateError(f"couldn't stop contractCache: {exc}") from exc
            self.transmissions_cache.close()

        self._config_provider._lifecycle.stop_once("MedianProvider", end)

    def health_report(self) -> dict[str, Exception | None]:
        return {self.name(): self._config_provider._lifecycle.healthy()}

    def contract_transmitter(self) -> ContractTransmitter:
        return self._transmitter

    def median_contract(self) -> TransmissionsCache:
        return self.transmissions_cache

    def contract_config_tracker(self) -> ContractCache:
        return self._config_provider.contract_config_tracker()

    def offchain_config_digester(self) -> OffchainConfigDigester:
        return self._config_provider.offchain_config_digester()


class PluginProvider:
    """A generic plugin provider built around a config provider."""

    def __init__(
        self,
        chain_reader: Any,
        codec: Any,
        contract_transmitter: Any,
        config_provider: Any,
        logger: logging.Logger | None = None,
    ) -> None:
        self._chain_reader = chain_reader
        self._codec = codec
        self._transmitter = contract_transmitter
        self._config_provider = config_provider
        self._log = logger or logging.getLogger("tronrelay")

    def name(self) -> str:
        return self._log.name

    def ready(self) -> None:
        return None

    def health_report(self) -> dict[str, Exception | None]:
        report: dict[str, Exception | None] = {self.name(): self.ready()}
        report.update(self._config_provider.health_report())
        return report

    def contract_transmitter(self) -> Any:
        return self._transmitter

    def offchain_config_digester(self) -> Any:
        return self._config_provider.offchain_config_digester()

    def contract_config_tracker(self) -> Any:
        return self._config_provider.contract_config_tracker()

    def contract_reader(self) -> Any:
        return self._chain_reader

    def codec(self) -> Any:
        return self._codec

    def start(self) -> None:
        self._config_provider.start()

    def close(self) -> None:
        self._config_provider.close()