"""Contract calls and event lookups against a Tron node, decoding ABI-encoded results."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from Crypto.Hash import keccak

_WORD = 32
_MAX_INT32 = 2**31 - 1
_ZERO_ADDRESS = b"\x41" + bytes(20)
_TRIGGER_SMART_CONTRACT = "type.googleapis.com/protocol.TriggerSmartContract"


class ReaderError(Exception):
    """A contract call or event lookup failed."""


class _CombinedClient(Protocol):
    def get_contract(self, address: bytes) -> dict: ...

    def trigger_constant_contract(
        self, from_address: bytes, contract_address: bytes, method: str, params: list | None
    ) -> dict: ...

    def trigger_constant_contract_full_node(
        self, from_address: bytes, contract_address: bytes, method: str, params: list | None
    ) -> dict: ...

    def get_now_block(self) -> dict: ...

    def get_block_by_num(self, num: int) -> dict: ...

    def get_transaction_info_by_id(self, tx_id: str) -> dict: ...


def event_topic_hash(signature: str) -> str:
    """The topic of an event: the hex keccak-256 hash of its signature, without a 0x prefix."""
    return keccak.new(digest_bits=256, data=signature.encode()).hexdigest()


def _split_array(type_name: str) -> tuple[str, int | None]:
    bracket = type_name.rindex("[")
    size = type_name[bracket + 1 : -1]
    return type_name[:bracket], int(size) if size else None


def _is_dynamic(type_name: str) -> bool:
    if type_name.endswith("]"):
        inner, length = _split_array(type_name)
        return length is None or _is_dynamic(inner)
    return type_name in ("bytes", "string")


def _static_size(type_name: str) -> int:
    if type_name.endswith("]"):
        inner, length = _split_array(type_name)
        return (length or 0) * _static_size(inner)
    return _WORD


def _read_word(data: bytes, offset: int = 0) -> bytes:
    word = data[offset : offset + _WORD]
    if len(word) < _WORD:
        raise ValueError("abi: data too short")
    return word


def _decode_static(type_name: str, word: bytes) -> Any:
    if type_name in ("address", "trcToken") or type_name.startswith(("uint", "int", "bytes", "bool")):
        pass
    else:
        raise ValueError(f"abi: unsupported type {type_name!r}")
    if type_name == "address":
        return word[12:]
    if type_name == "bool":
        return word != bytes(_WORD)
    if type_name == "trcToken" or type_name.startswith("uint"):
        return int.from_bytes(word, "big")
    if type_name.startswith("int"):
        return int.from_bytes(word, "big", signed=True)
    size = int(type_name[len("bytes") :])
    if not 1 <= size <= _WORD:
        raise ValueError(f"abi: unsupported type {type_name!r}")
    return word[:size]


def _decode_value(type_name: str, data: bytes) -> Any:
    if type_name.endswith("]"):
        inner, length = _split_array(type_name)
        if length is None:
            length = int.from_bytes(_read_word(data), "big")
            data = data[_WORD:]
        return _decode_tuple([inner] * length, data)
    if type_name in ("bytes", "string"):
        length = int.from_bytes(_read_word(data), "big")
        content = data[_WORD : _WORD + length]
        if len(content) < length:
            raise ValueError("abi: data too short")
        return content.decode() if type_name == "string" else bytes(content)
    return _decode_static(type_name, _read_word(data))


def _decode_tuple(types: list[str], data: bytes) -> list[Any]:
    values = []
    head = 0
    for type_name in types:
        if _is_dynamic(type_name):
            offset = int.from_bytes(_read_word(data, head), "big")
            if offset > len(data):
                raise ValueError("abi: offset out of range")
            values.append(_decode_value(type_name, data[offset:]))
            head += _WORD
        else:
            values.append(_decode_value(type_name, data[head:]))
            head += _static_size(type_name)
    return values


def _unpack_into_dict(arguments: list[dict], data: bytes) -> dict[str, Any]:
    arguments = [arg for arg in arguments if not arg.get("indexed")]
    values = _decode_tuple([arg["type"] for arg in arguments], data)
    return {arg.get("name", ""): value for arg, value in zip(arguments, values)}


def _find_entry(abi: dict | None, name: str) -> dict:
    for entry in (abi or {}).get("entrys") or []:
        if entry.get("name") == name:
            return entry
    raise ReaderError(f"method {name} not found in abi")


def _signature(entry: dict) -> str:
    types = ",".join(arg["type"] for arg in entry.get("inputs") or [])
    return f"{entry['name']}({types})"


class Reader:
    """Calls constant contract methods and reads contract events through a combined node client."""

    def __init__(self, client: _CombinedClient, logger: logging.Logger | None = None) -> None:
        self._client = client
        self._log = logger or logging.getLogger("tronrelay")
        self._abis: dict[str, dict] = {}

    def base_client(self) -> _CombinedClient:
        return self._client

    def _contract_abi(self, contract_address: bytes) -> dict:
        key = bytes(contract_address).hex()
        if key in self._abis:
            return self._abis[key]
        try:
            response = self._client.get_contract(contract_address)
        except Exception as exc:
            raise ReaderError(f"failed to get contract ABI: {exc}") from exc
        abi = response.get("abi") or {}
        self._abis[key] = abi
        return abi

    def _call(self, trigger, contract_address: bytes, method: str, params: list | None) -> dict[str, Any]:
        try:
            abi = self._contract_abi(contract_address)
        except ReaderError as exc:
            raise ReaderError(f"error fetching abi: {exc}") from exc
        try:
            entry = _find_entry(abi, method)
        except ReaderError as exc:
            raise ReaderError(f"failed to get method sighash: {exc}") from exc

        try:
            response = trigger(_ZERO_ADDRESS, contract_address, _signature(entry), params)
        except Exception as exc:
            raise ReaderError(f"failed to call triggerconstantcontract: {exc}") from exc
        succeeded = bool((response.get("result") or {}).get("result"))
        results = response.get("constant_result") or []
        if not succeeded or not results:
            raise ReaderError(f"failed to call contract: res={response!r}")

        try:
            data = bytes.fromhex(results[0])
        except ValueError as exc:
            raise ReaderError(f"failed to decode constant result: {exc}") from exc
        try:
            return _unpack_into_dict(entry.get("outputs") or [], data)
        except (ValueError, KeyError) as exc:
            raise ReaderError(f"failed to unpack result: {exc}") from exc

    def call_contract(self, contract_address: bytes, method: str, params: list | None) -> dict[str, Any]:
        """Call a constant method against the solidified state and decode its outputs by name."""
        return self._call(self._client.trigger_constant_contract, contract_address, method, params)

    def call_contract_full_node(
        self, contract_address: bytes, method: str, params: list | None
    ) -> dict[str, Any]:
        """Like call_contract, but against the full node's non-finalized state."""
        return self._call(
            self._client.trigger_constant_contract_full_node, contract_address, method, params
        )

    def latest_block_height(self) -> int:
        try:
            block = self._client.get_now_block()
        except Exception as exc:
            raise ReaderError(f"couldn't get latest block: {exc}") from exc
        return int(block["block_header"]["raw_data"]["number"])

    def get_events_from_block(
        self, contract_address: bytes, event_name: str, block_num: int
    ) -> list[dict[str, Any]]:
        """Decode every event of the given name that the contract emitted in a block."""
        if block_num > _MAX_INT32:
            raise ReaderError(f"block number {block_num} exceeds maximum int32 value")

        try:
            abi = self._contract_abi(contract_address)
            entry = _find_entry(abi, event_name)
        except ReaderError as exc:
            self._log.error("failed to look up event %s: %s", event_name, exc)
            raise
        topic = event_topic_hash(_signature(entry))

        try:
            block = self._client.get_block_by_num(block_num)
        except Exception as exc:
            self._log.error("failed to get block by number: %s", exc)
            raise ReaderError(f"failed to get block by number: {exc}") from exc

        address_hex = bytes(contract_address).hex()
        logs = []
        for tx in block.get("transactions") or []:
            contracts = (tx.get("raw_data") or {}).get("contract") or []
            if not contracts:
                continue
            parameter = contracts[0].get("parameter") or {}
            if parameter.get("type_url") != _TRIGGER_SMART_CONTRACT:
                continue
            if (parameter.get("value") or {}).get("contract_address") != address_hex:
                continue
            try:
                info = self._client.get_transaction_info_by_id(tx.get("txID", ""))
            except Exception as exc:
                self._log.error("failed to fetch transaction info: %s", exc)
                continue
            for log in info.get("log") or []:
                topics = log.get("topics") or []
                if topics and topics[0].lower().removeprefix("0x") == topic:
                    logs.append(log)

        events = []
        for log in logs:
            try:
                data = bytes.fromhex(log.get("data", ""))
            except ValueError as exc:
                raise ReaderError(f"failed to decode event data: {exc}") from exc
            try:
                events.append(_unpack_into_dict(entry.get("inputs") or [], data))
            except (ValueError, KeyError) as exc:
                raise ReaderError(f"failed to unpack event log: {exc}") from exc
        return events