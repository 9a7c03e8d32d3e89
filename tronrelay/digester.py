"""Configuration digests for OCR2 aggregator contracts on Tron."""

from __future__ import annotations

import hashlib
import logging
from typing import Sequence

from Crypto.Hash import keccak

from .monitor import _BASE58_ALPHABET
from .types import DIGEST_LENGTH, OffchainContractConfig

CONFIG_DIGEST_PREFIX_EVM = 0x0001

_WORD = 32
_ADDRESS_LENGTH = 20
_TRON_PREFIX = 0x41
_HEAD_WORDS = 9


class DigestError(ValueError):
    """A configuration could not be encoded or digested."""


def keccak256(data: bytes) -> bytes:
    """The keccak-256 hash of data."""
    return keccak.new(digest_bits=256, data=bytes(data)).digest()


def _base58_decode_check(text: str) -> bytes:
    number = 0
    for char in text:
        index = _BASE58_ALPHABET.find(char)
        if index < 0:
            raise ValueError(f"invalid base58 character {char!r}")
        number = number * 58 + index
    body = number.to_bytes((number.bit_length() + 7) // 8, "big")
    leading = len(text) - len(text.lstrip("1"))
    data = bytes(leading) + body
    if len(data) < 5:
        raise ValueError("base58 data too short")
    payload, checksum = data[:-4], data[-4:]
    if hashlib.sha256(hashlib.sha256(payload).digest()).digest()[:4] != checksum:
        raise ValueError("base58 checksum mismatch")
    return payload


def _to_evm_address(address: bytes) -> bytes:
    """The 20-byte EVM form of a 20-byte address or a 0x41-prefixed 21-byte Tron address."""
    address = bytes(address)
    if len(address) == _ADDRESS_LENGTH:
        return address
    if len(address) == _ADDRESS_LENGTH + 1 and address[0] == _TRON_PREFIX:
        return address[1:]
    raise ValueError(f"invalid address {address.hex()}")


def _parse_tron_address(text: str) -> bytes:
    """Parse a base58, 41-prefixed hex or 0x-prefixed EVM hex address into its EVM form."""
    if len(text) == 34 and text.startswith("T"):
        return _to_evm_address(_base58_decode_check(text))
    body = text[2:] if text.lower().startswith("0x") else text
    try:
        raw = bytes.fromhex(body)
    except ValueError as exc:
        raise ValueError(f"invalid address {text!r}") from exc
    return _to_evm_address(raw)


def _uint_word(value: int, bits: int, name: str) -> bytes:
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value < (1 << bits):
        raise DigestError(f"abi: {name} {value!r} does not fit in uint{bits}")
    return value.to_bytes(_WORD, "big")


def _address_word(address: bytes, name: str) -> bytes:
    address = bytes(address)
    if len(address) != _ADDRESS_LENGTH:
        raise DigestError(f"abi: {name} must be a {_ADDRESS_LENGTH} byte address, got {len(address)}")
    return bytes(_WORD - _ADDRESS_LENGTH) + address


def _address_array(addresses: Sequence[bytes], name: str) -> bytes:
    words = [_address_word(a, name) for a in addresses]
    return len(words).to_bytes(_WORD, "big") + b"".join(words)


def _bytes_value(data: bytes) -> bytes:
    data = bytes(data)
    return len(data).to_bytes(_WORD, "big") + data + bytes(-len(data) % _WORD)


def encode_config_data(
    chain_id: int,
    contract_address: bytes,
    config_count: int,
    signers: Sequence[bytes],
    transmitters: Sequence[bytes],
    f: int,
    onchain_config: bytes,
    offchain_config_version: int,
    offchain_config: bytes,
) -> bytes:
    """ABI-encode the arguments of the on-chain config digest function."""
    parts: list[tuple[bool, bytes]] = [
        (False, _uint_word(chain_id, 256, "chainId")),
        (False, _address_word(contract_address, "contractAddress")),
        (False, _uint_word(config_count, 64, "configCount")),
        (True, _address_array(signers, "signer")),
        (True, _address_array(transmitters, "transmitter")),
        (False, _uint_word(f, 8, "f")),
        (True, _bytes_value(onchain_config)),
        (False, _uint_word(offchain_config_version, 64, "offchainConfigVersion")),
        (True, _bytes_value(offchain_config)),
    ]
    head = []
    tail = []
    offset = _HEAD_WORDS * _WORD
    for dynamic, encoded in parts:
        if dynamic:
            head.append(offset.to_bytes(_WORD, "big"))
            tail.append(encoded)
            offset += len(encoded)
        else:
            head.append(encoded)
    return b"".join(head) + b"".join(tail)


class OffchainConfigDigester:
    """Computes config digests the way a Tron OCR2 aggregator does.

    The chain id may exceed 64 bits, and transmitters are Tron-format addresses.
    """

    def __init__(
        self, chain_id: int, contract_address: bytes, logger: logging.Logger | None = None
    ) -> None:
        self.chain_id = chain_id
        try:
            self.contract_address = _to_evm_address(contract_address)
        except ValueError as exc:
            raise DigestError(str(exc)) from exc
        self._log = logger or logging.getLogger("tronrelay")

    def config_digest(self, config: OffchainContractConfig) -> bytes:
        signers = []
        for i, signer in enumerate(config.signers):
            signer = bytes(signer)
            if len(signer) != _ADDRESS_LENGTH:
                raise DigestError(
                    f"{i}-th signer should be a 20 byte hex address, but got {signer.hex()}"
                )
            signers.append(signer)

        # Transmitters are stored on chain as EVM addresses, but any Tron address form is accepted.
        transmitters = []
        for i, transmitter in enumerate(config.transmitters):
            try:
                transmitters.append(_parse_tron_address(transmitter))
            except ValueError as exc:
                raise DigestError(
                    f"{i}-th transmitter should be a valid Tron address string, but got '{transmitter}'"
                ) from exc

        packed = encode_config_data(
            self.chain_id,
            self.contract_address,
            config.config_count,
            signers,
            transmitters,
            config.f,
            config.onchain_config,
            config.offchain_config_version,
            config.offchain_config,
        )
        digest = bytearray(keccak256(packed))
        digest[:2] = CONFIG_DIGEST_PREFIX_EVM.to_bytes(2, "big")
        assert len(digest) == DIGEST_LENGTH
        return bytes(digest)

    def config_digest_prefix(self) -> int:
        return CONFIG_DIGEST_PREFIX_EVM