"""Chain and node configuration with defaults, merging, validation and TOML output."""

from __future__ import annotations

import random
from dataclasses import dataclass, field, fields
from datetime import timedelta
from typing import Iterable

import tomli_w


class ConfigError(ValueError):
    """One or more configuration problems."""

    def __init__(self, errors: str | Iterable[str]) -> None:
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("\n".join(self.errors))


def _missing(name: str, msg: str) -> str:
    return f"{name}: missing: {msg}"


def _empty(name: str, msg: str) -> str:
    return f"{name}: empty: {msg}"


def _duplicate(name: str, value: str) -> str:
    return f"{name}: invalid value ({value}): duplicate - must be unique"


def _nanoseconds(td: timedelta) -> int:
    return (td.days * 86400 + td.seconds) * 10**9 + td.microseconds * 1000


def _fraction(value: int, unit: int) -> str:
    whole, frac = divmod(value, unit)
    if not frac:
        return str(whole)
    digits = str(frac).rjust(len(str(unit)) - 1, "0").rstrip("0")
    return f"{whole}.{digits}"


def _go_duration(td: timedelta) -> str:
    """Format a duration the way human-readable config durations are written, e.g. '500ms', '1m0s'."""
    ns = _nanoseconds(td)
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    ns = abs(ns)
    if ns < 1000:
        return f"{sign}{ns}ns"
    if ns < 10**6:
        return f"{sign}{_fraction(ns, 1000)}µs"
    if ns < 10**9:
        return f"{sign}{_fraction(ns, 10**6)}ms"
    hours, rest = divmod(ns, 3600 * 10**9)
    minutes, rest = divmod(rest, 60 * 10**9)
    seconds = f"{_fraction(rest, 10**9)}s"
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}"
    if minutes:
        return f"{sign}{minutes}m{seconds}"
    return sign + seconds


_CHAIN_KEYS = {
    "broadcast_chan_size": "BroadcastChanSize",
    "confirm_poll_period": "ConfirmPollPeriod",
    "ocr2_cache_poll_period": "OCR2CachePollPeriod",
    "ocr2_cache_ttl": "OCR2CacheTTL",
    "balance_poll_period": "BalancePollPeriod",
    "retention_period": "RetentionPeriod",
    "reap_interval": "ReapInterval",
}


@dataclass
class ChainConfig:
    """Chain-wide settings; unset values are None until defaults are applied."""

    broadcast_chan_size: int | None = None
    confirm_poll_period: timedelta | None = None
    ocr2_cache_poll_period: timedelta | None = None
    ocr2_cache_ttl: timedelta | None = None
    balance_poll_period: timedelta | None = None
    retention_period: timedelta | None = None
    reap_interval: timedelta | None = None

    def set_defaults(self) -> None:
        """Fill every unset value from the global defaults."""
        for f in fields(self):
            if getattr(self, f.name) is None:
                setattr(self, f.name, getattr(_DEFAULTS, f.name))

    def _merge(self, other: ChainConfig) -> None:
        for f in fields(self):
            value = getattr(other, f.name)
            if value is not None:
                setattr(self, f.name, value)

    def _toml_items(self) -> dict:
        items = {}
        for attr, key in _CHAIN_KEYS.items():
            value = getattr(self, attr)
            if value is None:
                continue
            if attr == "confirm_poll_period":
                items[key] = _go_duration(value)
            elif isinstance(value, timedelta):
                items[key] = _nanoseconds(value)
            else:
                items[key] = value
        return items


_DEFAULTS = ChainConfig(
    broadcast_chan_size=4096,
    confirm_poll_period=timedelta(milliseconds=500),
    ocr2_cache_poll_period=timedelta(seconds=5),
    ocr2_cache_ttl=timedelta(minutes=1),
    balance_poll_period=timedelta(seconds=5),
    retention_period=timedelta(0),
    reap_interval=timedelta(minutes=1),
)


@dataclass
class NodeConfig:
    """A node's name with its full-node and solidity-node URLs."""

    name: str | None = None
    url: str | None = None
    solidity_url: str | None = None

    def _problems(self) -> list[str]:
        problems = []
        if self.name is None:
            problems.append(_missing("Name", "required for all nodes"))
        elif self.name == "":
            problems.append(_empty("Name", "required for all nodes"))
        if self.url is None:
            problems.append(_missing("URL", "required for all nodes"))
        if self.solidity_url is None:
            problems.append(_missing("SolidityURL", "required for all nodes"))
        return problems

    def validate_config(self) -> None:
        """Raise ConfigError listing every missing or empty field."""
        problems = self._problems()
        if problems:
            raise ConfigError(problems)

    def _merge(self, other: NodeConfig) -> None:
        if other.name is not None:
            self.name = other.name
        if other.url is not None:
            self.url = other.url
        if other.solidity_url is not None:
            self.solidity_url = other.solidity_url

    def _toml_items(self) -> dict:
        pairs = (("Name", self.name), ("URL", self.url), ("SolidityURL", self.solidity_url))
        return {key: value for key, value in pairs if value is not None}


class NodeConfigs(list):
    """A list of node configurations."""

    def set_from(self, other: Iterable[NodeConfig]) -> None:
        """Merge nodes by name; unnamed or new nodes are appended."""
        for node in other:
            if node.name is None:
                self.append(node)
                continue
            existing = next((n for n in self if n.name is not None and n.name == node.name), None)
            if existing is None:
                self.append(node)
            else:
                existing._merge(node)

    def select_random(self) -> NodeConfig:
        """Pick one node at random."""
        if not self:
            raise ConfigError("no nodes available")
        return random.choice(self)


@dataclass
class TOMLConfig:
    """Configuration of one chain: its id, enablement, settings and nodes."""

    chain_id: str | None = None
    enabled: bool | None = None
    chain: ChainConfig = field(default_factory=ChainConfig)
    nodes: NodeConfigs = field(default_factory=NodeConfigs)

    def __post_init__(self) -> None:
        if not isinstance(self.nodes, NodeConfigs):
            self.nodes = NodeConfigs(self.nodes)

    def is_enabled(self) -> bool:
        return self.enabled is None or self.enabled

    def set_from(self, other: TOMLConfig) -> None:
        """Overlay every value that is set in other."""
        if other.chain_id is not None:
            self.chain_id = other.chain_id
        if other.enabled is not None:
            self.enabled = other.enabled
        self.chain._merge(other.chain)
        self.nodes.set_from(other.nodes)

    def _problems(self) -> list[str]:
        problems = []
        if self.chain_id is None:
            problems.append(_missing("ChainID", "required for all chains"))
        elif self.chain_id == "":
            problems.append(_empty("ChainID", "required for all chains"))
        if not self.nodes:
            problems.append(_missing("Nodes", "must have at least one node"))
        else:
            for node in self.nodes:
                problems.extend(node._problems())
        return problems

    def validate_config(self) -> None:
        """Raise ConfigError listing every problem with the chain and its nodes."""
        problems = self._problems()
        if problems:
            raise ConfigError(problems)

    def toml_string(self) -> str:
        doc: dict = {}
        if self.chain_id is not None:
            doc["ChainID"] = self.chain_id
        if self.enabled is not None:
            doc["Enabled"] = self.enabled
        doc.update(self.chain._toml_items())
        if self.nodes:
            doc["Nodes"] = [node._toml_items() for node in self.nodes]
        return tomli_w.dumps(doc)

    def set_defaults(self) -> None:
        self.chain.set_defaults()

    def list_nodes(self) -> NodeConfigs:
        return self.nodes

    def _required(self, attr: str):
        value = getattr(self.chain, attr)
        if value is None:
            raise ConfigError(f"{_CHAIN_KEYS[attr]} is not set")
        return value

    def balance_poll_period(self) -> timedelta:
        return self._required("balance_poll_period")

    def broadcast_chan_size(self) -> int:
        return self._required("broadcast_chan_size")

    def confirm_poll_period(self) -> timedelta:
        return self._required("confirm_poll_period")

    def ocr2_cache_poll_period(self) -> timedelta:
        return self._required("ocr2_cache_poll_period")

    def ocr2_cache_ttl(self) -> timedelta:
        return self._required("ocr2_cache_ttl")

    def retention_period(self) -> timedelta:
        return self._required("retention_period")

    def reap_interval(self) -> timedelta:
        return self._required("reap_interval")


class TOMLConfigs(list):
    """A list of chain configurations."""

    def _key_problems(self) -> list[str]:
        problems = []
        chain_ids: set[str] = set()
        for i, cfg in enumerate(self):
            if cfg.chain_id is None:
                continue
            if cfg.chain_id in chain_ids:
                problems.append(_duplicate(f"{i}.ChainID", cfg.chain_id))
            chain_ids.add(cfg.chain_id)

        names: set[str] = set()
        for i, cfg in enumerate(self):
            for j, node in enumerate(cfg.nodes):
                if node.name is None:
                    continue
                if node.name in names:
                    problems.append(_duplicate(f"{i}.Nodes.{j}.Name", node.name))
                names.add(node.name)

        urls: set[str] = set()
        for i, cfg in enumerate(self):
            for j, node in enumerate(cfg.nodes):
                if node.url is None:
                    continue
                if node.url in urls:
                    problems.append(_duplicate(f"{i}.Nodes.{j}.URL", node.url))
                urls.add(node.url)
        return problems

    def validate_config(self) -> None:
        """Raise ConfigError if chain ids, node names or node URLs repeat."""
        problems = self._key_problems()
        if problems:
            raise ConfigError(problems)

    def set_from(self, other: Iterable[TOMLConfig]) -> None:
        """Merge chains by chain id after checking other for duplicate keys."""
        incoming = other if isinstance(other, TOMLConfigs) else TOMLConfigs(other)
        incoming.validate_config()
        for cfg in incoming:
            if cfg.chain_id is None:
                self.append(cfg)
                continue
            existing = next(
                (c for c in self if c.chain_id is not None and c.chain_id == cfg.chain_id), None
            )
            if existing is None:
                self.append(cfg)
            else:
                existing.set_from(cfg)


def new_default() -> TOMLConfig:
    """A chain configuration with every chain setting at its default."""
    cfg = TOMLConfig()
    cfg.set_defaults()
    return cfg