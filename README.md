# tronrelay

Building blocks for an OCR2 relayer on the Tron network. The package does these jobs:

- It reads an aggregator contract's state through a node client that you supply.
- It caches that state for the reporting protocol.
- It computes config digests.
- It builds the `transmit` requests that carry signed reports back on chain.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## What is inside

### `tronrelay.config`

This module holds the chain and node configuration: `TOMLConfig`, `TOMLConfigs`, `ChainConfig`, `NodeConfig` and `NodeConfigs`.

`set_defaults()` fills in every chain setting that is unset. The defaults are:

| Setting | Default |
| --- | --- |
| balance poll | 5 s |
| broadcast channel size | 4096 |
| confirm poll | 500 ms |
| OCR2 cache poll | 5 s |
| OCR2 cache TTL | 1 min |
| retention period | 0 |
| reap interval | 1 min |

`new_default()` returns a `TOMLConfig` with those defaults already applied.

Merging:

- `TOMLConfig.set_from` overlays every value that is set in the other configuration.
- `NodeConfigs.set_from` merges nodes by name.
- `TOMLConfigs.set_from` merges chains by chain id. It first checks the incoming list for duplicate keys.

Validation:

- `validate_config()` raises `ConfigError`, listing every missing or empty field.
- `TOMLConfigs.validate_config()` reports chain ids, node names and node URLs that appear more than once.

Other methods:

- `NodeConfigs.select_random()` picks one node.
- `toml_string()` renders a chain configuration as TOML.

### `tronrelay.monitor`

`BalanceMonitor` polls the balance of every keystore account in a background thread.

- It needs a keystore with an `accounts()` method that returns hex public keys.
- It needs a factory that returns a client with `get_account(address)`. The response must have a `balance` attribute, given in SUN.
- It publishes each balance as TRX into a `BalanceGauge`. By default that is the module-level `TRON_BALANCE` gauge, with the labels account, chain id, `"tron"` and `"TRX"`.

`sun_to_trx` converts SUN to TRX; 1 TRX is 1,000,000 SUN.

### `tronrelay.reader`

`Reader` calls constant contract methods, against either the solidity node (`call_contract`) or the full node (`call_contract_full_node`). It decodes the ABI-encoded results into a dict keyed by output name.

It also provides:

- an ABI cache, so each contract's ABI is fetched once;
- `latest_block_height()`;
- `get_events_from_block()`, which decodes the named events that a contract emitted in a block.

`event_topic_hash` gives the keccak-256 topic of an event signature. Failures raise `ReaderError`.

### `tronrelay.ocr2_reader`

`OCR2Reader` turns raw aggregator results into typed values and checks their types. The values are:

- `ContractConfigDetails`
- `TransmissionDetails`
- `RoundData`
- `BillingDetails`
- the available LINK balance
- `ContractConfig`, read from the single `ConfigSet` event in a block

Failures raise `OCR2ReaderError`.

### `tronrelay.contract_reader`

`ContractReader` binds an `OCR2Reader` to one contract address.

### `tronrelay.caches`

`ContractCache` and `TransmissionsCache` populate themselves on `start()` and then refresh in a background thread. Their read methods raise `CacheError` if the data has not been initialised yet or is older than the OCR2 cache TTL.

`TransmissionsCache` skips a transmission whose timestamp is zero while its answer is non-zero. Such a transmission has executed but is not yet in a block.

### `tronrelay.digester`

`OffchainConfigDigester` computes the keccak-256 config digest with the EVM prefix `0x0001`. The chain id is encoded as a full uint256. `encode_config_data` and `keccak256` are exposed as well.

### `tronrelay.transmitter`

`ContractTransmitter` builds a `TransmitRequest` for `transmit(bytes32[3],bytes,bytes32[],bytes32[],bytes32)` and passes it to a transaction manager's `enqueue()`. A report may carry at most 32 signatures.

Two options change its behaviour:

- `with_exclude_signatures()` leaves the signatures out of the request.
- `with_ethereum_keystore()` makes `from_account()` return an EVM checksum address instead of a base58 Tron address.

### `tronrelay.providers`

These classes tie the pieces above together:

- `ConfigProvider` owns the contract cache and the digester.
- `MedianProvider` adds the transmissions cache and the transmitter. It shares the start/stop state of its config provider.
- `PluginProvider` wraps a config provider together with a transmitter, a chain reader and a codec.

Each service can be started once and stopped once. Doing otherwise raises `ServiceStateError`.

### `tronrelay.nodetools`

Helpers for a local development node:

- `find_git_root()` locates the repository root.
- `start_tron_node()` runs `scripts/java-tron.sh` from that root.
- `stop_tron_node()` runs `scripts/java-tron.down.sh` from that root.
- `tron_node_ip_address()` returns the node's address on this platform.

A failed script raises `NodeScriptError`, which carries the exit code and the output.

## Example

```python
from tronrelay.config import TOMLConfig, NodeConfig, NodeConfigs

cfg = TOMLConfig(
    chain_id="0xcd8690dc",
    nodes=NodeConfigs([
        NodeConfig(
            name="primary",
            url="http://localhost:16667/wallet",
            solidity_url="http://localhost:16668/walletsolidity",
        ),
    ]),
)
cfg.set_defaults()
cfg.validate_config()          # raises ConfigError if anything is missing
print(cfg.ocr2_cache_ttl())    # 0:01:00
print(cfg.toml_string())
```

```python
from tronrelay.monitor import sun_to_trx

assert sun_to_trx(1_500_000) == 1.5
```

## What the package does not do

The package has no HTTP client for Tron full or solidity nodes. `Reader` takes any client object that provides the following methods and returns plain dicts:

- `get_contract`
- `trigger_constant_contract`
- `trigger_constant_contract_full_node`
- `get_now_block`
- `get_block_by_num`
- `get_transaction_info_by_id`

There is no transaction manager either. `ContractTransmitter` only builds requests and hands them to the object you pass in.

The package has no relayer service that wires everything to a chain, and it has no command-line entry point.