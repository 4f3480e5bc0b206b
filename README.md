# tronrelay

A transaction manager for submitting smart-contract calls to a TRON node and
following them through to finality.

It takes care of:

- estimating the energy a call needs and turning it into a fee limit, padded by
  a configurable multiplier that grows with every out-of-energy retry;
- reading the node's current energy unit price, falling back to a default of
  210 when the price list cannot be read;
- signing transactions through a keystore and broadcasting them, retrying while
  the node reports `SERVER_BUSY` or `BLOCK_UNSOLIDIFIED`;
- tracking each transaction through its states (pending, broadcasted,
  confirmed, finalized, errored, fatally errored), retrying recoverable
  failures, detecting chain reorganisations and reaping finished transactions
  once their retention period has passed.

## Installation

```
pip install tronrelay
```

For running the test suite:

```
pip install "tronrelay[test]"
pytest
```

## Modules

| Module | Contents |
| --- | --- |
| `tronrelay.utils` | `TronAddress`, `get_event_topic_hash`, `byte_array_to_str`, `public_key_to_tron_address` |
| `tronrelay.energy` | `parse_latest_energy_price`, `calculate_padded_fee_limit`, `EnergyPriceError`, `DEFAULT_ENERGY_UNIT_PRICE` |
| `tronrelay.config` | `TronTxmConfig` |
| `tronrelay.tx` | `TronTx`, `TxState` |
| `tronrelay.txstore` | `TxStore`, `AccountStore`, `InflightTx`, `FinishedTx`, `TxStoreError` |
| `tronrelay.client` | `TronClient` and `Keystore` protocols, node response records, `ContractResult`, `ResponseCode`, `TransactionStatus`, `ClientError`, `BroadcastError`, `classify_result` |
| `tronrelay.manager` | `TronTxm`, `TronTxmRequest`, `TransactionManagerError` |

## Helpers

Event topic hashes are the Keccak-256 of the event signature:

```python
from tronrelay.utils import get_event_topic_hash, byte_array_to_str

get_event_topic_hash("Transfer(address,address,uint256)")
# 'ddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef'

byte_array_to_str([b"\x01\x02\x03", b"\x04\x05\x06"])
# '[0x010203,0x040506]'
```

`public_key_to_tron_address` turns an uncompressed public key in hex into a
`TronAddress`; an empty key raises `ValueError`. A `TronAddress` holds the
21 raw bytes; `TronAddress.from_hex()` builds one from hex (with or without
`0x`), `.hex()` gives the hex form and `str()` gives the base58check form.

## Energy pricing

Nodes report energy prices as a comma-separated history of
`timestamp:price` pairs; the last entry is the current price.

```python
from tronrelay.energy import parse_latest_energy_price, calculate_padded_fee_limit

parse_latest_energy_price("0:100,1575871200000:10,1681895880000:420")
# 420

calculate_padded_fee_limit(1000, 0, 1.5)   # 1500
calculate_padded_fee_limit(1000, 1, 1.5)   # 2250
calculate_padded_fee_limit(1000, 3, 1.5)   # 5062
```

A malformed price list, or a price outside the 32-bit range, raises
`EnergyPriceError`; its `fallback` attribute holds the default unit price,
which the transaction manager then uses.

## Transaction store

`AccountStore` keeps one `TxStore` per sending account, created on first use
by `get_tx_store()`. A `TxStore` moves each transaction through its lifecycle
with `on_pending`, `on_broadcasted`, `on_confirmed`, `on_finalized`,
`on_errored`, `on_fatal_error` and `on_reorg`; any transition that does not
fit the transaction's current state raises `TxStoreError`. `get_status()`
returns a `TxState`, or `None` for an unknown id. Finished transactions are
kept until removed with `delete_finished_txs`. All state lives in memory.

## Transaction manager

```python
from datetime import timedelta
from tronrelay.config import TronTxmConfig
from tronrelay.manager import TronTxm, TronTxmRequest

config = TronTxmConfig(
    broadcast_chan_size=100,
    confirm_poll_secs=2,
    retention_period=timedelta(seconds=10),
    reap_interval=timedelta(seconds=1),
)
txm = TronTxm(keystore, client, config)
txm.start()
tx_id = txm.enqueue(TronTxmRequest(from_address, contract_address, "foo()", []))
status = txm.get_transaction_status(tx_id)
txm.close()
```

`TronTxm` ties a `TronClient`, a `Keystore` and a `TronTxmConfig` together.
An `energy_multiplier` below 1.0 is replaced by 1.5, and a non-zero
`fixed_energy_value` skips energy estimation. `start()` runs the broadcast,
confirmation and reaping loops in background threads; it can be called only
once and needs a positive `reap_interval`. `close()` stops them and waits.

`enqueue()` returns the transaction id. Contract parameters are passed as a
flat list of alternating ABI type and value, for example
`["uint256", 5, "address", "T..."]`; an odd-length list or a non-string type
raises `TransactionManagerError`, as does a full queue. A request whose `id`
is already known is ignored, so the id works as an idempotency key; without
one a UUID is generated.

Failed transactions are retried up to five attempts; `OUT_OF_ENERGY` raises
the fee padding, and a third `OUT_OF_TIME` stops retrying. Fatal results such
as `REVERT` are not retried.

`get_transaction_status()` reports a `TransactionStatus` for any tracked
transaction and raises `TransactionManagerError` for an unknown id.
`inflight_count()` returns the queue length together with the number of
broadcast but unconfirmed transactions. `check_unconfirmed()`,
`check_finalized()` and `reap_finished()` run one pass of the background work
by hand. `ready()` and `health_report()` report whether the manager is
running. Messages go to the standard `logging` logger named `TronTxm`.

## What this package does not include

`TronClient` and `Keystore` are protocols only. The package has no network
client for TRON nodes and no key storage or signing implementation; supply
your own objects that provide these methods. Transaction state is kept in
memory and is not persisted across restarts. There is no command-line tool.