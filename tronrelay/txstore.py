"""Per-account bookkeeping of transaction state transitions."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone

from tronrelay.tx import TronTx, TxState


class TxStoreError(Exception):
    """Raised on an invalid transaction state transition."""


@dataclass
class InflightTx:
    """A broadcast transaction awaiting confirmation or finalisation."""

    hash: str
    expiration_ms: int
    tx: TronTx


@dataclass
class FinishedTx:
    """An errored or finalised transaction kept until its retention runs out."""

    hash: str
    tx: TronTx
    retention_ts: datetime


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TxStore:
    """Tracks pending, unconfirmed, confirmed and finished transactions of one account."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hash_to_id: dict[str, str] = {}
        self._pending: dict[str, TronTx] = {}
        self._unconfirmed: dict[str, InflightTx] = {}
        self._confirmed: dict[str, InflightTx] = {}
        self._finished: dict[str, FinishedTx] = {}

    def on_pending(self, tx: TronTx, retry: bool = False) -> None:
        with self._lock:
            if retry:
                inflight = self._unconfirmed.get(tx.id)
                if inflight is None or inflight.hash not in self._hash_to_id:
                    raise TxStoreError(f"retry tx doesn't exist: {tx.id}")
                del self._hash_to_id[inflight.hash]
                del self._unconfirmed[tx.id]
            if tx.state != TxState.PENDING:
                raise TxStoreError(f"tx is not pending: {tx.id}")
            if tx.id in self._pending:
                raise TxStoreError(f"tx already exists: {tx.id}")
            self._pending[tx.id] = tx

    def on_broadcasted(self, tx_hash: str, expiration_ms: int, tx: TronTx) -> None:
        with self._lock:
            if tx_hash in self._hash_to_id:
                raise TxStoreError(f"hash already exists: {tx.id}")
            if tx.id not in self._pending:
                raise TxStoreError(f"no such pending id: {tx.id}")
            self._hash_to_id[tx_hash] = tx.id
            tx.state = TxState.BROADCASTED
            self._unconfirmed[tx.id] = InflightTx(tx_hash, expiration_ms, tx)
            del self._pending[tx.id]

    def on_confirmed(self, tx_id: str) -> None:
        with self._lock:
            inflight = self._unconfirmed.get(tx_id)
            if inflight is None:
                raise TxStoreError(f"no such unconfirmed id: {tx_id}")
            if inflight.tx.state != TxState.BROADCASTED:
                raise TxStoreError(
                    f"tx is not broadcasted, state: {int(inflight.tx.state)} | id: {tx_id}"
                )
            del self._unconfirmed[tx_id]
            inflight.tx.state = TxState.CONFIRMED
            self._confirmed[tx_id] = inflight

    def _take_inflight(self, tx_id: str) -> InflightTx:
        if tx_id in self._unconfirmed:
            return self._unconfirmed.pop(tx_id)
        if tx_id in self._confirmed:
            return self._confirmed.pop(tx_id)
        raise TxStoreError(f"no such unconfirmed or confirmed id: {tx_id}")

    def on_errored(self, tx_id: str) -> None:
        with self._lock:
            inflight = self._take_inflight(tx_id)
            self._hash_to_id.pop(inflight.hash, None)
            self._finished[tx_id] = FinishedTx(inflight.hash, inflight.tx, _now())
            inflight.tx.state = TxState.ERRORED

    def on_fatal_error(self, tx_id: str) -> None:
        with self._lock:
            inflight = self._take_inflight(tx_id)
            inflight.tx.state = TxState.FATALLY_ERRORED
            self._finished[tx_id] = FinishedTx(inflight.hash, inflight.tx, _now())

    def on_reorg(self, tx_id: str) -> None:
        """Move a confirmed transaction dropped by a reorg back to pending."""
        with self._lock:
            inflight = self._confirmed.pop(tx_id, None)
            if inflight is None:
                raise TxStoreError(f"no such confirmed id: {tx_id}")
            self._hash_to_id.pop(inflight.hash, None)
            inflight.tx.state = TxState.PENDING
            self._pending[tx_id] = inflight.tx

    def on_finalized(self, tx_id: str) -> None:
        with self._lock:
            inflight = self._confirmed.pop(tx_id, None)
            if inflight is None:
                raise TxStoreError(f"no such confirmed id: {tx_id}")
            inflight.tx.state = TxState.FINALIZED
            self._finished[tx_id] = FinishedTx(inflight.hash, inflight.tx, _now())

    def get_unconfirmed(self) -> list[InflightTx]:
        with self._lock:
            return sorted(self._unconfirmed.values(), key=lambda item: item.expiration_ms)

    def get_confirmed(self) -> list[InflightTx]:
        with self._lock:
            return sorted(self._confirmed.values(), key=lambda item: item.expiration_ms)

    def get_finished(self) -> list[FinishedTx]:
        with self._lock:
            return sorted(self._finished.values(), key=lambda item: item.retention_ts)

    def delete_finished_txs(self, ids: list[str]) -> int:
        """Drop the given finished transactions and return how many were removed."""
        deleted = 0
        with self._lock:
            for tx_id in ids:
                finished = self._finished.pop(tx_id, None)
                if finished is not None:
                    self._hash_to_id.pop(finished.hash, None)
                    deleted += 1
        return deleted

    def has(self, tx_id: str) -> bool:
        with self._lock:
            return any(
                tx_id in table
                for table in (self._pending, self._unconfirmed, self._confirmed, self._finished)
            )

    def inflight_count(self) -> int:
        with self._lock:
            return len(self._unconfirmed)

    def finished_count(self) -> int:
        with self._lock:
            return len(self._finished)

    def get_status(self, tx_id: str) -> TxState | None:
        """Return the state of a transaction, or None if it is unknown."""
        with self._lock:
            if tx_id in self._pending:
                return self._pending[tx_id].state
            for table in (self._unconfirmed, self._confirmed, self._finished):
                if tx_id in table:
                    return table[tx_id].tx.state
            return None

    def hash_to_id(self) -> dict[str, str]:
        """Return a copy of the hash to transaction id mapping."""
        with self._lock:
            return dict(self._hash_to_id)


class AccountStore:
    """Maps account addresses to their transaction stores."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stores: dict[str, TxStore] = {}

    def _snapshot(self) -> list[tuple[str, TxStore]]:
        with self._lock:
            return list(self._stores.items())

    def get_tx_store(self, from_address: str) -> TxStore:
        with self._lock:
            store = self._stores.get(from_address)
            if store is None:
                store = TxStore()
                self._stores[from_address] = store
            return store

    def get_total_inflight_count(self) -> int:
        return sum(store.inflight_count() for _, store in self._snapshot())

    def get_hash_to_id_map(self) -> dict[str, str]:
        merged: dict[str, str] = {}
        for _, store in self._snapshot():
            merged.update(store.hash_to_id())
        return merged

    def get_total_finished_count(self) -> int:
        return sum(store.finished_count() for _, store in self._snapshot())

    def get_all_unconfirmed(self) -> dict[str, list[InflightTx]]:
        return {account: store.get_unconfirmed() for account, store in self._snapshot()}

    def get_all_confirmed(self) -> dict[str, list[InflightTx]]:
        return {account: store.get_confirmed() for account, store in self._snapshot()}

    def get_all_finished(self) -> dict[str, list[FinishedTx]]:
        return {account: store.get_finished() for account, store in self._snapshot()}

    def delete_all_finished_txs(self, account_tx_ids: dict[str, list[str]]) -> int:
        """Drop finished transactions per account and return the total removed."""
        with self._lock:
            stores = dict(self._stores)
        return sum(
            stores[account].delete_finished_txs(ids)
            for account, ids in account_tx_ids.items()
            if account in stores
        )

    def get_status_all(self, tx_id: str) -> TxState | None:
        """Return the state of a transaction in any account, or None if unknown."""
        for _, store in self._snapshot():
            state = store.get_status(tx_id)
            if state is not None:
                return state
        return None