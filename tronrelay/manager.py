"""Transaction manager: queues, broadcasts, confirms and reaps contract calls."""

from __future__ import annotations

import dataclasses
import enum
import logging
import queue
import random
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from tronrelay.client import (
    FATAL_RESULTS,
    UNKNOWN_RESULTS,
    BroadcastError,
    BroadcastResponse,
    ClientError,
    ContractResult,
    Keystore,
    Transaction,
    TransactionStatus,
    TriggerResponse,
    TronClient,
    classify_result,
)
from tronrelay.config import TronTxmConfig
from tronrelay.energy import (
    DEFAULT_ENERGY_UNIT_PRICE,
    EnergyPriceError,
    calculate_padded_fee_limit,
    parse_latest_energy_price,
)
from tronrelay.tx import TronTx, TxState
from tronrelay.txstore import AccountStore, InflightTx, TxStore, TxStoreError
from tronrelay.utils import TronAddress

MAX_RETRY_ATTEMPTS = 5
MAX_BROADCAST_RETRY_DURATION = 30.0  # seconds
BROADCAST_DELAY_DURATION = 2.0  # seconds
DEFAULT_ENERGY_MULTIPLIER = 1.5
REORG_RETRY_COUNT = 3
REORG_RETRY_DELAY = 0.5  # seconds

_QUEUE_POLL_SECONDS = 0.05
_UNSUPPORTED_ESTIMATE = "this node does not support estimate energy"

_STATUS_BY_STATE = {
    TxState.PENDING: TransactionStatus.PENDING,
    TxState.BROADCASTED: TransactionStatus.PENDING,
    TxState.CONFIRMED: TransactionStatus.UNCONFIRMED,
    TxState.FINALIZED: TransactionStatus.FINALIZED,
    TxState.ERRORED: TransactionStatus.FAILED,
    TxState.FATALLY_ERRORED: TransactionStatus.FATAL,
}


class TransactionManagerError(Exception):
    """Raised when the transaction manager cannot carry out a request."""


class _Phase(enum.Enum):
    UNSTARTED = "unstarted"
    STARTED = "started"
    STOPPED = "stopped"


@dataclass
class TronTxmRequest:
    """A contract call to submit; ``params`` alternate ABI type and value."""

    from_address: TronAddress
    contract_address: TronAddress
    method: str
    params: list[Any] = field(default_factory=list)
    id: str = ""


def _to_int32(value: int) -> int:
    return (value + 2**31) % 2**32 - 2**31


class TronTxm:
    """Queues contract calls, broadcasts them and follows them to finality."""

    def __init__(
        self,
        keystore: Keystore,
        client: TronClient,
        config: TronTxmConfig,
        logger: logging.Logger | None = None,
        *,
        max_broadcast_retry_duration: float = MAX_BROADCAST_RETRY_DURATION,
        broadcast_delay: float = BROADCAST_DELAY_DURATION,
        reorg_retry_delay: float = REORG_RETRY_DELAY,
    ) -> None:
        self.logger = logger.getChild("TronTxm") if logger else logging.getLogger("TronTxm")
        self.keystore = keystore
        self.client = client
        self.config = dataclasses.replace(config)
        self.estimate_energy_enabled = True
        self.account_store = AccountStore()
        self.broadcast_queue: queue.Queue[TronTx] = queue.Queue(
            maxsize=max(1, config.broadcast_chan_size)
        )
        self.max_broadcast_retry_duration = max_broadcast_retry_duration
        self.broadcast_delay = broadcast_delay
        self.reorg_retry_delay = reorg_retry_delay

        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._phase = _Phase.UNSTARTED
        self._phase_lock = threading.Lock()

        if self.config.energy_multiplier < 1.0:
            self.logger.warning(
                "Energy multiplier is not set, using default value default=%s",
                DEFAULT_ENERGY_MULTIPLIER,
            )
            self.config.energy_multiplier = DEFAULT_ENERGY_MULTIPLIER

    # service lifecycle

    def name(self) -> str:
        return self.logger.name

    def ready(self) -> None:
        """Raise TransactionManagerError unless the manager is running."""
        if self._phase is not _Phase.STARTED:
            raise TransactionManagerError(f"{self.name()}: service is {self._phase.value}")

    def health_report(self) -> dict[str, Exception | None]:
        try:
            self.ready()
        except TransactionManagerError as err:
            return {self.name(): err}
        return {self.name(): None}

    def start(self) -> None:
        """Start the broadcast, confirm and reap loops; only once."""
        with self._phase_lock:
            if self._phase is not _Phase.UNSTARTED:
                raise TransactionManagerError("TronTxm has already been started once")
            if self.config.reap_interval <= timedelta(0):
                raise TransactionManagerError("reap interval must be positive")
            self._phase = _Phase.STARTED
            self._threads = [
                threading.Thread(target=loop, name=f"TronTxm-{loop.__name__}", daemon=True)
                for loop in (self._broadcast_loop, self._confirm_loop, self._reap_loop)
            ]
            for thread in self._threads:
                thread.start()

    def close(self) -> None:
        """Stop the loops and wait for them to finish."""
        with self._phase_lock:
            if self._phase is not _Phase.STARTED:
                raise TransactionManagerError(f"TronTxm cannot be stopped: {self._phase.value}")
            self._phase = _Phase.STOPPED
        self._stop.set()
        for thread in self._threads:
            thread.join()

    # enqueueing and broadcasting

    def enqueue(self, request: TronTxmRequest) -> str:
        """Queue a contract call for broadcasting and return its id."""
        account = str(request.from_address)
        try:
            self.keystore.sign(account, None)
        except Exception as err:
            raise TransactionManagerError(f"failed to sign: {err}") from err

        if len(request.params) % 2 == 1:
            raise TransactionManagerError("odd number of params")
        if not all(isinstance(param_type, str) for param_type in request.params[::2]):
            raise TransactionManagerError("non-string param type")

        store = self.account_store.get_tx_store(account)
        tx_id = request.id
        if not tx_id:
            tx_id = str(uuid.uuid4())
        elif store.has(tx_id):
            self.logger.warning("transaction with ID already exists, ignoring txID=%s", tx_id)
            return tx_id

        tx = TronTx(
            from_address=request.from_address,
            contract_address=request.contract_address,
            method=request.method,
            params=request.params,
            attempt=1,
            id=tx_id,
            create_ts=datetime.now(timezone.utc),
        )
        try:
            store.on_pending(tx, False)
        except TxStoreError as err:
            self.logger.warning("transaction could not be tracked, ignoring error=%s txID=%s", err, tx_id)
            return tx_id

        try:
            self.broadcast_queue.put_nowait(tx)
        except queue.Full:
            raise TransactionManagerError(f"failed to enqueue transaction: {tx}") from None
        return tx_id

    def _broadcast_loop(self) -> None:
        self.logger.debug("broadcastLoop: started")
        while not self._stop.is_set():
            try:
                tx = self.broadcast_queue.get(timeout=_QUEUE_POLL_SECONDS)
            except queue.Empty:
                continue
            try:
                self._broadcast_one(tx)
            except Exception:
                self.logger.exception("unexpected error while broadcasting txID=%s", tx.id)
        self.logger.debug("broadcastLoop: stopped")

    def _broadcast_one(self, tx: TronTx) -> None:
        try:
            response = self.trigger_smart_contract(tx)
        except TransactionManagerError as err:
            self.logger.error("failed to trigger smart contract error=%s txID=%s", err, tx.id)
            return

        core_tx = response.transaction
        tx_hash = core_tx.tx_id
        raw = core_tx.raw_data
        self.logger.debug(
            "created transaction method=%s txHash=%s timestampMs=%s expirationMs=%s "
            "refBlockHash=%s feeLimit=%s txID=%s",
            tx.method, tx_hash, raw.timestamp, raw.expiration, raw.ref_block_hash, raw.fee_limit, tx.id,
        )
        store = self.account_store.get_tx_store(str(tx.from_address))

        try:
            self.sign_and_broadcast(tx.from_address, core_tx)
        except TransactionManagerError as err:
            self.logger.error(
                "transaction failed to broadcast txHash=%s error=%s txID=%s", tx_hash, err, tx.id
            )
            try:
                store.on_fatal_error(tx.id)
            except TxStoreError as store_err:
                self.logger.debug("could not mark transaction fatal error=%s txID=%s", store_err, tx.id)
            return

        self.logger.info(
            "transaction broadcasted method=%s txHash=%s timestampMs=%s expirationMs=%s "
            "refBlockHash=%s feeLimit=%s txID=%s",
            tx.method, tx_hash, raw.timestamp, raw.expiration, raw.ref_block_hash, raw.fee_limit, tx.id,
        )
        try:
            store.on_broadcasted(tx_hash, raw.expiration, tx)
        except TxStoreError as err:
            self.logger.error("could not record broadcast error=%s txID=%s", err, tx.id)

    def trigger_smart_contract(self, tx: TronTx) -> TriggerResponse:
        """Build an unsigned transaction for ``tx`` with a padded fee limit."""
        try:
            energy_used = self._estimate_energy(tx)
        except TransactionManagerError as err:
            raise TransactionManagerError(f"failed to estimate energy: {err}") from err

        energy_unit_price = DEFAULT_ENERGY_UNIT_PRICE
        try:
            prices = self.client.get_energy_prices()
        except ClientError as err:
            self.logger.error("failed to get energy unit price error=%s txID=%s", err, tx.id)
        else:
            try:
                energy_unit_price = parse_latest_energy_price(prices)
            except EnergyPriceError as err:
                self.logger.error("error parsing energy unit price error=%s txID=%s", err, tx.id)

        fee_limit = _to_int32(energy_unit_price * _to_int32(energy_used))
        padded_fee_limit = calculate_padded_fee_limit(
            fee_limit, tx.energy_bump_times, self.config.energy_multiplier
        )
        self.logger.debug(
            "Trigger smart contract energyBumpTimes=%s energyUnitPrice=%s feeLimit=%s "
            "paddedFeeLimit=%s txID=%s",
            tx.energy_bump_times, energy_unit_price, fee_limit, padded_fee_limit, tx.id,
        )

        try:
            return self.client.trigger_smart_contract(
                tx.from_address, tx.contract_address, tx.method, tx.params, padded_fee_limit, 0
            )
        except ClientError as err:
            raise TransactionManagerError(f"failed to call TriggerSmartContract: {err}") from err

    def sign_and_broadcast(self, from_address: TronAddress, core_tx: Transaction) -> BroadcastResponse:
        """Sign ``core_tx`` with the key of ``from_address`` and broadcast it."""
        try:
            tx_id_bytes = bytes.fromhex(core_tx.tx_id)
        except ValueError as err:
            raise TransactionManagerError(f"failed to decode transaction id: {err}") from err

        try:
            signature = self.keystore.sign(str(from_address), tx_id_bytes)
        except Exception as err:
            raise TransactionManagerError(f"failed to sign transaction: {err}") from err

        core_tx.add_signature(signature)

        try:
            return self._broadcast_tx(core_tx)
        except (ClientError, TransactionManagerError) as err:
            raise TransactionManagerError(f"failed to broadcast transaction: {err}") from err

    def _broadcast_tx(self, core_tx: Transaction) -> BroadcastResponse:
        start = time.monotonic()
        attempt = 1
        last_error: BroadcastError | None = None
        while time.monotonic() - start < self.max_broadcast_retry_duration:
            try:
                return self.client.broadcast_transaction(core_tx)
            except BroadcastError as err:
                if not err.retryable:
                    raise
                self.logger.debug(
                    "SERVER_BUSY or BLOCK_UNSOLIDIFIED: retry broadcast after timeout attempt=%s",
                    attempt,
                )
                last_error = err
                time.sleep(self.broadcast_delay)
                attempt += 1
        raise TransactionManagerError(
            f"SERVER_BUSY or BLOCK_UNSOLIDIFIED: max retry duration reached, error: {last_error}"
        ) from last_error

    def _estimate_energy(self, tx: TronTx) -> int:
        if self.config.fixed_energy_value != 0:
            return self.config.fixed_energy_value

        if self.estimate_energy_enabled:
            try:
                estimate = self.client.estimate_energy(
                    tx.from_address, tx.contract_address, tx.method, tx.params, 0
                )
            except ClientError as err:
                if _UNSUPPORTED_ESTIMATE in str(err):
                    self.estimate_energy_enabled = False
                    self.logger.info("Node does not support EstimateEnergy err=%s txID=%s", err, tx.id)
                else:
                    self.logger.error("Failed to call EstimateEnergy err=%s txID=%s", err, tx.id)
            else:
                self.logger.debug(
                    "Estimated energy using EnergyEstimation Method energyRequired=%s txID=%s",
                    estimate.energy_required, tx.id,
                )
                return estimate.energy_required

        try:
            result = self.client.trigger_constant_contract_full_node(
                tx.from_address, tx.contract_address, tx.method, tx.params
            )
        except ClientError as err:
            raise TransactionManagerError(f"failed to call TriggerConstantContract: {err}") from err
        if not result.result:
            raise TransactionManagerError(
                f"failed to call TriggerConstantContract due to {result.code} {result.message}"
            )
        self.logger.debug(
            "Estimated energy using TriggerConstantContract Method energyUsed=%s "
            "energyPenalty=%s txID=%s",
            result.energy_used, result.energy_penalty, tx.id,
        )
        return result.energy_used

    # confirmation

    def _confirm_loop(self) -> None:
        self.logger.debug("confirmLoop: started")
        poll = float(self.config.confirm_poll_secs)
        wait = poll
        while not self._stop.wait(wait):
            start = time.monotonic()
            for check in (self.check_unconfirmed, self.check_finalized):
                try:
                    check()
                except Exception:
                    self.logger.exception("unexpected error in %s", check.__name__)
            remaining = abs(poll - (time.monotonic() - start))
            wait = remaining * random.uniform(0.9, 1.1)
        self.logger.debug("confirmLoop: stopped")

    def check_unconfirmed(self) -> None:
        """Look up every broadcast transaction and confirm, retry or fail it."""
        for account, unconfirmed in self.account_store.get_all_unconfirmed().items():
            try:
                block = self.client.get_now_block_full_node()
            except ClientError as err:
                self.logger.error("could not get latest block error=%s", err)
                continue
            if block.timestamp is None:
                self.logger.error("could not read latest block header")
                continue
            timestamp_ms = block.timestamp
            store = self.account_store.get_tx_store(account)
            for inflight in unconfirmed:
                self._check_one_unconfirmed(inflight, timestamp_ms, store)

    def _check_one_unconfirmed(self, inflight: InflightTx, timestamp_ms: int, store: TxStore) -> None:
        tx = inflight.tx
        try:
            info = self.client.get_transaction_info_by_id_full_node(inflight.hash)
        except ClientError:
            if inflight.expiration_ms < timestamp_ms:
                self.logger.debug(
                    "transaction missing after expiry attempt=%s txHash=%s timestampMs=%s "
                    "expirationMs=%s txID=%s",
                    tx.attempt, inflight.hash, timestamp_ms, inflight.expiration_ms, tx.id,
                )
                self._maybe_retry(inflight, False, False, store)
            return

        result_text = info.receipt_result
        result = classify_result(result_text)

        if result is ContractResult.SUCCESS:
            try:
                store.on_confirmed(tx.id)
            except TxStoreError as err:
                self.logger.error("could not confirm transaction locally error=%s txID=%s", err, tx.id)
                return
            self.logger.info(
                "confirmed transaction txHash=%s blockNumber=%s contractResult=%s txID=%s",
                inflight.hash, info.block_number, result_text, tx.id,
            )
        elif result is ContractResult.OUT_OF_ENERGY:
            self.logger.error(
                "transaction failed due to out of energy attempt=%s txHash=%s blockNumber=%s txID=%s",
                tx.attempt, inflight.hash, info.block_number, tx.id,
            )
            self._maybe_retry(inflight, True, False, store)
        elif result is ContractResult.OUT_OF_TIME:
            self.logger.error(
                "transaction failed due to out of time attempt=%s txHash=%s blockNumber=%s txID=%s",
                tx.attempt, inflight.hash, info.block_number, tx.id,
            )
            self._maybe_retry(inflight, False, True, store)
        elif result in FATAL_RESULTS:
            self.logger.error(
                "transaction failed with fatal error attempt=%s txHash=%s blockNumber=%s "
                "contractResult=%s txID=%s",
                tx.attempt, inflight.hash, info.block_number, result_text, tx.id,
            )
            try:
                store.on_fatal_error(tx.id)
            except TxStoreError as err:
                self.logger.error("failed to mark transaction as fatally errored txID=%s error=%s", tx.id, err)
        elif result in UNKNOWN_RESULTS:
            self.logger.error(
                "transaction failed due to unknown error attempt=%s txHash=%s blockNumber=%s txID=%s",
                tx.attempt, inflight.hash, info.block_number, tx.id,
            )
            self._maybe_retry(inflight, False, False, store)
        else:
            self.logger.error(
                "transaction failed with unhandled result type attempt=%s txHash=%s "
                "blockNumber=%s contractResult=%s txID=%s",
                tx.attempt, inflight.hash, info.block_number, result_text, tx.id,
            )
            self._maybe_retry(inflight, False, False, store)

    def _mark_errored(self, tx: TronTx, store: TxStore) -> None:
        try:
            store.on_errored(tx.id)
        except TxStoreError as err:
            self.logger.error("failed to mark transaction as errored txID=%s error=%s", tx.id, err)

    def _maybe_retry(
        self, inflight: InflightTx, bump_energy: bool, is_out_of_time: bool, store: TxStore
    ) -> None:
        tx = inflight.tx
        if tx.attempt >= MAX_RETRY_ATTEMPTS:
            self.logger.debug(
                "not retrying, already reached max retries txHash=%s lastAttempt=%s txID=%s",
                inflight.hash, tx.attempt, tx.id,
            )
            self._mark_errored(tx, store)
            return
        if tx.out_of_time_errors >= 2:
            self.logger.debug(
                "not retrying, multiple OUT_OF_TIME errors txHash=%s lastAttempt=%s txID=%s",
                inflight.hash, tx.attempt, tx.id,
            )
            self._mark_errored(tx, store)
            return

        tx.attempt += 1
        if bump_energy:
            tx.energy_bump_times += 1
        if is_out_of_time:
            tx.out_of_time_errors += 1

        self.logger.info(
            "retrying transaction txID=%s previousTxHash=%s attempt=%s bumpEnergy=%s isOutOfTimeError=%s",
            tx.id, inflight.hash, tx.attempt, bump_energy, is_out_of_time,
        )
        tx.state = TxState.PENDING
        try:
            store.on_pending(tx, True)
        except TxStoreError as err:
            self.logger.error("could not move transaction back to pending error=%s txID=%s", err, tx.id)
        try:
            self.broadcast_queue.put_nowait(tx)
        except queue.Full:
            self.logger.error(
                "failed to enqueue retry transaction previousTxHash=%s txID=%s", inflight.hash, tx.id
            )

    def check_finalized(self) -> None:
        """Finalise confirmed transactions, or send them back when a reorg dropped them."""
        for account, confirmed in self.account_store.get_all_confirmed().items():
            store = self.account_store.get_tx_store(account)
            for inflight in confirmed:
                tx_id = inflight.tx.id
                try:
                    self.client.get_transaction_info_by_id(inflight.hash)
                    missing = False
                except ClientError:
                    missing = True

                if missing and self._check_reorged(inflight.hash):
                    self.logger.warning("tx missing after reorg, moving back to unconfirmed txID=%s", tx_id)
                    try:
                        store.on_reorg(tx_id)
                    except TxStoreError as err:
                        self.logger.error("failed to OnReorg tx txID=%s error=%s", tx_id, err)
                    else:
                        try:
                            self.broadcast_queue.put_nowait(inflight.tx)
                        except queue.Full:
                            self.logger.warning(
                                "Broadcast channel is full, dropping transaction txID=%s", tx_id
                            )
                    continue

                try:
                    store.on_finalized(tx_id)
                except TxStoreError as err:
                    self.logger.error("failed to finalize tx txID=%s error=%s", tx_id, err)
                else:
                    self.logger.info("finalized transaction txID=%s", tx_id)

    def _check_reorged(self, tx_hash: str) -> bool:
        """Tell a reorg from a passing node failure by looking the hash up a few times."""
        for retry in range(REORG_RETRY_COUNT + 1):
            if retry:
                time.sleep(self.reorg_retry_delay)
            try:
                self.client.get_transaction_info_by_id_full_node(tx_hash)
            except ClientError:
                continue
            return False
        return True

    # reaping and status

    def _reap_loop(self) -> None:
        interval = self.config.reap_interval.total_seconds()
        while not self._stop.wait(interval):
            try:
                self.reap_finished()
            except Exception:
                self.logger.exception("unexpected error while reaping")
        self.logger.debug("reapLoop: stopped")

    def reap_finished(self) -> int:
        """Drop finished transactions older than the retention period; return how many."""
        cutoff = datetime.now(timezone.utc) - self.config.retention_period
        expired: dict[str, list[str]] = {}
        for account, finished in self.account_store.get_all_finished().items():
            ids = [item.tx.id for item in finished if item.retention_ts < cutoff]
            if ids:
                expired[account] = ids
        if not expired:
            return 0
        count = self.account_store.delete_all_finished_txs(expired)
        if count:
            self.logger.debug("reapLoop: reaped finished transactions count=%s", count)
        return count

    def get_transaction_status(self, transaction_id: str) -> TransactionStatus:
        """Return the caller-facing status of a transaction."""
        state = self.account_store.get_status_all(transaction_id)
        if state is None:
            raise TransactionManagerError(f"failed to find transaction with id {transaction_id}")
        status = _STATUS_BY_STATE.get(state)
        if status is None:
            raise TransactionManagerError(f"found unknown transaction state for id {transaction_id}")
        return status

    def inflight_count(self) -> tuple[int, int]:
        """Return the queue length and the number of unconfirmed transactions."""
        return self.broadcast_queue.qsize(), self.account_store.get_total_inflight_count()