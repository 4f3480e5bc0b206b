from tronrelay.tx import TronTx, TxState
from tronrelay.utils import TronAddress


def test_state_values_match_source_order():
    assert [TxState(value) for value in range(6)] == [
        TxState.PENDING,
        TxState.ERRORED,
        TxState.FATALLY_ERRORED,
        TxState.BROADCASTED,
        TxState.CONFIRMED,
        TxState.FINALIZED,
    ]
    assert TronTx().state == 0


def test_new_tx_is_pending():
    tx = TronTx(id="abc")
    assert tx.state is TxState.PENDING
    assert tx.id == "abc"
    assert tx.attempt == 0


def test_params_not_shared():
    first = TronTx()
    second = TronTx()
    first.params.append("uint256")
    assert second.params == []
    assert first.params == ["uint256"]


def test_fields_kept_and_mutable():
    address = TronAddress.from_hex("417e5f4552091a69125d5dfcb7b8c2659029395bdf")
    tx = TronTx(from_address=address, contract_address=address, method="foo()", id="k")
    tx.state = TxState.BROADCASTED
    tx.attempt += 1
    assert tx.from_address == address
    assert tx.method == "foo()"
    assert tx.state is TxState.BROADCASTED
    assert tx.attempt == 1


def test_identity_equality():
    tx = TronTx(id="same")
    other = TronTx(id="same")
    assert tx == tx
    assert (tx == other) is False