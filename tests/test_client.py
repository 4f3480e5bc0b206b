import pytest

from tronrelay.client import (
    FATAL_RESULTS,
    RETRYABLE_BROADCAST_CODES,
    UNKNOWN_RESULTS,
    Block,
    BroadcastError,
    BroadcastResponse,
    ClientError,
    ContractResult,
    RawData,
    ResponseCode,
    Transaction,
    TransactionStatus,
    TriggerResponse,
    classify_result,
)


@pytest.mark.parametrize(
    "text",
    [
        "BAD_JUMP_DESTINATION",
        "OUT_OF_MEMORY",
        "STACK_TOO_SMALL",
        "STACK_TOO_LARGE",
        "ILLEGAL_OPERATION",
        "STACK_OVERFLOW",
        "JVM_STACK_OVER_FLOW",
        "TRANSFER_FAILED",
        "INVALID_CODE",
        "REVERT",
    ],
)
def test_fatal_results_classified_as_fatal(text):
    result = classify_result(text)
    assert result is not None
    assert result.value == text
    assert result in FATAL_RESULTS


def test_success_is_not_fatal():
    result = classify_result("SUCCESS")
    assert result is ContractResult.SUCCESS
    assert result not in FATAL_RESULTS
    assert result not in UNKNOWN_RESULTS


@pytest.mark.parametrize("text", ["OUT_OF_ENERGY", "OUT_OF_TIME"])
def test_retryable_results_are_neither_fatal_nor_unknown(text):
    result = classify_result(text)
    assert result is ContractResult(text)
    assert result not in FATAL_RESULTS
    assert result not in UNKNOWN_RESULTS


def test_unknown_and_default_results():
    assert classify_result("UNKNOWN") in UNKNOWN_RESULTS
    assert classify_result("DEFAULT") in UNKNOWN_RESULTS


def test_unrecognised_result_gives_none():
    assert classify_result("FAILED") is None
    assert classify_result("") is None


def test_response_codes_parse_from_strings():
    assert ResponseCode("SERVER_BUSY") is ResponseCode.SERVER_BUSY
    assert ResponseCode("BLOCK_UNSOLIDIFIED") is ResponseCode.BLOCK_UNSOLIDIFIED
    assert ResponseCode("SERVER_BUSY") == "SERVER_BUSY"
    assert RETRYABLE_BROADCAST_CODES == {
        ResponseCode("SERVER_BUSY"),
        ResponseCode("BLOCK_UNSOLIDIFIED"),
    }


@pytest.mark.parametrize(
    "code, retryable",
    [("SERVER_BUSY", True), ("BLOCK_UNSOLIDIFIED", True), ("BANDWITH_ERROR", False)],
)
def test_broadcast_error_retryable(code, retryable):
    response = BroadcastResponse(result=False, code=code, message="some error")
    error = BroadcastError("some err", response)
    assert error.response is response
    assert error.retryable is retryable
    assert str(error) == "some err"


def test_broadcast_error_without_response_is_client_error():
    error = BroadcastError("some err")
    assert isinstance(error, ClientError)
    assert error.response is None
    assert error.retryable is False
    assert str(error) == "some err"


def test_broadcast_error_with_successful_response_not_retryable():
    error = BroadcastError("odd", BroadcastResponse(result=True, code="SERVER_BUSY"))
    assert error.retryable is False


def test_add_signature_appends_hex():
    tx = Transaction(tx_id="2a037789237971c1c1d648f7b90b70c68a9aa6b0a2892f947213286346d0210d")
    tx.add_signature(bytes([0x01, 0x02, 0x03]))
    tx.add_signature(bytes([0x04, 0x05, 0x06]))
    assert tx.signature == ["010203", "040506"]


def test_add_signature_round_trips_bytes():
    tx = Transaction()
    payload = bytes(range(65))
    tx.add_signature(payload)
    assert bytes.fromhex(tx.signature[0]) == payload


def test_transactions_do_not_share_signature_lists():
    first = Transaction()
    second = Transaction()
    first.add_signature(b"\xaa")
    assert second.signature == []


def test_trigger_response_carries_raw_data():
    raw = RawData(timestamp=123, expiration=2000, ref_block_hash="abc", fee_limit=789)
    response = TriggerResponse(transaction=Transaction(tx_id="ff", raw_data=raw), result=True)
    assert response.transaction.raw_data.expiration == 2000
    assert response.transaction.raw_data.fee_limit == 789


def test_block_without_header():
    assert Block().timestamp is None
    assert Block(timestamp=1000, number=12345).timestamp == 1000


def test_transaction_status_order():
    ordered = sorted(TransactionStatus(member.value) for member in TransactionStatus)
    assert ordered[0] is TransactionStatus.UNKNOWN
    assert ordered[-1] is TransactionStatus.FATAL
    assert TransactionStatus(TransactionStatus.PENDING.value) < TransactionStatus.FINALIZED