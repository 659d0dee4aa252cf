import pytest

from conftest import BEP20_TX_HASH, BEP20_WALLET, bep20_node, bep20_receipt
from services.bep20_verifier import Bep20Verifier
from services.chain_verification import VerificationFailure
from services.json_rpc_client import ChainConnectionError, JsonRpcResponseError


async def test_verifies_transfer_and_reads_amount_from_log():
    rpc = bep20_node()
    result = await Bep20Verifier(rpc).verify(BEP20_TX_HASH, BEP20_WALLET)

    assert result.verified
    assert result.amount == pytest.approx(10.0)
    assert result.from_address == "0x1cbd3b2770909d4e10f157cabc84c7264073c9ec"
    assert result.confirmation_count == 10


async def test_recipient_comparison_ignores_case():
    rpc = bep20_node()
    result = await Bep20Verifier(rpc).verify(BEP20_TX_HASH, BEP20_WALLET.upper().replace("0X", "0x"))

    assert result.verified


async def test_missing_receipt_is_not_found():
    rpc = bep20_node(eth_getTransactionReceipt=None)
    result = await Bep20Verifier(rpc).verify(BEP20_TX_HASH, BEP20_WALLET)

    assert not result.verified
    assert result.failure == VerificationFailure.NOT_FOUND
    assert not result.retryable


async def test_reverted_transaction_fails():
    rpc = bep20_node(receipt=bep20_receipt(status="0x0"))
    result = await Bep20Verifier(rpc).verify(BEP20_TX_HASH, BEP20_WALLET)

    assert result.failure == VerificationFailure.FAILED_ON_CHAIN
    assert "eth_blockNumber" not in rpc.methods()


async def test_too_few_confirmations_is_retryable():
    rpc = bep20_node(receipt=bep20_receipt(block_number=100), current_block=102)
    result = await Bep20Verifier(rpc).verify(BEP20_TX_HASH, BEP20_WALLET)

    assert result.failure == VerificationFailure.INSUFFICIENT_CONFIRMATIONS
    assert result.retryable
    assert result.error == "Transaction needs at least 3 confirmations. Current: 2"


async def test_exactly_three_confirmations_passes():
    rpc = bep20_node(receipt=bep20_receipt(block_number=100), current_block=103)
    result = await Bep20Verifier(rpc).verify(BEP20_TX_HASH, BEP20_WALLET)

    assert result.verified
    assert result.confirmation_count == 3


async def test_transfer_to_another_wallet_is_rejected():
    other_wallet = "0x" + "12" * 20
    rpc = bep20_node(receipt=bep20_receipt(recipient=other_wallet))
    result = await Bep20Verifier(rpc).verify(BEP20_TX_HASH, BEP20_WALLET)

    assert result.failure == VerificationFailure.RECIPIENT_MISMATCH
    assert other_wallet in result.error


async def test_logs_from_other_contracts_are_ignored():
    rpc = bep20_node(receipt=bep20_receipt(contract="0x" + "99" * 20))
    result = await Bep20Verifier(rpc).verify(BEP20_TX_HASH, BEP20_WALLET)

    assert result.failure == VerificationFailure.TRANSFER_NOT_FOUND


async def test_dust_transfer_is_rejected():
    rpc = bep20_node(receipt=bep20_receipt(amount_units=5 * 10**15))
    result = await Bep20Verifier(rpc).verify(BEP20_TX_HASH, BEP20_WALLET)

    assert result.failure == VerificationFailure.AMOUNT_TOO_SMALL


async def test_decimals_lookup_failure_falls_back_to_eighteen():
    rpc = bep20_node(eth_call=JsonRpcResponseError("eth_call", -32000, "execution reverted"))
    result = await Bep20Verifier(rpc).verify(BEP20_TX_HASH, BEP20_WALLET)

    assert result.verified
    assert result.amount == pytest.approx(10.0)


async def test_memo_mismatch_does_not_block_verification():
    memo_hex = "TXN-OTHER-MEMO".encode().hex()
    calldata = "0xa9059cbb" + "0" * 128 + memo_hex
    rpc = bep20_node(eth_getTransactionByHash={"input": calldata})
    result = await Bep20Verifier(rpc).verify(BEP20_TX_HASH, BEP20_WALLET, memo="TXN-ABC123-DEF456")

    assert result.verified
    assert "eth_getTransactionByHash" in rpc.methods()


async def test_receipt_error_object_propagates():
    rpc = bep20_node(
        eth_getTransactionReceipt=JsonRpcResponseError("eth_getTransactionReceipt", -32000, "header not found")
    )

    with pytest.raises(JsonRpcResponseError) as exc_info:
        await Bep20Verifier(rpc).verify(BEP20_TX_HASH, BEP20_WALLET)
    assert exc_info.value.code == -32000


async def test_block_number_error_object_propagates():
    rpc = bep20_node(eth_blockNumber=JsonRpcResponseError("eth_blockNumber", -32603, "internal error"))

    with pytest.raises(JsonRpcResponseError):
        await Bep20Verifier(rpc).verify(BEP20_TX_HASH, BEP20_WALLET)
    assert "eth_call" not in rpc.methods()


async def test_null_block_number_is_a_connection_error():
    rpc = bep20_node(eth_blockNumber=None)

    with pytest.raises(ChainConnectionError):
        await Bep20Verifier(rpc).verify(BEP20_TX_HASH, BEP20_WALLET)


async def test_node_outage_propagates():
    rpc = bep20_node(eth_getTransactionReceipt=ChainConnectionError("RPC node timed out"))

    with pytest.raises(ChainConnectionError):
        await Bep20Verifier(rpc).verify(BEP20_TX_HASH, BEP20_WALLET)
