import pytest

from ordwallet.address import parse_address
from ordwallet.builder_state import (
    ADDITIONAL_INPUT_VBYTES,
    ADDITIONAL_OUTPUT_VBYTES,
    BuilderState,
    DuplicateAddressError,
    DustError,
    InvariantViolation,
    NotEnoughCardinalUtxosError,
    NotInWalletError,
    OutOfRangeError,
    Target,
    TransactionBuilderError,
    UtxoContainsAdditionalInscriptionError,
    ValueOverflowError,
    estimate_vbytes_with,
)
from ordwallet.primitives import (
    SEQUENCE_ENABLE_RBF_NO_LOCKTIME,
    FeeRate,
    InscriptionId,
    OutPoint,
    SatPoint,
    Transaction,
    TxIn,
    TxOut,
)


def txid(n):
    return format(n, "x") * 64


def outpoint(n):
    return OutPoint(txid(n), n)


def satpoint(n, offset):
    return SatPoint(outpoint(n), offset)


def inscription_id(n):
    return InscriptionId(txid(n), n)


def recipient():
    return parse_address("tb1q6en7qjxgw4ev8xwx94pzdry6a6ky7wlfeqzunz")


def change(n):
    return parse_address(
        [
            "tb1qjsv26lap3ffssj6hfy8mzn0lg5vte6a42j75ww",
            "tb1qakxxzv9n7706kc3xdcycrtfv8cqv62hnwexc0l",
            "tb1qxz9yk0td0yye009gt6ayn7jthz5p07a75luryg",
        ][n]
    )


def tx_in(previous_output):
    return TxIn(previous_output, b"", SEQUENCE_ENABLE_RBF_NO_LOCKTIME, [])


def tx_out(value, address):
    return TxOut(value, address.script_pubkey())


def make_state(outgoing, amounts, inputs, outputs, target=None, unused=None):
    return BuilderState(
        outgoing=outgoing,
        inscriptions={},
        amounts=dict(amounts),
        recipient=recipient(),
        change_addresses={change(0), change(1)},
        unused_change_addresses=unused if unused is not None else [change(0), change(1)],
        fee_rate=FeeRate(1.0),
        target=target or Target.postage(),
        inputs=list(inputs),
        outputs=list(outputs),
    )


def three_input_state(outputs):
    return make_state(
        satpoint(1, 0),
        {outpoint(1): 5_000, outpoint(2): 5_000, outpoint(3): 2_000},
        [outpoint(1), outpoint(2), outpoint(3)],
        outputs,
    )


def test_tx_builder_to_transaction():
    state = three_input_state(
        [(recipient(), 5_000), (change(0), 5_000), (change(1), 1_724)]
    )
    assert state.build() == Transaction(
        version=1,
        lock_time=0,
        input=[tx_in(outpoint(1)), tx_in(outpoint(2)), tx_in(outpoint(3))],
        output=[
            tx_out(5_000, recipient()),
            tx_out(5_000, change(0)),
            tx_out(1_724, change(1)),
        ],
    )


def test_built_transaction_is_rbf():
    state = three_input_state(
        [(recipient(), 5_000), (change(0), 5_000), (change(1), 1_724)]
    )
    assert state.build().is_explicitly_rbf()


def test_estimate_fee_matches_actual_fee():
    state = three_input_state(
        [(recipient(), 5_000), (change(0), 5_000), (change(1), 1_724)]
    )
    assert state.estimate_vbytes() == 276
    assert state.estimate_fee() == 276


def test_invariant_recipient_appears_exactly_once():
    state = three_input_state(
        [(recipient(), 5_000), (recipient(), 5_000), (change(1), 1_774)]
    )
    with pytest.raises(
        InvariantViolation,
        match="invariant: recipient address appears exactly once in outputs",
    ):
        state.build()


def test_invariant_change_appears_at_most_once():
    state = three_input_state(
        [(recipient(), 5_000), (change(0), 5_000), (change(0), 1_774)]
    )
    with pytest.raises(
        InvariantViolation,
        match="invariant: change addresses appear at most once in outputs",
    ):
        state.build()


def test_invariant_satpoint_outpoint_is_contained_in_utxos():
    state = make_state(satpoint(2, 0), {outpoint(1): 4}, [], [])
    with pytest.raises(
        InvariantViolation, match="invariant: outgoing sat is contained in utxos"
    ):
        state.build()


def test_invariant_satpoint_offset_is_contained_in_utxos():
    state = make_state(satpoint(1, 4), {outpoint(1): 4}, [], [])
    with pytest.raises(
        InvariantViolation, match="invariant: outgoing sat is contained in utxos"
    ):
        state.build()


def test_invariant_inputs_spend_sat():
    state = make_state(satpoint(1, 2), {outpoint(1): 5}, [], [])
    with pytest.raises(InvariantViolation, match="invariant: inputs spend outgoing sat"):
        state.build()


def test_invariant_sat_is_sent_to_recipient():
    other = parse_address("tb1qx4gf3ya0cxfcwydpq8vr2lhrysneuj5d7lqatw")
    state = make_state(satpoint(1, 2), {outpoint(1): 5}, [outpoint(1)], [(other, 5)])
    with pytest.raises(
        InvariantViolation, match="invariant: outgoing sat is sent to recipient"
    ):
        state.build()


def test_invariant_sat_is_found_in_outputs():
    state = make_state(
        satpoint(1, 2), {outpoint(1): 5}, [outpoint(1)], [(recipient(), 0)]
    )
    with pytest.raises(
        InvariantViolation, match="invariant: outgoing sat is found in outputs"
    ):
        state.build()


def test_invariant_excess_postage_is_stripped():
    state = make_state(
        satpoint(1, 0),
        {outpoint(1): 1_000_000},
        [outpoint(1)],
        [(recipient(), 1_000_000)],
    )
    with pytest.raises(InvariantViolation, match="invariant: excess postage is stripped"):
        state.build()


def test_invariant_fee_estimation_is_correct():
    state = make_state(
        satpoint(1, 0), {outpoint(1): 10_000}, [outpoint(1)], [(recipient(), 10_000)]
    )
    with pytest.raises(InvariantViolation, match="invariant: fee estimation is correct"):
        state.build()


def test_invariant_sat_is_aligned():
    state = make_state(
        satpoint(1, 3_333), {outpoint(1): 10_000}, [outpoint(1)], [(recipient(), 9_901)]
    )
    with pytest.raises(
        InvariantViolation,
        match="invariant: sat is at first position in recipient output",
    ):
        state.build()


def test_invariant_all_outputs_are_above_dust_limit():
    state = make_state(
        satpoint(1, 1),
        {outpoint(1): 10_000},
        [outpoint(1)],
        [(change(1), 1), (recipient(), 9_869)],
        unused=[change(0)],
    )
    with pytest.raises(
        InvariantViolation, match="invariant: all outputs are above dust limit"
    ):
        state.build()


def test_invariant_all_outputs_are_recognized():
    state = make_state(
        satpoint(1, 3_333),
        {outpoint(1): 10_000},
        [outpoint(1)],
        [(change(1), 3_333), (recipient(), 6_537)],
        unused=[change(0)],
    )
    state.change_addresses = set()
    with pytest.raises(
        InvariantViolation,
        match="invariant: all outputs are either change or recipient",
    ):
        state.build()


def test_aligned_state_builds():
    state = make_state(
        satpoint(1, 3_333),
        {outpoint(1): 10_000},
        [outpoint(1)],
        [(change(1), 3_333), (recipient(), 6_537)],
        unused=[change(0)],
    )
    assert state.build().output == [tx_out(3_333, change(1)), tx_out(6_537, recipient())]


def test_invariant_output_equals_target_value():
    state = make_state(
        satpoint(1, 0),
        {outpoint(1): 5_000},
        [outpoint(1)],
        [(recipient(), 4_901)],
        target=Target.exact(1_000),
    )
    with pytest.raises(InvariantViolation, match="invariant: output equals target value"):
        state.build()


def test_additional_input_size_is_correct():
    before = estimate_vbytes_with(0, [])
    after = estimate_vbytes_with(1, [])
    assert after - before == ADDITIONAL_INPUT_VBYTES == 58


def test_additional_output_size_is_correct():
    before = estimate_vbytes_with(0, [])
    after = estimate_vbytes_with(
        0,
        [parse_address("bc1pxwww0ct9ue7e8tdnlmug5m2tamfn7q06sahstg39ys4c9f3340qqxrdu9k")],
    )
    assert after - before == ADDITIONAL_OUTPUT_VBYTES == 43


def test_calculate_sat_offset_counts_preceding_inputs():
    state = make_state(
        satpoint(1, 1),
        {outpoint(1): 10_000, outpoint(2): 10_000},
        [outpoint(2), outpoint(1)],
        [],
    )
    assert state.calculate_sat_offset() == 10_001


def test_calculate_sat_offset_requires_outgoing_input():
    state = make_state(satpoint(1, 1), {outpoint(2): 10_000}, [outpoint(2)], [])
    with pytest.raises(InvariantViolation, match="Could not find outgoing sat in inputs"):
        state.calculate_sat_offset()


def test_target_kinds():
    assert Target.postage().is_postage
    assert not Target.exact(1_000).is_postage
    assert Target.exact(1_000).value == 1_000


def test_dust_error_message():
    assert str(DustError(1, 294)) == (
        "output value is below dust value: 0.00000001 BTC < 0.00000294 BTC"
    )


def test_error_messages():
    assert str(NotEnoughCardinalUtxosError()) == (
        "wallet does not contain enough cardinal UTXOs, "
        "please add additional funds to wallet."
    )
    assert str(ValueOverflowError()) == "arithmetic overflow calculating value"
    assert str(NotInWalletError(satpoint(1, 0))) == (
        f"outgoing satpoint {'1' * 64}:1:0 not in wallet"
    )
    assert str(OutOfRangeError(satpoint(1, 5), 4)) == (
        f"outgoing satpoint {'1' * 64}:1:5 offset higher than maximum 4"
    )
    assert str(DuplicateAddressError(recipient())) == (
        "duplicate input address: tb1q6en7qjxgw4ev8xwx94pzdry6a6ky7wlfeqzunz"
    )
    assert str(
        UtxoContainsAdditionalInscriptionError(
            satpoint(1, 0), satpoint(1, 500), inscription_id(1)
        )
    ) == (
        f"cannot send {'1' * 64}:1:0 without also sending inscription "
        f"{'1' * 64}i1 at {'1' * 64}:1:500"
    )


def test_errors_compare_by_type_and_details():
    assert DustError(1, 294) == DustError(1, 294)
    assert not DustError(1, 294) == DustError(2, 294)
    assert NotEnoughCardinalUtxosError() == NotEnoughCardinalUtxosError()
    assert not NotEnoughCardinalUtxosError() == ValueOverflowError()
    assert isinstance(DuplicateAddressError(change(0)), TransactionBuilderError)
    assert DuplicateAddressError(change(0)).address == change(0)