"""State, errors and final checks for ordinal-aware transaction building.

The builder tracks which inputs it spends and which outputs it creates while
making sure the outgoing sat lands at the first position of the recipient's
output. ``BuilderState.build`` turns the state into a transaction and checks
every invariant the construction steps are meant to uphold.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ordwallet.address import Address
from ordwallet.primitives import (
    SEQUENCE_ENABLE_RBF_NO_LOCKTIME,
    FeeRate,
    InscriptionId,
    OutPoint,
    SatPoint,
    Transaction,
    TxIn,
    TxOut,
    dust_value,
)

ADDITIONAL_INPUT_VBYTES = 58
ADDITIONAL_OUTPUT_VBYTES = 43
SCHNORR_SIGNATURE_SIZE = 64
TARGET_POSTAGE = 10_000
MAX_POSTAGE = 2 * 10_000


def _format_amount(sats: int) -> str:
    sign = "-" if sats < 0 else ""
    sats = abs(sats)
    return f"{sign}{sats // 100_000_000}.{sats % 100_000_000:08d} BTC"


@dataclass(frozen=True)
class Target:
    """What the recipient output should hold: postage, or an exact value."""

    value: int | None = None

    @classmethod
    def postage(cls) -> Target:
        return cls(None)

    @classmethod
    def exact(cls, value: int) -> Target:
        return cls(value)

    @property
    def is_postage(self) -> bool:
        return self.value is None


class TransactionBuilderError(Exception):
    """Base class of the errors transaction construction can report.

    Errors compare equal when they are of the same type with the same details.
    """

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.args == other.args

    def __hash__(self) -> int:
        return hash((type(self), self.args))


class DuplicateAddressError(TransactionBuilderError):
    def __init__(self, address: Address):
        super().__init__(address)
        self.address = address

    def __str__(self) -> str:
        return f"duplicate input address: {self.address}"


class DustError(TransactionBuilderError):
    def __init__(self, output_value: int, dust_value: int):
        super().__init__(output_value, dust_value)
        self.output_value = output_value
        self.dust_value = dust_value

    def __str__(self) -> str:
        return (
            "output value is below dust value: "
            f"{_format_amount(self.output_value)} < {_format_amount(self.dust_value)}"
        )


class NotEnoughCardinalUtxosError(TransactionBuilderError):
    def __str__(self) -> str:
        return (
            "wallet does not contain enough cardinal UTXOs, "
            "please add additional funds to wallet."
        )


class NotInWalletError(TransactionBuilderError):
    def __init__(self, outgoing_satpoint: SatPoint):
        super().__init__(outgoing_satpoint)
        self.outgoing_satpoint = outgoing_satpoint

    def __str__(self) -> str:
        return f"outgoing satpoint {self.outgoing_satpoint} not in wallet"


class OutOfRangeError(TransactionBuilderError):
    def __init__(self, outgoing_satpoint: SatPoint, maximum: int):
        super().__init__(outgoing_satpoint, maximum)
        self.outgoing_satpoint = outgoing_satpoint
        self.maximum = maximum

    def __str__(self) -> str:
        return (
            f"outgoing satpoint {self.outgoing_satpoint} "
            f"offset higher than maximum {self.maximum}"
        )


class UtxoContainsAdditionalInscriptionError(TransactionBuilderError):
    def __init__(
        self,
        outgoing_satpoint: SatPoint,
        inscribed_satpoint: SatPoint,
        inscription_id: InscriptionId,
    ):
        super().__init__(outgoing_satpoint, inscribed_satpoint, inscription_id)
        self.outgoing_satpoint = outgoing_satpoint
        self.inscribed_satpoint = inscribed_satpoint
        self.inscription_id = inscription_id

    def __str__(self) -> str:
        return (
            f"cannot send {self.outgoing_satpoint} without also sending "
            f"inscription {self.inscription_id} at {self.inscribed_satpoint}"
        )


class ValueOverflowError(TransactionBuilderError):
    def __str__(self) -> str:
        return "arithmetic overflow calculating value"


class InvariantViolation(AssertionError):
    """Raised when a transaction under construction breaks an invariant."""


def _check(condition: bool, message: str) -> None:
    if not condition:
        raise InvariantViolation(message)


def _signed_input(previous_output: OutPoint) -> TxIn:
    return TxIn(
        previous_output,
        b"",
        SEQUENCE_ENABLE_RBF_NO_LOCKTIME,
        [bytes(SCHNORR_SIGNATURE_SIZE)],
    )


def estimate_vbytes_with(inputs: int, outputs: list[Address]) -> int:
    """Virtual size of a transaction of taproot key-path inputs and the given outputs."""
    transaction = Transaction(
        version=1,
        lock_time=0,
        input=[_signed_input(OutPoint.null()) for _ in range(inputs)],
        output=[TxOut(0, address.script_pubkey()) for address in outputs],
    )
    return transaction.vsize()


@dataclass
class BuilderState:
    """Everything known about a transaction while it is being assembled."""

    ADDITIONAL_INPUT_VBYTES = ADDITIONAL_INPUT_VBYTES
    ADDITIONAL_OUTPUT_VBYTES = ADDITIONAL_OUTPUT_VBYTES
    MAX_POSTAGE = MAX_POSTAGE
    SCHNORR_SIGNATURE_SIZE = SCHNORR_SIGNATURE_SIZE
    TARGET_POSTAGE = TARGET_POSTAGE

    outgoing: SatPoint
    inscriptions: dict[SatPoint, InscriptionId]
    amounts: dict[OutPoint, int]
    recipient: Address
    change_addresses: set[Address]
    unused_change_addresses: list[Address]
    fee_rate: FeeRate
    target: Target = field(default_factory=Target.postage)
    inputs: list[OutPoint] = field(default_factory=list)
    outputs: list[tuple[Address, int]] = field(default_factory=list)
    utxos: set[OutPoint] = field(default_factory=set)

    def estimate_vbytes(self) -> int:
        """Estimated virtual size, assuming every input is a single-signature taproot spend."""
        return estimate_vbytes_with(
            len(self.inputs), [address for address, _amount in self.outputs]
        )

    def estimate_fee(self) -> int:
        return self.fee_rate.fee(self.estimate_vbytes())

    def calculate_sat_offset(self) -> int:
        """Position of the outgoing sat among the sats of all inputs."""
        sat_offset = 0
        for outpoint in self.inputs:
            if outpoint == self.outgoing.outpoint:
                return sat_offset + self.outgoing.offset
            sat_offset += self.amounts[outpoint]
        raise InvariantViolation("Could not find outgoing sat in inputs")

    def build(self) -> Transaction:
        """Produce the transaction, checking every construction invariant."""
        recipient_script = self.recipient.script_pubkey()
        outgoing = self.outgoing
        transaction = Transaction(
            version=1,
            lock_time=0,
            input=[
                TxIn(outpoint, b"", SEQUENCE_ENABLE_RBF_NO_LOCKTIME, [])
                for outpoint in self.inputs
            ],
            output=[
                TxOut(amount, address.script_pubkey())
                for address, amount in self.outputs
            ],
        )

        _check(
            sum(
                1
                for outpoint, amount in self.amounts.items()
                if outpoint == outgoing.outpoint and outgoing.offset < amount
            )
            == 1,
            "invariant: outgoing sat is contained in utxos",
        )

        _check(
            sum(
                1
                for txin in transaction.input
                if txin.previous_output == outgoing.outpoint
            )
            == 1,
            "invariant: inputs spend outgoing sat",
        )

        sat_offset = self.calculate_sat_offset()

        output_end = 0
        for txout in transaction.output:
            output_end += txout.value
            if output_end > sat_offset:
                _check(
                    txout.script_pubkey == recipient_script,
                    "invariant: outgoing sat is sent to recipient",
                )
                break
        else:
            raise InvariantViolation("invariant: outgoing sat is found in outputs")

        _check(
            sum(1 for txout in transaction.output if txout.script_pubkey == recipient_script)
            == 1,
            "invariant: recipient address appears exactly once in outputs",
        )

        change_scripts = {address.script_pubkey() for address in self.change_addresses}
        _check(
            all(
                sum(1 for txout in transaction.output if txout.script_pubkey == script) <= 1
                for script in change_scripts
            ),
            "invariant: change addresses appear at most once in outputs",
        )

        slop = self.fee_rate.fee(ADDITIONAL_OUTPUT_VBYTES)
        offset = 0
        for txout in transaction.output:
            if txout.script_pubkey == recipient_script:
                if self.target.is_postage:
                    _check(
                        txout.value <= MAX_POSTAGE + slop,
                        "invariant: excess postage is stripped",
                    )
                else:
                    max_change_dust = max(
                        (dust_value(script) for script in change_scripts), default=0
                    )
                    excess = txout.value - self.target.value
                    _check(
                        0 <= excess <= max_change_dust + slop,
                        "invariant: output equals target value",
                    )
                _check(
                    offset == sat_offset,
                    "invariant: sat is at first position in recipient output",
                )
            else:
                _check(
                    txout.script_pubkey in change_scripts,
                    "invariant: all outputs are either change or recipient: "
                    f"unrecognized output {txout.script_pubkey.hex()}",
                )
            offset += txout.value

        actual_fee = sum(
            self.amounts[txin.previous_output] for txin in transaction.input
        ) - sum(txout.value for txout in transaction.output)

        signed = Transaction(
            version=transaction.version,
            lock_time=transaction.lock_time,
            input=[_signed_input(txin.previous_output) for txin in transaction.input],
            output=list(transaction.output),
        )
        expected_fee = self.fee_rate.fee(signed.vsize())

        _check(actual_fee == expected_fee, "invariant: fee estimation is correct")

        for txout in transaction.output:
            _check(
                txout.value >= dust_value(txout.script_pubkey),
                "invariant: all outputs are above dust limit",
            )

        return transaction