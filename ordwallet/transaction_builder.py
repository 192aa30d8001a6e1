"""Ordinal-aware transaction construction.

Sending a sat means more than paying an address: the outgoing sat has to land
at the first position of the recipient's output, inscribed UTXOs must never be
spent as plain funding, and the recipient output should carry a sensible
amount of postage. ``TransactionBuilder`` takes a transaction through one step
per concern, and ``BuilderState.build`` checks the result.

``build_transaction_with_postage`` keeps the outgoing value at or below
20,000 sats, cutting it to 10,000 sats when coin selection adds extra value.
``build_transaction_with_value`` sends exactly the requested amount.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from ordwallet.address import Address
from ordwallet.builder_state import (
    ADDITIONAL_INPUT_VBYTES,
    ADDITIONAL_OUTPUT_VBYTES,
    MAX_POSTAGE,
    TARGET_POSTAGE,
    BuilderState,
    DuplicateAddressError,
    DustError,
    InvariantViolation,
    NotEnoughCardinalUtxosError,
    NotInWalletError,
    OutOfRangeError,
    Target,
    UtxoContainsAdditionalInscriptionError,
    ValueOverflowError,
)
from ordwallet.primitives import (
    FeeRate,
    InscriptionId,
    OutPoint,
    SatPoint,
    Transaction,
    dust_value,
)

_log = logging.getLogger(__name__)

_MAX_AMOUNT = 2**64 - 1


def _checked_add(a: int, b: int) -> int:
    total = a + b
    if total > _MAX_AMOUNT:
        raise ValueOverflowError()
    return total


class TransactionBuilder(BuilderState):
    """Assembles a transaction that sends one sat to a recipient."""

    def __init__(
        self,
        outgoing: SatPoint,
        inscriptions: Mapping[SatPoint, InscriptionId],
        amounts: Mapping[OutPoint, int],
        recipient: Address,
        change: Sequence[Address],
        fee_rate: FeeRate,
        target: Target | None = None,
    ):
        change = list(change)
        if len(change) != 2:
            raise ValueError("exactly two change addresses are required")
        if recipient in change:
            raise DuplicateAddressError(recipient)
        if change[0] == change[1]:
            raise DuplicateAddressError(change[0])
        amounts = dict(amounts)
        super().__init__(
            outgoing=outgoing,
            inscriptions=dict(inscriptions),
            amounts=amounts,
            recipient=recipient,
            change_addresses=set(change),
            unused_change_addresses=list(change),
            fee_rate=fee_rate,
            target=target if target is not None else Target.postage(),
            inputs=[],
            outputs=[],
            utxos=set(amounts),
        )

    def _pop_change_address(self) -> Address:
        if not self.unused_change_addresses:
            raise InvariantViolation("not enough change addresses")
        return self.unused_change_addresses.pop()

    def _set_last_amount(self, amount: int) -> None:
        address, _old = self.outputs[-1]
        self.outputs[-1] = (address, amount)

    def select_outgoing(self) -> TransactionBuilder:
        """Spend the UTXO holding the outgoing sat, paying it all to the recipient."""
        for inscribed_satpoint, inscription_id in sorted(self.inscriptions.items()):
            if (
                self.outgoing.outpoint == inscribed_satpoint.outpoint
                and self.outgoing.offset != inscribed_satpoint.offset
            ):
                raise UtxoContainsAdditionalInscriptionError(
                    self.outgoing, inscribed_satpoint, inscription_id
                )

        amount = self.amounts.get(self.outgoing.outpoint)
        if amount is None:
            raise NotInWalletError(self.outgoing)

        if self.outgoing.offset >= amount:
            raise OutOfRangeError(self.outgoing, amount - 1)

        self.utxos.discard(self.outgoing.outpoint)
        self.inputs.append(self.outgoing.outpoint)
        self.outputs.append((self.recipient, amount))

        _log.debug(
            "selected outgoing outpoint %s with value %d", self.outgoing.outpoint, amount
        )
        return self

    def align_outgoing(self) -> TransactionBuilder:
        """Split off the sats before the outgoing sat into a change output."""
        if len(self.outputs) != 1:
            raise InvariantViolation("invariant: only one output")
        if self.outputs[0][0] != self.recipient:
            raise InvariantViolation("invariant: first output is recipient")

        sat_offset = self.calculate_sat_offset()
        if sat_offset == 0:
            _log.debug("outgoing is aligned")
        else:
            _log.debug("aligned outgoing with %d sat padding output", sat_offset)
            self.outputs.insert(0, (self._pop_change_address(), sat_offset))
            self._set_last_amount(self.outputs[-1][1] - sat_offset)
        return self

    def pad_alignment_output(self) -> TransactionBuilder:
        """Raise an alignment output below the dust limit with an extra input."""
        if self.outputs[0][0] == self.recipient:
            _log.debug("no alignment output")
            return self

        dust_limit = dust_value(self.recipient.script_pubkey())
        address, amount = self.outputs[0]
        if amount >= dust_limit:
            _log.debug("no padding needed")
            return self

        utxo, size = self.select_cardinal_utxo(dust_limit - amount)
        self.inputs.insert(0, utxo)
        self.outputs[0] = (address, amount + size)
        _log.debug(
            "padded alignment output to %d with additional %d sat input",
            amount + size,
            size,
        )
        return self

    def add_value(self) -> TransactionBuilder:
        """Add a cardinal input if the last output cannot cover its target and the fee."""
        estimated_fee = self.estimate_fee()

        if self.target.is_postage:
            min_value = dust_value(self.outputs[-1][0].script_pubkey())
        else:
            min_value = self.target.value

        total = _checked_add(min_value, estimated_fee)
        deficit = total - self.outputs[-1][1]

        if deficit > 0:
            needed = _checked_add(deficit, self.fee_rate.fee(ADDITIONAL_INPUT_VBYTES))
            utxo, value = self.select_cardinal_utxo(needed)
            self.inputs.append(utxo)
            self._set_last_amount(self.outputs[-1][1] + value)
            _log.debug("added %d sat input to cover %d sat deficit", value, deficit)
        return self

    def strip_value(self) -> TransactionBuilder:
        """Move value beyond the target into a change output when that is worth it."""
        sat_offset = self.calculate_sat_offset()
        total_output_amount = sum(amount for _address, amount in self.outputs)

        if not any(address == self.recipient for address, _amount in self.outputs):
            raise InvariantViolation("couldn't find output that contains the index")

        value = total_output_amount - sat_offset
        excess = value - self.fee_rate.fee(self.estimate_vbytes())

        if excess >= 0:
            if self.target.is_postage:
                maximum, target = MAX_POSTAGE, TARGET_POSTAGE
            else:
                maximum = target = self.target.value

            if excess > maximum:
                if not self.unused_change_addresses:
                    raise InvariantViolation("not enough change addresses")
                change_dust = dust_value(self.unused_change_addresses[-1].script_pubkey())
                extra_fee = self.fee_rate.fee(
                    self.estimate_vbytes() + ADDITIONAL_OUTPUT_VBYTES
                )
                if value - target > change_dust + extra_fee:
                    _log.debug("stripped %d sats", value - target)
                    self._set_last_amount(target)
                    self.outputs.append((self._pop_change_address(), value - target))
        return self

    def deduct_fee(self) -> TransactionBuilder:
        """Pay the estimated fee out of the last output."""
        sat_offset = self.calculate_sat_offset()
        fee = self.estimate_fee()
        total_output_amount = sum(amount for _address, amount in self.outputs)

        if not self.outputs:
            raise InvariantViolation("No output to deduct fee from")

        if not (total_output_amount >= fee and total_output_amount - fee > sat_offset):
            raise InvariantViolation("invariant: deducting fee does not consume sat")

        last_amount = self.outputs[-1][1]
        if last_amount < fee:
            raise InvariantViolation(
                f"invariant: last output can pay fee: {last_amount} {fee}"
            )

        self._set_last_amount(last_amount - fee)
        return self

    def select_cardinal_utxo(self, minimum_value: int) -> tuple[OutPoint, int]:
        """Take the first uninscribed UTXO worth at least ``minimum_value``."""
        inscribed = {satpoint.outpoint for satpoint in self.inscriptions}

        for utxo in sorted(self.utxos):
            if utxo in inscribed:
                continue
            value = self.amounts[utxo]
            if value >= minimum_value:
                self.utxos.remove(utxo)
                return utxo, value

        raise NotEnoughCardinalUtxosError()

    def build_transaction(self) -> Transaction:
        """Run every construction step and return the checked transaction."""
        return (
            self.select_outgoing()
            .align_outgoing()
            .pad_alignment_output()
            .add_value()
            .strip_value()
            .deduct_fee()
            .build()
        )


def build_transaction_with_postage(
    outgoing: SatPoint,
    inscriptions: Mapping[SatPoint, InscriptionId],
    amounts: Mapping[OutPoint, int],
    recipient: Address,
    change: Sequence[Address],
    fee_rate: FeeRate,
) -> Transaction:
    """Send ``outgoing`` to ``recipient`` with at most 20,000 sats of postage."""
    return TransactionBuilder(
        outgoing, inscriptions, amounts, recipient, change, fee_rate, Target.postage()
    ).build_transaction()


def build_transaction_with_value(
    outgoing: SatPoint,
    inscriptions: Mapping[SatPoint, InscriptionId],
    amounts: Mapping[OutPoint, int],
    recipient: Address,
    change: Sequence[Address],
    fee_rate: FeeRate,
    output_value: int,
) -> Transaction:
    """Send ``outgoing`` to ``recipient`` in an output worth ``output_value`` sats."""
    dust = dust_value(recipient.script_pubkey())
    if output_value < dust:
        raise DustError(output_value, dust)

    return TransactionBuilder(
        outgoing,
        inscriptions,
        amounts,
        recipient,
        change,
        fee_rate,
        Target.exact(output_value),
    ).build_transaction()