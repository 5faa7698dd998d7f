"""
Point transfer calculation for a single round.

Every movement of points goes through ``dealer_adjusted``: a leg whose payer
or payee is the round's dealer is multiplied by ``rules.dealer_multiplier``.

Payment structure (before the dealer rule):
- Self-drawn win: each of the three others pays the winner ``self_drawn``
- Discard win: the discarder pays ``discard_loser``, the two bystanders pay
  ``discard_other`` each
- Kongs, independent of the win: every other player pays the declarer
  ``exposed_kong`` per exposed kong and ``concealed_kong`` per concealed kong

Adjustment records move no points between players; their deltas come
straight from the ScoreAdjustment entries.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel

from ledger.models import TABLE_SIZE, normalize_name
from ledger.rules import DEFAULT_RULES, ScoringRules

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ledger.models import Player, RoundRecord


class Transfer(BaseModel, frozen=True):
    """Points paid by one player to another."""

    payer_id: str
    payee_id: str
    amount: int


def dealer_adjusted(
    base: int,
    payer_id: str,
    payee_id: str,
    dealer_id: str | None,
    rules: ScoringRules = DEFAULT_RULES,
) -> int:
    """Apply the dealer multiplier when the dealer pays or receives."""
    if dealer_id is not None and dealer_id in (payer_id, payee_id):
        return base * rules.dealer_multiplier
    return base


def round_transfers(
    record: RoundRecord,
    players: Sequence[Player],
    rules: ScoringRules = DEFAULT_RULES,
) -> list[Transfer]:
    """
    List every transfer of a round in settlement order, win first, then kongs.

    Return an empty list for adjustments and for tables that do not resolve
    to four players including the winner. Only positive amounts are kept.
    """
    if record.is_adjustment:
        return []
    seat_ids = [p.player_id for p in players]
    if len(set(seat_ids)) != TABLE_SIZE or record.winner_id not in seat_ids:
        return []

    winner_id = record.winner_id
    others = [pid for pid in seat_ids if pid != winner_id]
    result: list[Transfer] = []

    def add(payer_id: str, payee_id: str, base: int) -> None:
        amount = dealer_adjusted(base, payer_id, payee_id, record.dealer_id, rules)
        if amount > 0:
            result.append(Transfer(payer_id=payer_id, payee_id=payee_id, amount=amount))

    if record.is_self_drawn:
        for other in others:
            add(other, winner_id, rules.self_drawn)
    elif record.loser_id in others:
        add(record.loser_id, winner_id, rules.discard_loser)
        for other in others:
            if other != record.loser_id:
                add(other, winner_id, rules.discard_other)

    for kong in record.kong_details:
        if kong.player_id not in seat_ids:
            continue
        payers = [pid for pid in seat_ids if pid != kong.player_id]
        if kong.exposed_kong_count > 0:
            for payer in payers:
                add(payer, kong.player_id, rules.exposed_kong * kong.exposed_kong_count)
        if kong.concealed_kong_count > 0:
            for payer in payers:
                add(payer, kong.player_id, rules.concealed_kong * kong.concealed_kong_count)

    return result


def round_deltas(
    record: RoundRecord,
    players: Sequence[Player],
    rules: ScoringRules = DEFAULT_RULES,
) -> dict[str, int]:
    """
    Net score change of every supplied player for one round.

    For adjustments, each entry is credited to the first supplied player
    whose trimmed name matches; unmatched names are ignored.
    """
    deltas = {p.player_id: 0 for p in players}

    if record.is_adjustment:
        for adjustment in record.adjustments:
            target = normalize_name(adjustment.player_name)
            player = next((p for p in players if normalize_name(p.name) == target), None)
            if player is not None:
                deltas[player.player_id] += adjustment.delta
        return deltas

    for transfer in round_transfers(record, players, rules):
        deltas[transfer.payer_id] -= transfer.amount
        deltas[transfer.payee_id] += transfer.amount
    return deltas


def net_transfers(transfers: Sequence[Transfer], seat_order: Sequence[str]) -> list[Transfer]:
    """Collapse A->B and B->A into one net transfer per pair, in seat order.

    Display helper only; deltas are always computed from the gross transfers.
    """
    gross: dict[tuple[str, str], int] = {}
    for t in transfers:
        gross[(t.payer_id, t.payee_id)] = gross.get((t.payer_id, t.payee_id), 0) + t.amount

    result: list[Transfer] = []
    for i, a in enumerate(seat_order):
        for b in seat_order[i + 1 :]:
            net = gross.get((a, b), 0) - gross.get((b, a), 0)
            if net > 0:
                result.append(Transfer(payer_id=a, payee_id=b, amount=net))
            elif net < 0:
                result.append(Transfer(payer_id=b, payee_id=a, amount=-net))
    return result


def group_by_payer(transfers: Sequence[Transfer], seat_order: Sequence[str]) -> dict[str, list[Transfer]]:
    """Outgoing transfers per payer; payers ordered by seat, only those who pay."""
    grouped: dict[str, list[Transfer]] = {}
    for seat in seat_order:
        outgoing = [t for t in transfers if t.payer_id == seat]
        if outgoing:
            grouped[seat] = outgoing
    return grouped
