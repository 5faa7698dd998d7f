"""Player roster management: add, rename and remove family members."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from ledger.models import NAME_SEPARATOR, Player, normalize_name

if TYPE_CHECKING:
    from ledger.models import Ledger

logger = structlog.get_logger()


class PlayerError(ValueError):
    """Roster rule violation (empty or duplicate name, unknown player)."""


def _ensure_name_available(ledger: Ledger, name: str, *, exclude_id: str | None = None) -> str:
    normalized = normalize_name(name)
    if not normalized:
        raise PlayerError("Player name must not be empty")
    if NAME_SEPARATOR in normalized:
        raise PlayerError(f"Player name must not contain '{NAME_SEPARATOR}'")
    for player in ledger.players.values():
        if player.is_active and player.name == normalized and player.player_id != exclude_id:
            raise PlayerError(f"Player name '{normalized}' already taken")
    return normalized


def add_player(ledger: Ledger, name: str, avatar: bytes | None = None) -> Player:
    """Create an active player. Raises PlayerError for an empty or taken name."""
    normalized = _ensure_name_available(ledger, name)
    player = Player(name=normalized, avatar=avatar)
    ledger.players[player.player_id] = player
    logger.info("player added", player_id=player.player_id, name=player.name)
    return player


def rename_player(ledger: Ledger, player_id: str, new_name: str) -> Player:
    """Rename a player in place.

    Records keep referencing the player by id, so normal rounds follow the
    rename. Adjustments stay keyed by the old name and no longer match.
    """
    player = ledger.get_player(player_id)
    if player is None:
        raise PlayerError(f"Unknown player '{player_id}'")
    player.name = _ensure_name_available(ledger, new_name, exclude_id=player_id)
    return player


def remove_player(ledger: Ledger, player_id: str) -> bool:
    """Remove a player from the roster.

    A player referenced by any record is only deactivated so history keeps
    its id-name binding. Return True when the player was deleted outright.
    """
    player = ledger.get_player(player_id)
    if player is None:
        raise PlayerError(f"Unknown player '{player_id}'")
    if ledger.is_player_referenced(player_id):
        player.is_active = False
        logger.info("player deactivated", player_id=player_id, name=player.name)
        return False
    del ledger.players[player_id]
    logger.info("player deleted", player_id=player_id, name=player.name)
    return True
