"""
Scoring rule amounts for the family table.

Every amount here is a *base* amount: the dealer multiplier is applied per
transfer leg by ``ledger.transfers.dealer_adjusted``.
"""

from pydantic import BaseModel, Field


class ScoringRules(BaseModel, frozen=True):
    """Base point amounts and the dealer multiplier."""

    self_drawn: int = Field(default=20, ge=0)  # paid by each of the three others
    discard_loser: int = Field(default=20, ge=0)  # paid by the discarder
    discard_other: int = Field(default=10, ge=0)  # paid by each bystander on a discard win
    exposed_kong: int = Field(default=10, ge=0)  # per exposed kong, from each other player
    concealed_kong: int = Field(default=20, ge=0)  # per concealed kong, from each other player
    dealer_multiplier: int = Field(default=2, ge=1)


DEFAULT_RULES = ScoringRules()
