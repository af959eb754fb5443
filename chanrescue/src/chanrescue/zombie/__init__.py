"""
Zombie channel recovery: a cooperative close negotiated by exchanging files
when neither party has usable channel state left.

The flow is PrepareKeys (both parties) -> MakeOffer (one party) -> SignOffer
(the other party).
"""

from chanrescue.zombie.makeoffer import make_offer
from chanrescue.zombie.models import (
    FeeSplit,
    Match,
    MatchChannel,
    NodeInfo,
    OfferState,
    OfferValidationError,
    offer_state,
)
from chanrescue.zombie.preparekeys import prepare_keys, write_prepared_keys
from chanrescue.zombie.signoffer import sign_offer

__all__ = [
    "FeeSplit",
    "Match",
    "MatchChannel",
    "NodeInfo",
    "OfferState",
    "OfferValidationError",
    "make_offer",
    "offer_state",
    "prepare_keys",
    "sign_offer",
    "write_prepared_keys",
]
