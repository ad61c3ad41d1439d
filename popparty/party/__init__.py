"""
PoP Party Client
"""

from popparty.party.roster import CandidateSet, canonical_roster, serialize_roster
from popparty.party.instance import PopPartyInstance

__all__ = [
    "CandidateSet",
    "canonical_roster",
    "serialize_roster",
    "PopPartyInstance",
]
