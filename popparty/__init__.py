"""
Proof-of-Personhood Party Protocol

Organizers gather people at a physical party, scan their personhood keys
and finalize an attendee roster on the ledger. Each attendee can then
claim a reward exactly once, anonymously, with a linkable ring signature
over the roster.
"""

__version__ = "1.0.0"
__author__ = "PoP Party Team"

from popparty.constants import PROTOCOL_VERSION

__all__ = [
    "PROTOCOL_VERSION",
    "__version__",
]
