"""Attendee roster: scanned candidates and the canonical finalized roster.

Candidates are keyed by their 32-byte encoding, so duplicates are detected
by byte equality rather than object identity. Finalization sorts the
encodings in unsigned byte-wise lexicographic order, which makes the roster
independent of scan order: every verifier recomputes the same bytes.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Tuple

from popparty.core.party import encode_roster
from popparty.core.types import PublicKey
from popparty.errors import DuplicateAttendee, UnknownAttendee

logger = logging.getLogger(__name__)


def canonical_roster(keys: Iterable[PublicKey]) -> Tuple[PublicKey, ...]:
    """Sort keys by their canonical encoding, dropping byte-equal duplicates."""
    unique = {bytes(key): key for key in keys}
    return tuple(unique[data] for data in sorted(unique))


def serialize_roster(keys: Iterable[PublicKey]) -> bytes:
    """Canonical roster bytes, identical for any insertion order."""
    return encode_roster(canonical_roster(keys))


class CandidateSet:
    """Client-local set of scanned attendee keys.

    Thread-safety: not thread-safe; owned by a single party handle.
    """

    def __init__(self, keys: Iterable[PublicKey] = ()) -> None:
        self._keys: Dict[bytes, PublicKey] = {}
        for key in keys:
            self._keys.setdefault(bytes(key), key)

    def add(self, key: PublicKey) -> None:
        """Add a scanned key.

        Raises DuplicateAttendee if a byte-equal key is already present.
        """
        data = bytes(key)
        if data in self._keys:
            raise DuplicateAttendee(data)
        self._keys[data] = key
        logger.debug(f"Candidate added: {data.hex()[:16]} ({len(self._keys)} total)")

    def remove(self, key: PublicKey) -> int:
        """Remove a key and return the remaining count.

        Raises UnknownAttendee if the key is absent.
        """
        data = bytes(key)
        if data not in self._keys:
            raise UnknownAttendee(data)
        del self._keys[data]
        logger.debug(f"Candidate removed: {data.hex()[:16]} ({len(self._keys)} left)")
        return len(self._keys)

    def roster(self) -> Tuple[PublicKey, ...]:
        return canonical_roster(self._keys.values())

    def copy(self) -> CandidateSet:
        return CandidateSet(self._keys.values())

    def keys(self) -> List[PublicKey]:
        return list(self._keys.values())

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, PublicKey):
            return False
        return bytes(key) in self._keys

    def __iter__(self) -> Iterator[PublicKey]:
        return iter(list(self._keys.values()))

    def __len__(self) -> int:
        return len(self._keys)
