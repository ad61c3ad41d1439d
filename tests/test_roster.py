"""
PoP Party Roster Tests
"""

import itertools

import pytest

from popparty.core.party import decode_roster
from popparty.core.types import PublicKey
from popparty.errors import DuplicateAttendee, UnknownAttendee
from popparty.party.roster import CandidateSet, canonical_roster, serialize_roster

from conftest import key_with_prefix


class TestCanonicalRoster:
    """Ordering of the finalized roster."""

    def test_scan_order_b_a_c(self):
        a, b, c = key_with_prefix(0x00), key_with_prefix(0x02), key_with_prefix(0x01)
        assert canonical_roster([b, a, c]) == (a, c, b)

    def test_order_independent(self):
        keys = [key_with_prefix(i) for i in (7, 3, 0x80, 0, 0xFF)]
        expected = serialize_roster(keys)
        for permutation in itertools.permutations(keys):
            assert serialize_roster(permutation) == expected

    def test_unsigned_comparison(self):
        high = key_with_prefix(0x80)
        low = key_with_prefix(0x7F)
        assert canonical_roster([high, low]) == (low, high)

    def test_later_bytes_break_ties(self):
        first = PublicKey(bytes([1]) + bytes(30) + bytes([1]))
        second = PublicKey(bytes([1]) + bytes(30) + bytes([2]))
        assert canonical_roster([second, first]) == (first, second)

    def test_byte_equal_duplicates_collapse(self):
        key = key_with_prefix(5)
        twin = PublicKey(bytes(key.data))
        assert canonical_roster([key, twin]) == (key,)

    def test_serialized_layout(self):
        keys = [key_with_prefix(2), key_with_prefix(1)]
        data = serialize_roster(keys)
        assert data[0] == 2
        assert data[1:33] == key_with_prefix(1).data
        assert decode_roster(data) == (key_with_prefix(1), key_with_prefix(2))

    def test_empty(self):
        assert serialize_roster([]) == b"\x00"


class TestCandidateSet:
    """Local candidate bookkeeping."""

    def test_add_and_contains(self):
        candidates = CandidateSet()
        candidates.add(key_with_prefix(1))
        assert key_with_prefix(1) in candidates
        assert key_with_prefix(2) not in candidates
        assert len(candidates) == 1

    def test_duplicate_by_bytes(self):
        candidates = CandidateSet([key_with_prefix(1)])
        with pytest.raises(DuplicateAttendee) as exc:
            candidates.add(PublicKey(bytes(key_with_prefix(1).data)))
        assert exc.value.code == 2001
        assert len(candidates) == 1

    def test_remove_returns_remaining(self):
        candidates = CandidateSet([key_with_prefix(i) for i in range(3)])
        assert candidates.remove(key_with_prefix(1)) == 2
        assert candidates.remove(key_with_prefix(0)) == 1

    def test_remove_unknown(self):
        candidates = CandidateSet([key_with_prefix(1)])
        with pytest.raises(UnknownAttendee):
            candidates.remove(key_with_prefix(9))
        assert len(candidates) == 1

    def test_roster_is_canonical(self):
        candidates = CandidateSet()
        for prefix in (2, 0, 1):
            candidates.add(key_with_prefix(prefix))
        assert candidates.roster() == tuple(key_with_prefix(i) for i in range(3))

    def test_copy_is_independent(self):
        candidates = CandidateSet([key_with_prefix(1)])
        copied = candidates.copy()
        copied.add(key_with_prefix(2))
        assert len(candidates) == 1
        assert len(copied) == 2

    def test_non_key_not_contained(self):
        assert b"\x01" * 32 not in CandidateSet([PublicKey(b"\x01" * 32)])
