"""Tests for ownership, naming and boundary conflict detection."""

from __future__ import annotations

from domainscope.constants import ConflictAction, ConflictType
from domainscope.summary.conflicts import (
    detect_boundary_conflicts,
    detect_conflicts,
    detect_naming_conflicts,
    detect_ownership_conflicts,
)
from domainscope.summary.schemas import RelationshipAnalysis
from tests.conftest import make_summary

SHARED = "src/shared/session.ts"
NO_COUPLING = RelationshipAnalysis()


class TestOwnership:
    def test_file_in_two_domains(self) -> None:
        auth = make_summary("auth", ["src/a.ts", SHARED], confidence=0.9)
        cart = make_summary("cart", [SHARED, "src/c.ts"], confidence=0.6)

        [conflict] = detect_ownership_conflicts([auth, cart])
        assert conflict.id == f"conflict-ownership-{SHARED}"
        assert conflict.type == ConflictType.OWNERSHIP
        assert conflict.domains == ["auth", "cart"]
        assert conflict.resolution is None

        assign_auth, assign_cart = conflict.suggested_resolutions
        assert assign_auth.action == ConflictAction.ASSIGN
        assert assign_auth.params == {"file": SHARED, "domain_id": "auth"}
        assert assign_auth.confidence == 0.9
        assert assign_cart.confidence == 0.6

    def test_duplicate_listing_in_one_domain_is_not_a_conflict(self) -> None:
        auth = make_summary("auth", ["src/a.ts", "src/a.ts"])
        assert detect_ownership_conflicts([auth]) == []


class TestNaming:
    def test_names_equal_after_normalization(self) -> None:
        first = make_summary("d1", name="User Profile")
        second = make_summary("d2", name="user-profile")

        [conflict] = detect_naming_conflicts([first, second])
        assert conflict.id == "conflict-naming-user-profile"
        assert conflict.type == ConflictType.NAMING
        merge, rename = conflict.suggested_resolutions
        assert merge.action == ConflictAction.MERGE
        assert merge.params == {"domain_ids": "d1,d2"}
        assert rename.action == ConflictAction.RENAME
        assert rename.params == {"domain_id": "d2"}

    def test_distinct_names(self) -> None:
        assert (
            detect_naming_conflicts([make_summary("a"), make_summary("b")])
            == []
        )


class TestBoundary:
    def test_strong_coupling(self) -> None:
        domains = [make_summary("a"), make_summary("b")]
        analysis = RelationshipAnalysis(strong_couplings=[("a", "b")])

        [conflict] = detect_boundary_conflicts(domains, analysis, [])
        assert conflict.id == "conflict-coupling-a-b"
        assert conflict.type == ConflictType.BOUNDARY
        assert conflict.description == "a and b are strongly coupled"
        [merge] = conflict.suggested_resolutions
        assert merge.params == {"domain_ids": "a,b"}

    def test_cycle_offers_merge_and_split(self) -> None:
        domains = [make_summary("a"), make_summary("b")]
        [conflict] = detect_boundary_conflicts(
            domains, NO_COUPLING, [["a", "b"]]
        )
        assert conflict.id == "conflict-cycle-a-b"
        assert conflict.description == "Cyclic dependency: a -> b -> a"
        assert [r.action for r in conflict.suggested_resolutions] == [
            ConflictAction.MERGE,
            ConflictAction.SPLIT,
        ]


class TestDetectConflicts:
    def test_no_conflicts(self) -> None:
        domains = [make_summary("a", ["a.ts"]), make_summary("b", ["b.ts"])]
        assert detect_conflicts(domains, NO_COUPLING, []) == []

    def test_rotated_cycles_deduplicated(self) -> None:
        domains = [make_summary("a"), make_summary("b")]
        conflicts = detect_conflicts(
            domains, NO_COUPLING, [["a", "b"], ["b", "a"]]
        )
        assert [c.id for c in conflicts] == ["conflict-cycle-a-b"]

    def test_all_kinds_in_order(self) -> None:
        domains = [
            make_summary("d1", [SHARED], name="cart"),
            make_summary("d2", [SHARED], name="Cart"),
        ]
        analysis = RelationshipAnalysis(strong_couplings=[("d1", "d2")])
        conflicts = detect_conflicts(domains, analysis, [])
        assert [c.type for c in conflicts] == [
            ConflictType.OWNERSHIP,
            ConflictType.NAMING,
            ConflictType.BOUNDARY,
        ]
