"""Tests for domain relationships, boundaries and domain-level cycles."""

from __future__ import annotations

from domainscope.analysis.schemas import DependencyEdge, DependencyGraph
from domainscope.constants import ActionType, DomainRelationshipType
from domainscope.summary.relationship import (
    analyze_all_relationships,
    analyze_domain_boundaries,
    calculate_domain_relationship_strength,
    create_relationship,
    detect_cyclic_dependencies,
    determine_relationship_type,
    with_boundaries,
)
from domainscope.summary.schemas import DomainRelationship, ExtractedAction
from tests.conftest import make_summary

AUTH_FILE = "src/features/auth/a.ts"
CART_FILE = "src/features/cart/b.ts"


def _graph(*pairs: tuple[str, str]) -> DependencyGraph:
    return DependencyGraph(
        nodes=sorted({n for pair in pairs for n in pair}),
        edges=[DependencyEdge(source=s, target=t) for s, t in pairs],
    )


def _rel(
    src: str, dst: str, rel_type: DomainRelationshipType
) -> DomainRelationship:
    return DomainRelationship(
        id=f"rel-{src}-{dst}",
        type=rel_type,
        from_domain=src,
        to_domain=dst,
        strength=0.5,
    )


class TestIndependentDomains:
    def test_disjoint_domains_have_no_relationship(self) -> None:
        auth = make_summary("auth", [AUTH_FILE])
        cart = make_summary("cart", [CART_FILE])
        graph = DependencyGraph(nodes=[AUTH_FILE, CART_FILE])

        assert determine_relationship_type(auth, cart, graph) is None
        assert create_relationship(auth, cart, graph) is None
        analysis = analyze_all_relationships([auth, cart], graph)
        assert analysis.relationships == []
        assert analysis.strong_couplings == []
        assert analysis.suggested_merges == []


class TestRelationshipTypes:
    def test_plain_dependency(self) -> None:
        auth = make_summary("auth", [AUTH_FILE])
        cart = make_summary("cart", [CART_FILE])
        rel = create_relationship(cart, auth, _graph((CART_FILE, AUTH_FILE)))

        assert rel is not None
        assert rel.type == DomainRelationshipType.DEPENDENCY
        assert rel.id == "rel-cart-auth"
        assert (rel.from_domain, rel.to_domain) == ("cart", "auth")
        assert rel.evidence == [f"{CART_FILE} -> {AUTH_FILE}"]
        assert rel.description == "cart depends on auth"

    def test_direction_follows_import_majority(self) -> None:
        auth = make_summary("auth", [AUTH_FILE])
        cart = make_summary("cart", [CART_FILE])
        rel = create_relationship(auth, cart, _graph((CART_FILE, AUTH_FILE)))
        assert rel is not None
        assert rel.from_domain == "cart"

    def test_shared_state_wins(self) -> None:
        auth = make_summary("auth", [AUTH_FILE], contexts=["SessionContext"])
        cart = make_summary("cart", [CART_FILE], contexts=["SessionContext"])
        graph = _graph((CART_FILE, AUTH_FILE))

        rel = create_relationship(auth, cart, graph)
        assert rel is not None
        assert rel.type == DomainRelationshipType.SHARED_STATE
        assert rel.evidence[0] == "shared context SessionContext"

    def test_event_flow(self) -> None:
        event = ExtractedAction(
            name="ORDER_PLACED", type=ActionType.EVENT, confidence=0.8
        )
        auth = make_summary("auth", [AUTH_FILE])
        cart = make_summary("cart", [CART_FILE], actions=[event])
        rel = create_relationship(cart, auth, _graph((CART_FILE, AUTH_FILE)))
        assert rel is not None
        assert rel.type == DomainRelationshipType.EVENT_FLOW


class TestStrength:
    def test_components_are_capped(self) -> None:
        a_files = [f"src/x/a{i}.ts" for i in range(3)]
        b_files = [f"src/x/b{i}.ts" for i in range(3)]
        a = make_summary("a", a_files, contexts=["C1", "C2", "C3"])
        b = make_summary("b", b_files, contexts=["C1", "C2", "C3"])
        pairs = [
            *zip(a_files, b_files, strict=True),
            *zip(b_files, a_files, strict=True),
        ]
        strength = calculate_domain_relationship_strength(a, b, _graph(*pairs))
        # imports 0.5 (cap) + shared state 0.3 (cap) + one shared dir 0.1
        assert abs(strength - 0.9) < 1e-9

    def test_strong_coupling_and_merge_suggestion(self) -> None:
        a_files = [f"src/x/a{i}.ts" for i in range(3)]
        b_files = [f"src/x/b{i}.ts" for i in range(3)]
        a = make_summary("a", a_files, contexts=["C1", "C2"])
        b = make_summary("b", b_files, contexts=["C1", "C2"])
        graph = _graph(
            *zip(a_files, b_files, strict=True),
            (b_files[0], a_files[0]),
            (b_files[1], a_files[1]),
        )

        analysis = analyze_all_relationships([a, b], graph)
        [rel] = analysis.relationships
        assert rel.from_domain == "a"
        assert analysis.strong_couplings == [("a", "b")]
        assert analysis.suggested_merges == [("a", "b")]


class TestBoundaries:
    def test_imports_exports_and_shared_state(self) -> None:
        auth = make_summary("auth", [AUTH_FILE], contexts=["Session"])
        cart = make_summary("cart", [CART_FILE], contexts=["Session", "Cart"])
        graph = _graph((CART_FILE, AUTH_FILE))

        cart_boundary = analyze_domain_boundaries(cart, [auth, cart], graph)
        assert cart_boundary.imports == ["auth"]
        assert cart_boundary.exports == []
        assert cart_boundary.shared_state == ["Session"]

        auth_boundary = analyze_domain_boundaries(auth, [auth, cart], graph)
        assert auth_boundary.exports == ["cart"]

    def test_with_boundaries_keeps_order(self) -> None:
        domains = [make_summary("b"), make_summary("a")]
        assert [d.id for d in with_boundaries(domains, DependencyGraph())] == [
            "b",
            "a",
        ]


class TestCyclicDependencies:
    def test_dependency_cycle(self) -> None:
        domains = [make_summary("a"), make_summary("b"), make_summary("c")]
        rels = [
            _rel("a", "b", DomainRelationshipType.DEPENDENCY),
            _rel("b", "a", DomainRelationshipType.DEPENDENCY),
            _rel("b", "c", DomainRelationshipType.DEPENDENCY),
        ]
        assert detect_cyclic_dependencies(domains, rels) == [["a", "b"]]

    def test_non_dependency_edges_ignored(self) -> None:
        domains = [make_summary("a"), make_summary("b")]
        rels = [
            _rel("a", "b", DomainRelationshipType.SHARED_STATE),
            _rel("b", "a", DomainRelationshipType.SHARED_STATE),
        ]
        assert detect_cyclic_dependencies(domains, rels) == []
