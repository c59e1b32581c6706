"""Local import graph between analyzed files.

Only relative (or absolute-path) imports whose target is one of the
analyzed files become edges; package imports and broken paths are
dropped silently.

Traversals visit nodes and neighbors in sorted order, so cycle and
component results depend only on the graph, not on edge order. Cycle
detection is not deduplicated across overlapping cycles: a cycle may be
reported once per back-edge that closes it.
"""

from __future__ import annotations

import logging
import posixpath
import re
from collections import defaultdict, deque
from collections.abc import Collection, Iterable, Iterator

from domainscope.analysis.schemas import (
    ContextPattern,
    ContextUsage,
    DependencyEdge,
    DependencyGraph,
    FileAnalysis,
    GraphAnalysis,
    NodeInfo,
)

logger = logging.getLogger(__name__)

RESOLVE_SUFFIXES = (
    ".ts",
    ".tsx",
    ".js",
    ".jsx",
    "/index.ts",
    "/index.tsx",
    "/index.js",
    "/index.jsx",
)

_SCRIPT_EXT_RE = re.compile(r"\.(tsx?|jsx?)$")

DIRECT_EDGE_STRENGTH = 0.5
REEXPORT_BONUS = 0.2
NAME_WEIGHT = 0.05
MAX_NAME_BONUS = 0.2
SAME_COMPONENT_BONUS = 0.1


def _is_local_specifier(specifier: str) -> bool:
    return specifier.startswith((".", "/"))


def resolve_import_path(
    from_file: str,
    specifier: str,
    known_files: Collection[str],
) -> str | None:
    """Resolve an import specifier to one of ``known_files``.

    Tries the literal path, then each suffix in ``RESOLVE_SUFFIXES``,
    then the same list with any script extension stripped from the
    specifier. Returns None for package imports or unknown targets.
    """
    if not _is_local_specifier(specifier):
        return None

    known = set(known_files)
    base = posixpath.normpath(
        posixpath.join(posixpath.dirname(from_file), specifier)
    )

    for candidate in _candidate_paths(base):
        if candidate in known:
            return candidate

    stripped = _SCRIPT_EXT_RE.sub("", base)
    if stripped != base:
        for candidate in _candidate_paths(stripped):
            if candidate in known:
                return candidate

    return None


def _candidate_paths(base: str) -> Iterator[str]:
    yield base
    for suffix in RESOLVE_SUFFIXES:
        yield base + suffix


def build_dependency_graph(
    analyses: Iterable[FileAnalysis],
) -> DependencyGraph:
    """Build the directed import graph for a batch of analyses."""
    analyses = list(analyses)
    nodes = [a.path for a in analyses]
    known = set(nodes)
    edges: list[DependencyEdge] = []
    unresolved = 0

    for analysis in analyses:
        export_names = {e.name for e in analysis.exports}
        for imp in analysis.imports:
            target = resolve_import_path(analysis.path, imp.source, known)
            if target is None:
                if _is_local_specifier(imp.source):
                    unresolved += 1
                continue
            names = [s.name for s in imp.specifiers]
            edges.append(
                DependencyEdge(
                    source=analysis.path,
                    target=target,
                    imported_names=names,
                    is_reexport=any(n in export_names for n in names),
                )
            )

    if unresolved:
        logger.debug(
            "event=unresolved_local_imports count=%d", unresolved
        )
    logger.info(
        "event=dependency_graph_built nodes=%d edges=%d",
        len(nodes),
        len(edges),
    )
    return DependencyGraph(nodes=nodes, edges=edges)


# ── Adjacency ────────────────────────────────────────────


def _forward_adjacency(graph: DependencyGraph) -> dict[str, list[str]]:
    adj: defaultdict[str, set[str]] = defaultdict(set)
    for edge in graph.edges:
        adj[edge.source].add(edge.target)
    return {node: sorted(targets) for node, targets in adj.items()}


def _reverse_adjacency(graph: DependencyGraph) -> dict[str, list[str]]:
    adj: defaultdict[str, set[str]] = defaultdict(set)
    for edge in graph.edges:
        adj[edge.target].add(edge.source)
    return {node: sorted(sources) for node, sources in adj.items()}


def _undirected_adjacency(graph: DependencyGraph) -> dict[str, list[str]]:
    adj: defaultdict[str, set[str]] = defaultdict(set)
    for edge in graph.edges:
        adj[edge.source].add(edge.target)
        adj[edge.target].add(edge.source)
    return {node: sorted(peers) for node, peers in adj.items()}


def _all_nodes(graph: DependencyGraph) -> list[str]:
    nodes = set(graph.nodes)
    for edge in graph.edges:
        nodes.add(edge.source)
        nodes.add(edge.target)
    return sorted(nodes)


# ── Traversals ───────────────────────────────────────────


def find_cycles(graph: DependencyGraph) -> list[list[str]]:
    """Report every cycle closed by a back-edge during DFS.

    Each cycle is the path segment from the revisited node to the
    current node. Iterative, so deep import chains cannot overflow the
    interpreter stack.
    """
    adj = _forward_adjacency(graph)
    visited: set[str] = set()
    on_stack: set[str] = set()
    cycles: list[list[str]] = []

    for root in _all_nodes(graph):
        if root in visited:
            continue
        path: list[str] = [root]
        visited.add(root)
        on_stack.add(root)
        stack: list[Iterator[str]] = [iter(adj.get(root, []))]

        while stack:
            neighbor = next(stack[-1], None)
            if neighbor is None:
                stack.pop()
                on_stack.discard(path.pop())
                continue
            if neighbor not in visited:
                visited.add(neighbor)
                on_stack.add(neighbor)
                path.append(neighbor)
                stack.append(iter(adj.get(neighbor, [])))
            elif neighbor in on_stack:
                start = path.index(neighbor)
                cycles.append(path[start:])

    return cycles


def find_connected_components(graph: DependencyGraph) -> list[list[str]]:
    """Weakly connected components (edges treated as undirected)."""
    adj = _undirected_adjacency(graph)
    visited: set[str] = set()
    components: list[list[str]] = []

    for root in _all_nodes(graph):
        if root in visited:
            continue
        component: list[str] = []
        queue: deque[str] = deque([root])
        visited.add(root)
        while queue:
            node = queue.popleft()
            component.append(node)
            for peer in adj.get(node, []):
                if peer not in visited:
                    visited.add(peer)
                    queue.append(peer)
        components.append(component)

    return components


def _closure(adj: dict[str, list[str]], start: str) -> set[str]:
    reached: set[str] = set()
    queue: deque[str] = deque([start])
    while queue:
        node = queue.popleft()
        for nxt in adj.get(node, []):
            if nxt not in reached:
                reached.add(nxt)
                queue.append(nxt)
    return reached


def find_all_dependencies(graph: DependencyGraph, start: str) -> set[str]:
    """Every file reachable from ``start`` along import edges.

    ``start`` itself is included only when it sits on a cycle.
    """
    return _closure(_forward_adjacency(graph), start)


def find_all_dependents(graph: DependencyGraph, start: str) -> set[str]:
    """Every file that transitively imports ``start``."""
    return _closure(_reverse_adjacency(graph), start)


def calculate_relationship_strength(
    graph: DependencyGraph,
    file_a: str,
    file_b: str,
    *,
    components: list[list[str]] | None = None,
) -> float:
    """Symmetric coupling score between two files in [0, 1].

    Pass precomputed ``components`` when scoring many pairs.
    """
    strength = 0.0
    direct = next(
        (
            e
            for e in graph.edges
            if (e.source == file_a and e.target == file_b)
            or (e.source == file_b and e.target == file_a)
        ),
        None,
    )

    if direct is not None:
        strength += DIRECT_EDGE_STRENGTH
        if direct.is_reexport:
            strength += REEXPORT_BONUS
        strength += min(len(direct.imported_names) * NAME_WEIGHT, MAX_NAME_BONUS)
    else:
        if components is None:
            components = find_connected_components(graph)
        if any(file_a in c and file_b in c for c in components):
            strength += SAME_COMPONENT_BONUS

    return min(strength, 1.0)


# ── Graph analysis ───────────────────────────────────────


def analyze_context_sharing(
    analyses: Iterable[FileAnalysis],
) -> dict[str, ContextUsage]:
    """Map each context name to the files providing and consuming it."""
    providers: defaultdict[str, list[str]] = defaultdict(list)
    consumers: defaultdict[str, list[str]] = defaultdict(list)
    for analysis in analyses:
        for pattern in analysis.patterns:
            if not isinstance(pattern, ContextPattern) or not pattern.context_name:
                continue
            name = pattern.context_name
            if pattern.has_provider and analysis.path not in providers[name]:
                providers[name].append(analysis.path)
            if pattern.has_consumer and analysis.path not in consumers[name]:
                consumers[name].append(analysis.path)

    names = sorted(set(providers) | set(consumers))
    return {
        name: ContextUsage(
            providers=providers.get(name, []),
            consumers=consumers.get(name, []),
        )
        for name in names
    }


def analyze_graph(
    graph: DependencyGraph,
    analyses: Iterable[FileAnalysis] = (),
) -> GraphAnalysis:
    """Degrees, entry/leaf nodes, cycles and components in one pass."""
    in_degree: defaultdict[str, int] = defaultdict(int)
    out_degree: defaultdict[str, int] = defaultdict(int)
    for edge in graph.edges:
        out_degree[edge.source] += 1
        in_degree[edge.target] += 1

    provides: defaultdict[str, list[str]] = defaultdict(list)
    consumes: defaultdict[str, list[str]] = defaultdict(list)
    for name, usage in analyze_context_sharing(analyses).items():
        for path in usage.providers:
            provides[path].append(name)
        for path in usage.consumers:
            consumes[path].append(name)

    nodes = {
        path: NodeInfo(
            path=path,
            in_degree=in_degree[path],
            out_degree=out_degree[path],
            provides_contexts=provides.get(path, []),
            consumes_contexts=consumes.get(path, []),
        )
        for path in _all_nodes(graph)
    }

    return GraphAnalysis(
        nodes=nodes,
        entry_points=[p for p, n in nodes.items() if n.in_degree == 0],
        leaf_nodes=[p for p, n in nodes.items() if n.out_degree == 0],
        cycles=find_cycles(graph),
        components=find_connected_components(graph),
    )
