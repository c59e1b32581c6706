"""DBSCAN-style file clustering that refines domain candidates.

Files are points; two files are neighbors when their similarity reaches
the threshold. Similarity is driven by feature directories, which act
as hard walls: files in different features never cluster together, and
shared/utility files never cluster with feature files.

Candidates whose files end up in no cluster become singleton domains
flagged for review, so a sparse graph degrades to one domain per
candidate instead of losing candidates.
"""

from __future__ import annotations

import logging
import posixpath
import re
import uuid
from collections import Counter, deque
from collections.abc import Sequence

from domainscope.analysis.schemas import DependencyGraph, DomainCandidate
from domainscope.constants import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_MIN_CLUSTER_SIZE,
    DEFAULT_SIMILARITY_THRESHOLD,
    ID_HEX_LENGTH,
    UNCLUSTERED_CONFIDENCE_FACTOR,
)
from domainscope.summary.relationship import with_boundaries
from domainscope.summary.schemas import Cluster, ClusteringResult, DomainSummary
from domainscope.summary.summarizer import create_domain_summary

logger = logging.getLogger(__name__)

_FEATURE_DIR_RE = re.compile(r"(?:features|domains|modules)/([^/]+)")
_SHARED_DIR_RE = re.compile(
    r"(?:^|/)(shared|common|utils|lib|helpers|components/shared)/"
)
_SCRIPT_EXT_RE = re.compile(r"\.(tsx?|jsx?)$")

SAME_FEATURE_WEIGHT = 0.6
SAME_SHARED_DIR_WEIGHT = 0.4
SAME_DIR_WEIGHT = 0.3
NESTED_DIR_WEIGHT = 0.15
FEATURE_IMPORT_WEIGHT = 0.3
PLAIN_IMPORT_WEIGHT = 0.2
NAME_PREFIX_WEIGHT = 0.2
MIN_NAME_PREFIX = 3

SINGLETON_REVIEW_NOTE = (
    "Candidate did not join any file cluster; kept as a singleton domain"
)


def feature_directory(path: str) -> str | None:
    match = _FEATURE_DIR_RE.search(path)
    return match.group(1) if match else None


def is_shared_file(path: str) -> bool:
    return _SHARED_DIR_RE.search(path) is not None


def _stem(path: str) -> str:
    return _SCRIPT_EXT_RE.sub("", posixpath.basename(path))


def _common_prefix_len(a: str, b: str) -> int:
    n = 0
    for ca, cb in zip(a, b, strict=False):
        if ca != cb:
            break
        n += 1
    return n


def calculate_file_similarity(
    file_a: str, file_b: str, graph: DependencyGraph
) -> float:
    """Similarity in [0, 1] between two files."""
    similarity = 0.0
    feature_a = feature_directory(file_a)
    feature_b = feature_directory(file_b)
    shared_a = is_shared_file(file_a)
    shared_b = is_shared_file(file_b)
    dir_a = posixpath.dirname(file_a)
    dir_b = posixpath.dirname(file_b)

    if feature_a and feature_b:
        if feature_a != feature_b:
            return 0.0
        similarity += SAME_FEATURE_WEIGHT

    if shared_a and shared_b and dir_a == dir_b:
        similarity += SAME_SHARED_DIR_WEIGHT

    if shared_a != shared_b:
        return 0.0

    plain = not (feature_a or feature_b or shared_a or shared_b)
    if plain:
        if dir_a == dir_b:
            similarity += SAME_DIR_WEIGHT
        elif dir_a.startswith(dir_b) or dir_b.startswith(dir_a):
            similarity += NESTED_DIR_WEIGHT

    direct_import = any(
        (e.source == file_a and e.target == file_b)
        or (e.source == file_b and e.target == file_a)
        for e in graph.edges
    )
    if direct_import:
        if feature_a and feature_a == feature_b:
            similarity += FEATURE_IMPORT_WEIGHT
        elif plain:
            similarity += PLAIN_IMPORT_WEIGHT

    name_a, name_b = _stem(file_a), _stem(file_b)
    prefix = _common_prefix_len(name_a, name_b)
    if prefix >= MIN_NAME_PREFIX:
        longest = max(len(name_a), len(name_b))
        similarity += min(
            NAME_PREFIX_WEIGHT, prefix / longest * NAME_PREFIX_WEIGHT
        )

    return min(similarity, 1.0)


def _new_cluster_id() -> str:
    return f"cluster-{uuid.uuid4().hex[:ID_HEX_LENGTH]}"


def cluster_files(
    files: Sequence[str],
    graph: DependencyGraph,
    min_cluster_size: int = DEFAULT_MIN_CLUSTER_SIZE,
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> ClusteringResult:
    """Density-based clustering; returns clusters and noise files."""
    cache: dict[tuple[str, str], float] = {}

    def similarity(a: str, b: str) -> float:
        key = (a, b) if a < b else (b, a)
        if key not in cache:
            cache[key] = calculate_file_similarity(a, b, graph)
        return cache[key]

    def neighbors(file: str) -> list[str]:
        return [
            f
            for f in files
            if f != file and similarity(file, f) >= similarity_threshold
        ]

    visited: set[str] = set()
    clusters: list[Cluster] = []
    noise: list[str] = []

    for file in files:
        if file in visited:
            continue
        seeds = neighbors(file)
        if len(seeds) < min_cluster_size - 1:
            visited.add(file)
            noise.append(file)
            continue

        members = [file]
        visited.add(file)
        queue: deque[str] = deque(seeds)
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            members.append(current)
            reach = neighbors(current)
            if len(reach) >= min_cluster_size - 1:
                for nxt in reach:
                    if nxt not in visited and nxt not in queue:
                        queue.append(nxt)

        centroid = file
        best = 0
        for member in members:
            connections = sum(
                1
                for other in members
                if similarity(member, other) >= similarity_threshold
            )
            if connections > best:
                best = connections
                centroid = member

        possible = len(members) * (len(members) - 1) / 2
        actual = sum(
            1
            for i, a in enumerate(members)
            for b in members[i + 1:]
            if similarity(a, b) >= similarity_threshold
        )
        clusters.append(
            Cluster(
                id=_new_cluster_id(),
                files=members,
                centroid=centroid,
                density=actual / possible if possible else 0.0,
            )
        )

    return ClusteringResult(clusters=clusters, noise=noise)


def map_candidates_to_clusters(
    candidates: Sequence[DomainCandidate], clusters: Sequence[Cluster]
) -> list[Cluster]:
    mapped: list[Cluster] = []
    for cluster in clusters:
        members = set(cluster.files)
        ids = [
            c.id
            for c in candidates
            if any(f in members for f in c.source_files)
        ]
        mapped.append(cluster.model_copy(update={"candidate_ids": ids}))
    return mapped


def _dominant_feature(cluster: Cluster) -> str | None:
    counts = Counter(
        f for f in (feature_directory(p) for p in cluster.files) if f
    )
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def merge_clusters(clusters: Sequence[Cluster]) -> list[Cluster]:
    """Merge clusters whose dominant feature directory is the same."""
    processed: set[str] = set()
    merged: list[Cluster] = []
    features = {c.id: _dominant_feature(c) for c in clusters}

    for cluster in clusters:
        if cluster.id in processed:
            continue
        feature = features[cluster.id]
        partners = [
            c
            for c in clusters
            if c.id != cluster.id
            and c.id not in processed
            and feature is not None
            and features[c.id] == feature
        ]
        processed.add(cluster.id)
        if not partners:
            merged.append(cluster)
            continue
        group = [cluster, *partners]
        merged.append(
            cluster.model_copy(
                update={
                    "files": list(
                        dict.fromkeys(f for c in group for f in c.files)
                    ),
                    "candidate_ids": list(
                        dict.fromkeys(
                            i for c in group for i in c.candidate_ids
                        )
                    ),
                }
            )
        )
        processed.update(c.id for c in partners)

    return merged


def clusters_to_domain_summaries(
    clusters: Sequence[Cluster],
    candidates: Sequence[DomainCandidate],
    *,
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> list[DomainSummary]:
    """One summary per cluster, plus singletons for unclustered candidates.

    A cluster takes its identity from its highest-confidence candidate.
    Clusters resolving to the same candidate share one summary.
    """
    by_id = {c.id: c for c in candidates}
    summaries: dict[str, DomainSummary] = {}
    clustered: set[str] = set()

    for cluster in clusters:
        related = [by_id[i] for i in cluster.candidate_ids if i in by_id]
        clustered.update(c.id for c in related)
        best: DomainCandidate | None = None
        for cand in related:
            if best is None or cand.confidence > best.confidence:
                best = cand

        if best is None:
            summary = DomainSummary(
                id=f"domain-{cluster.id}",
                name=_stem(cluster.centroid).lower() or "unknown",
                description="Domain inferred from file cluster",
                source_files=list(cluster.files),
                suggested_by=cluster.id,
                confidence=cluster.density * UNCLUSTERED_CONFIDENCE_FACTOR,
                needs_review=True,
                review_notes=[
                    "Domain inferred from file clustering, needs review"
                ],
            )
        else:
            base = summaries.get(f"summary-{best.id}") or create_domain_summary(
                best, confidence_threshold=confidence_threshold
            )
            summary = base.model_copy(
                update={
                    "source_files": list(
                        dict.fromkeys(
                            [*base.source_files, *cluster.files]
                        )
                    )
                }
            )
        summaries[summary.id] = summary

    for cand in candidates:
        if cand.id in clustered:
            continue
        singleton = create_domain_summary(
            cand, confidence_threshold=confidence_threshold
        )
        summaries[singleton.id] = singleton.model_copy(
            update={
                "needs_review": True,
                "review_notes": [SINGLETON_REVIEW_NOTE],
            }
        )

    return list(summaries.values())


def perform_clustering(
    candidates: Sequence[DomainCandidate],
    graph: DependencyGraph,
    min_cluster_size: int = DEFAULT_MIN_CLUSTER_SIZE,
    *,
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> ClusteringResult:
    """Cluster every candidate file and lift clusters into summaries.

    Summary boundaries come from graph edges crossing into other
    summaries and from context names they share.
    """
    files = list(dict.fromkeys(f for c in candidates for f in c.source_files))
    initial = cluster_files(
        files, graph, min_cluster_size, similarity_threshold
    )
    clusters = merge_clusters(
        map_candidates_to_clusters(candidates, initial.clusters)
    )
    domains = with_boundaries(
        clusters_to_domain_summaries(
            clusters, candidates, confidence_threshold=confidence_threshold
        ),
        graph,
    )
    logger.info(
        "event=clustering_done files=%d clusters=%d noise=%d domains=%d",
        len(files),
        len(clusters),
        len(initial.noise),
        len(domains),
    )
    return ClusteringResult(
        clusters=clusters, noise=initial.noise, domains=domains
    )
