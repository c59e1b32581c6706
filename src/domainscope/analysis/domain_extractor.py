"""Domain candidate extraction.

Four independent strategies each propose candidates with a fixed base
confidence:

- context: a context that has a provider, plus every file using it
- reducer: one candidate per file defining a reducer
- hook: custom, non-generic hooks
- file structure: domain-named directories with two or more files

``merge_candidates`` then groups overlapping proposals in a single
greedy pass. The grouping is deliberately not transitive: when A is
similar to B and B to C but A is not similar to C, the outcome depends
on input order.
"""

from __future__ import annotations

import logging
import math
import posixpath
import re
import uuid
from collections import defaultdict
from collections.abc import Iterable, Sequence

from domainscope.analysis.priority import infer_domain_from_path
from domainscope.analysis.schemas import (
    AmbiguousPattern,
    CandidateRelationship,
    ComponentPattern,
    ContextPattern,
    DependencyGraph,
    DomainCandidate,
    EffectPattern,
    FileAnalysis,
    FormPattern,
    HookPattern,
    Pattern,
    PatternCollection,
    ReducerPattern,
    Resolution,
)
from domainscope.constants import (
    CONTEXT_STRATEGY_CONFIDENCE,
    DEFAULT_CONFIDENCE_THRESHOLD,
    DOMAIN_STOP_WORDS,
    FILE_STRUCTURE_MAX_CONFIDENCE,
    FILE_STRUCTURE_MIN_FILES,
    HOOK_STRATEGY_CONFIDENCE,
    ID_HEX_LENGTH,
    IMPORTS_RELATIONSHIP_STRENGTH,
    MERGE_OVERLAP_THRESHOLD,
    REDUCER_ACTIONS_PER_SPLIT,
    REDUCER_SPLIT_ACTION_LIMIT,
    REDUCER_STRATEGY_CONFIDENCE,
    SHARED_STATE_RELATIONSHIP_STRENGTH,
    SKIP_OPTION_ID,
    SKIP_RESOLUTION_CONFIDENCE,
    SPLIT_RESOLUTION_CONFIDENCE,
    CandidateRelationshipType,
    CandidateStrategy,
    PatternKind,
    ResolutionAction,
)

logger = logging.getLogger(__name__)

# Framework and utility hooks that never indicate a business domain.
GENERIC_HOOK_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^use(Effect|State|Ref|Memo|Callback|Reducer|Context|LayoutEffect)$",
        r"^use(Debug|Deferred|Transition|Sync|Id|Imperative)$",
        r"^use(Toggle|Boolean|Counter|Input|Form|Previous)$",
        r"^use(Fetch|Async|Promise|Query|Mutation)$",
        r"^use(Local|Session)Storage$",
        r"^use(Window|Document|Event|Scroll|Resize)$",
    )
)

_NAME_SUFFIX_RES = (
    re.compile(r"Context$"),
    re.compile(r"Provider$"),
    re.compile(r"Reducer$"),
)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:ID_HEX_LENGTH]}"


# ── Naming ───────────────────────────────────────────────


def infer_domain_name(name: str) -> str:
    """``UserProfileContext`` → ``user-profile``."""
    base = name
    for suffix_re in _NAME_SUFFIX_RES:
        base = suffix_re.sub("", base)
    kebab = re.sub(r"([A-Z])", r"-\1", base).lower()
    return re.sub(r"^-", "", kebab)


def normalize_domain_name(name: str) -> str:
    """Lowercase, non-alphanumerics to single dashes, trimmed."""
    normalized = re.sub(r"[^a-z0-9]", "-", name.lower())
    normalized = re.sub(r"-+", "-", normalized)
    return normalized.strip("-")


def _domain_from_filename(path: str) -> str:
    stem = re.sub(r"\.(tsx?|jsx?)$", "", posixpath.basename(path))
    if stem.endswith("Context"):
        stem = stem[: -len("Context")]
    elif stem.endswith("Reducer"):
        stem = stem[: -len("Reducer")]
    return stem.lower()


def _usable(name: str | None) -> bool:
    return name is not None and name != "" and (
        name.lower() not in DOMAIN_STOP_WORDS
    )


def is_generic_hook(name: str) -> bool:
    return any(p.match(name) for p in GENERIC_HOOK_PATTERNS)


def generate_domain_description(candidate: DomainCandidate) -> str:
    """One-line human description of a candidate."""
    files = len(candidate.source_files)
    text = (
        f"The {candidate.name} domain, identified from "
        f"{candidate.suggested_by.replace('_', ' ')} analysis across "
        f"{files} file{'s' if files != 1 else ''}"
    )
    if not candidate.patterns:
        return text + "."
    kinds: defaultdict[str, int] = defaultdict(int)
    for pattern in candidate.patterns:
        kinds[pattern.kind] += 1
    detail = ", ".join(f"{n} {kind}" for kind, n in sorted(kinds.items()))
    return f"{text} ({detail})."


# ── Pattern collection ───────────────────────────────────


def collect_patterns(analyses: Iterable[FileAnalysis]) -> PatternCollection:
    """Group every pattern of a batch by kind, stamping its source file."""
    buckets: dict[str, list[Pattern]] = defaultdict(list)
    for analysis in analyses:
        for pattern in analysis.patterns:
            if not pattern.source_file:
                pattern = pattern.model_copy(
                    update={"source_file": analysis.path}
                )
            buckets[pattern.kind].append(pattern)

    return PatternCollection(
        components=[
            p for p in buckets[PatternKind.COMPONENT]
            if isinstance(p, ComponentPattern)
        ],
        hooks=[
            p for p in buckets[PatternKind.HOOK] if isinstance(p, HookPattern)
        ],
        contexts=[
            p for p in buckets[PatternKind.CONTEXT]
            if isinstance(p, ContextPattern)
        ],
        reducers=[
            p for p in buckets[PatternKind.REDUCER]
            if isinstance(p, ReducerPattern)
        ],
        effects=[
            p for p in buckets[PatternKind.EFFECT]
            if isinstance(p, EffectPattern)
        ],
        forms=[
            p for p in buckets[PatternKind.FORM] if isinstance(p, FormPattern)
        ],
    )


def stamped_patterns(analysis: FileAnalysis) -> list[Pattern]:
    """The file's patterns with ``source_file`` filled in."""
    return [
        p if p.source_file
        else p.model_copy(update={"source_file": analysis.path})
        for p in analysis.patterns
    ]


# ── Strategies ───────────────────────────────────────────


def extract_context_candidates(
    patterns: PatternCollection,
    analyses: Sequence[FileAnalysis],
) -> list[DomainCandidate]:
    candidates: list[DomainCandidate] = []
    for ctx in patterns.contexts:
        if not ctx.has_provider or not ctx.context_name:
            continue
        files = [ctx.source_file] if ctx.source_file else []
        for analysis in analyses:
            if analysis.path in files:
                continue
            if any(
                isinstance(p, ContextPattern)
                and p.context_name == ctx.context_name
                for p in analysis.patterns
            ):
                files.append(analysis.path)

        name = infer_domain_name(ctx.context_name)
        candidates.append(
            DomainCandidate(
                id=_new_id(f"ctx-{name}"),
                name=name,
                suggested_by=CandidateStrategy.CONTEXT,
                source_files=files,
                patterns=[ctx],
                confidence=CONTEXT_STRATEGY_CONFIDENCE,
            )
        )
    return candidates


def extract_reducer_candidates(
    patterns: PatternCollection,
) -> list[DomainCandidate]:
    first_per_file: dict[str, ReducerPattern] = {}
    for reducer in patterns.reducers:
        first_per_file.setdefault(reducer.source_file, reducer)

    candidates: list[DomainCandidate] = []
    for path, reducer in first_per_file.items():
        from_path = infer_domain_from_path(path)
        from_pattern = infer_domain_name(reducer.name)
        if _usable(from_path):
            name = str(from_path)
        elif _usable(from_pattern):
            name = from_pattern
        else:
            name = _domain_from_filename(path)

        candidates.append(
            DomainCandidate(
                id=_new_id(f"reducer-{name}"),
                name=name,
                suggested_by=CandidateStrategy.REDUCER,
                source_files=[path],
                patterns=[reducer],
                confidence=REDUCER_STRATEGY_CONFIDENCE,
            )
        )
    return candidates


def extract_hook_candidates(
    patterns: PatternCollection,
) -> list[DomainCandidate]:
    candidates: list[DomainCandidate] = []
    for hook in patterns.hooks:
        if not hook.is_custom_hook or is_generic_hook(hook.name):
            continue
        from_path = infer_domain_from_path(hook.source_file)
        if from_path and len(from_path) > 2:
            name = from_path
        else:
            name = re.sub(r"^use", "", hook.name).lower()
        if not name:
            continue

        candidates.append(
            DomainCandidate(
                id=_new_id(f"hook-{name}"),
                name=name,
                suggested_by=CandidateStrategy.HOOK,
                source_files=[hook.source_file],
                patterns=[hook],
                confidence=HOOK_STRATEGY_CONFIDENCE,
            )
        )
    return candidates


def extract_file_structure_candidates(
    analyses: Sequence[FileAnalysis],
) -> list[DomainCandidate]:
    groups: dict[str, list[FileAnalysis]] = defaultdict(list)
    for analysis in analyses:
        name = infer_domain_from_path(analysis.display_path)
        if name:
            groups[name].append(analysis)

    candidates: list[DomainCandidate] = []
    for name, members in groups.items():
        if len(members) < FILE_STRUCTURE_MIN_FILES:
            continue
        avg = sum(a.confidence for a in members) / len(members)
        candidates.append(
            DomainCandidate(
                id=_new_id(f"dir-{name}"),
                name=name,
                suggested_by=CandidateStrategy.FILE_STRUCTURE,
                source_files=[a.path for a in members],
                patterns=[p for a in members for p in stamped_patterns(a)],
                confidence=min(FILE_STRUCTURE_MAX_CONFIDENCE, avg),
            )
        )
    return candidates


# ── Merge ────────────────────────────────────────────────


def _overlap_ratio(a: Sequence[str], b: Sequence[str]) -> float:
    set_a, set_b = set(a), set(b)
    smaller = min(len(set_a), len(set_b))
    if smaller == 0:
        return 0.0
    return len(set_a & set_b) / smaller


def _similar(a: DomainCandidate, b: DomainCandidate) -> bool:
    if normalize_domain_name(a.name) == normalize_domain_name(b.name):
        return True
    return (
        _overlap_ratio(a.source_files, b.source_files)
        >= MERGE_OVERLAP_THRESHOLD
    )


def _pattern_key(pattern: Pattern) -> tuple[str, str, int]:
    return (pattern.kind, pattern.name, pattern.location.start_line)


def merge_candidates(
    candidates: Sequence[DomainCandidate],
) -> list[DomainCandidate]:
    """Single greedy pass grouping each candidate with its look-alikes.

    The merged candidate keeps id and strategy of the first candidate
    holding the group's highest confidence.
    """
    processed: set[str] = set()
    merged: list[DomainCandidate] = []

    for candidate in candidates:
        if candidate.id in processed:
            continue
        similar = [
            other
            for other in candidates
            if other.id != candidate.id
            and other.id not in processed
            and _similar(candidate, other)
        ]
        if not similar:
            processed.add(candidate.id)
            merged.append(
                candidate.model_copy(
                    update={"name": normalize_domain_name(candidate.name)}
                )
            )
            continue

        group = [candidate, *similar]
        best = max(group, key=lambda c: c.confidence)
        files = list(
            dict.fromkeys(f for c in group for f in c.source_files)
        )
        patterns: dict[tuple[str, str, int], Pattern] = {}
        for member in group:
            for pattern in member.patterns:
                patterns.setdefault(_pattern_key(pattern), pattern)

        merged.append(
            DomainCandidate(
                id=best.id,
                name=normalize_domain_name(best.name),
                suggested_by=best.suggested_by,
                source_files=files,
                patterns=list(patterns.values()),
                confidence=best.confidence,
            )
        )
        processed.update(c.id for c in group)
        logger.debug(
            "event=candidates_merged name=%s sources=%d files=%d",
            best.name,
            len(group),
            len(files),
        )

    return merged


# ── Relationships ────────────────────────────────────────


def _context_names(candidate: DomainCandidate) -> set[str]:
    return {
        p.context_name
        for p in candidate.patterns
        if isinstance(p, ContextPattern) and p.context_name
    }


def calculate_relationships(
    candidates: Sequence[DomainCandidate],
    graph: DependencyGraph,
) -> list[DomainCandidate]:
    """Return copies of ``candidates`` with cross-candidate relationships."""
    result: list[DomainCandidate] = []
    for candidate in candidates:
        own_files = set(candidate.source_files)
        own_contexts = _context_names(candidate)
        relationships: list[CandidateRelationship] = []

        for other in candidates:
            if other.id == candidate.id:
                continue
            other_files = set(other.source_files)
            if any(
                e.source in own_files and e.target in other_files
                for e in graph.edges
            ):
                relationships.append(
                    CandidateRelationship(
                        type=CandidateRelationshipType.IMPORTS,
                        target_domain_id=other.id,
                        strength=IMPORTS_RELATIONSHIP_STRENGTH,
                    )
                )
            if own_contexts & _context_names(other):
                relationships.append(
                    CandidateRelationship(
                        type=CandidateRelationshipType.SHARED_STATE,
                        target_domain_id=other.id,
                        strength=SHARED_STATE_RELATIONSHIP_STRENGTH,
                    )
                )

        result.append(
            candidate.model_copy(update={"relationships": relationships})
        )
    return result


def extract_domain_candidates(
    analyses: Sequence[FileAnalysis],
    graph: DependencyGraph | None = None,
) -> list[DomainCandidate]:
    """Run all strategies, merge, and attach relationships."""
    patterns = collect_patterns(analyses)
    raw = [
        *extract_context_candidates(patterns, analyses),
        *extract_reducer_candidates(patterns),
        *extract_hook_candidates(patterns),
        *extract_file_structure_candidates(analyses),
    ]
    merged = merge_candidates(raw)
    logger.info(
        "event=candidates_extracted raw=%d merged=%d",
        len(raw),
        len(merged),
    )
    if graph is None:
        return merged
    return calculate_relationships(merged, graph)


# ── Ambiguity ────────────────────────────────────────────


def _ambiguity_id(path: str, pattern: Pattern) -> str:
    return (
        f"ambiguous:{path}:{pattern.kind}:{pattern.name}"
        f":{pattern.location.start_line}"
    )


def detect_ambiguous_patterns(
    analyses: Sequence[FileAnalysis],
    candidates: Sequence[DomainCandidate],
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> list[AmbiguousPattern]:
    """Flag patterns that need a human decision.

    Ids are derived from file, kind, name and line, so re-running the
    detection over the same input yields the same ids.
    """
    claims: dict[str, list[DomainCandidate]] = defaultdict(list)
    for candidate in candidates:
        for path in dict.fromkeys(candidate.source_files):
            claims[path].append(candidate)

    flagged: list[AmbiguousPattern] = []
    for analysis in analyses:
        claimants = claims.get(analysis.path, [])
        for pattern in stamped_patterns(analysis):
            reasons: list[str] = []
            if pattern.confidence < threshold:
                reasons.append(f"Low confidence: {pattern.confidence:.2f}")
            if pattern.needs_review:
                reasons.append("Marked for review by the detector")
            if len(claimants) > 1:
                names = ", ".join(c.name for c in claimants)
                reasons.append(
                    f"Claimed by {len(claimants)} domains: {names}"
                )
            action_count = (
                len(pattern.distinct_actions)
                if isinstance(pattern, ReducerPattern)
                else 0
            )
            if action_count > REDUCER_SPLIT_ACTION_LIMIT:
                reasons.append(f"Reducer handles {action_count} actions")
            if not reasons:
                continue

            flagged.append(
                AmbiguousPattern(
                    id=_ambiguity_id(analysis.path, pattern),
                    file_path=analysis.path,
                    pattern=pattern,
                    reason="; ".join(reasons),
                    suggested_resolutions=_suggest_resolutions(
                        claimants, action_count
                    ),
                )
            )

    if flagged:
        logger.info("event=ambiguous_patterns count=%d", len(flagged))
    return flagged


def _suggest_resolutions(
    claimants: Sequence[DomainCandidate],
    action_count: int,
) -> list[Resolution]:
    resolutions: list[Resolution] = []
    if len(claimants) > 1:
        resolutions.extend(
            Resolution(
                id=f"classify-{c.id}",
                label=f"Assign to domain {c.name}",
                action=ResolutionAction.CLASSIFY_AS,
                params={"domain_id": c.id, "domain_name": c.name},
                confidence=c.confidence,
            )
            for c in claimants
        )
    if action_count > REDUCER_SPLIT_ACTION_LIMIT:
        split_count = math.ceil(action_count / REDUCER_ACTIONS_PER_SPLIT)
        resolutions.append(
            Resolution(
                id="split-reducer",
                label=f"Split into {split_count} domains",
                action=ResolutionAction.SPLIT,
                params={"suggested_split_count": split_count},
                confidence=SPLIT_RESOLUTION_CONFIDENCE,
            )
        )
    resolutions.append(
        Resolution(
            id=SKIP_OPTION_ID,
            label="Skip and mark for manual review",
            action=ResolutionAction.SKIP,
            confidence=SKIP_RESOLUTION_CONFIDENCE,
        )
    )
    return resolutions
