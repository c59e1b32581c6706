"""Schema proposal generation from a domain's patterns.

Every proposed field carries a ``source`` naming the pattern(s) or the
enrichment call that produced it. Proposals are immutable; a new
derivation replaces the primary and the old one is kept as an
alternative by the summarizer.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from collections.abc import Iterable, Sequence

from domainscope.analysis.schemas import (
    ComponentPattern,
    ContextPattern,
    EffectPattern,
    HookPattern,
    Pattern,
    ReducerPattern,
    UnknownPattern,
)
from domainscope.constants import (
    ENRICHED_CONFIDENCE_CAP,
    ENRICHED_CONFIDENCE_FACTOR,
    FIELD_CONFIDENCE_FACTOR,
    HOOK_QUERY_CONFIDENCE_FACTOR,
    ID_HEX_LENGTH,
    LLM_SOURCE_PREFIX,
    MAX_REVIEW_NOTES_BEFORE_REVIEW,
    ActionType,
)
from domainscope.resilience.errors import SchemaProposalError
from domainscope.summary.schemas import (
    DomainRelationship,
    DomainSummary,
    ExtractedAction,
    ExtractedEntity,
    ExtractedField,
    ProposalValidation,
    SchemaFieldProposal,
    SchemaProposal,
    SummarizerConfig,
)

logger = logging.getLogger(__name__)

_OBJECT_LITERAL_RE = re.compile(r"\{([^}]+)\}")
_SNAKE_SEGMENT_RE = re.compile(r"_([a-z])")
_BUILTIN_EFFECTS = frozenset({"useEffect", "useLayoutEffect"})
_EVENT_MARKERS = ("SUCCESS", "FAILURE", "ERROR")
_QUERY_MARKERS = ("FETCH", "GET", "LOAD")


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:ID_HEX_LENGTH]}"


def _unquote(text: str) -> str:
    return text.strip().strip('"')


# ── Entities ─────────────────────────────────────────────


def parse_context_value(value: str) -> list[ExtractedField]:
    """Fields from a context value type, JSON object or ``{a: T, b: U}``."""
    try:
        parsed = json.loads(value)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        return [
            ExtractedField(name=_unquote(str(k)), type=_unquote(str(v)))
            for k, v in parsed.items()
        ]

    match = _OBJECT_LITERAL_RE.search(value)
    if match is None:
        return []
    fields: list[ExtractedField] = []
    for part in match.group(1).split(","):
        name, _, type_ = part.partition(":")
        if name.strip():
            fields.append(
                ExtractedField(
                    name=_unquote(name), type=_unquote(type_) or "unknown"
                )
            )
    return fields


def _entity_from_pattern(pattern: Pattern) -> ExtractedEntity | None:
    match pattern:
        case ComponentPattern(props=props) if props:
            return ExtractedEntity(
                name=f"{pattern.name}Props",
                fields=[
                    ExtractedField(
                        name=prop, type=type_ or "unknown", optional=True
                    )
                    for prop, type_ in props.items()
                ],
                source_patterns=[pattern.name],
                confidence=pattern.confidence,
            )
        case ContextPattern(context_value=value) if value:
            return ExtractedEntity(
                name=pattern.context_name or pattern.name,
                fields=parse_context_value(value),
                source_patterns=[pattern.name],
                confidence=pattern.confidence,
            )
        case ReducerPattern(state_shape=shape) if (
            shape and pattern.name != "initialState"
        ):
            name = (
                pattern.name
                if pattern.name.endswith("State")
                else f"{pattern.name}State"
            )
            return ExtractedEntity(
                name=name,
                fields=[
                    ExtractedField(name=k, type=v or "unknown")
                    for k, v in shape.items()
                ],
                source_patterns=[pattern.name],
                confidence=pattern.confidence,
            )
        case UnknownPattern(is_entity=True, entity_fields=fields) if fields:
            return ExtractedEntity(
                name=pattern.name,
                fields=[
                    ExtractedField(name=f.name, type=f.type, optional=f.optional)
                    for f in fields
                ],
                source_patterns=[pattern.name],
                confidence=pattern.confidence,
            )
        case _:
            return None


def deduplicate_entities(
    entities: Iterable[ExtractedEntity],
) -> list[ExtractedEntity]:
    """Dedup by case-insensitive name.

    A higher-confidence duplicate replaces the kept entity; otherwise its
    new fields and source patterns are folded into the kept one.
    """
    seen: dict[str, ExtractedEntity] = {}
    for entity in entities:
        key = entity.name.lower()
        existing = seen.get(key)
        if existing is None or entity.confidence > existing.confidence:
            seen[key] = entity
            continue
        known = {f.name for f in existing.fields}
        seen[key] = existing.model_copy(
            update={
                "fields": [
                    *existing.fields,
                    *(f for f in entity.fields if f.name not in known),
                ],
                "source_patterns": [
                    *existing.source_patterns,
                    *entity.source_patterns,
                ],
            }
        )
    return list(seen.values())


def extract_entities_from_patterns(
    patterns: Sequence[Pattern],
) -> list[ExtractedEntity]:
    found = (_entity_from_pattern(p) for p in patterns)
    return deduplicate_entities(e for e in found if e is not None)


# ── Actions ──────────────────────────────────────────────


def camel_case_action(action: str) -> str:
    """``AUTH_SUCCESS`` -> ``authSuccess``."""
    return _SNAKE_SEGMENT_RE.sub(lambda m: m.group(1).upper(), action.lower())


def classify_action(action: str) -> ActionType:
    if any(marker in action for marker in _EVENT_MARKERS):
        return ActionType.EVENT
    if any(marker in action for marker in _QUERY_MARKERS):
        return ActionType.QUERY
    return ActionType.COMMAND


def _actions_from_pattern(pattern: Pattern) -> list[ExtractedAction]:
    match pattern:
        case ReducerPattern(actions=actions):
            return [
                ExtractedAction(
                    name=camel_case_action(action),
                    type=classify_action(action),
                    source_patterns=[pattern.name],
                    confidence=pattern.confidence,
                )
                for action in actions
            ]
        case HookPattern(is_custom_hook=True):
            subject = pattern.name.removeprefix("use")
            return [
                ExtractedAction(
                    name=f"get{subject}",
                    type=ActionType.QUERY,
                    source_patterns=[pattern.name],
                    confidence=pattern.confidence
                    * HOOK_QUERY_CONFIDENCE_FACTOR,
                )
            ]
        case EffectPattern() if pattern.name not in _BUILTIN_EFFECTS:
            return [
                ExtractedAction(
                    name=pattern.name,
                    type=ActionType.EVENT,
                    source_patterns=[pattern.name],
                    confidence=pattern.confidence,
                )
            ]
        case _:
            return []


def deduplicate_actions(
    actions: Iterable[ExtractedAction],
) -> list[ExtractedAction]:
    seen: dict[str, ExtractedAction] = {}
    for action in actions:
        key = action.name.lower()
        existing = seen.get(key)
        if existing is None or action.confidence > existing.confidence:
            seen[key] = action
    return list(seen.values())


def extract_actions_from_patterns(
    patterns: Sequence[Pattern],
) -> list[ExtractedAction]:
    return deduplicate_actions(
        a for p in patterns for a in _actions_from_pattern(p)
    )


# ── Field proposals ──────────────────────────────────────


def _source(names: Sequence[str]) -> str:
    return ", ".join(dict.fromkeys(names)) or "unknown"


def entities_to_schema_fields(
    entities: Sequence[ExtractedEntity], domain_name: str
) -> list[SchemaFieldProposal]:
    fields: list[SchemaFieldProposal] = []
    for entity in entities:
        base = f"{domain_name}.entities.{entity.name}"
        source = _source(entity.source_patterns)
        fields.append(
            SchemaFieldProposal(
                path=base,
                type="object",
                description=f"Entity: {entity.name}",
                source=source,
                confidence=entity.confidence,
            )
        )
        fields.extend(
            SchemaFieldProposal(
                path=f"{base}.{field.name}",
                type=field.type,
                description=field.description or "",
                source=source,
                confidence=entity.confidence * FIELD_CONFIDENCE_FACTOR,
            )
            for field in entity.fields
        )
    return fields


def actions_to_schema_fields(
    actions: Sequence[ExtractedAction], domain_name: str
) -> list[SchemaFieldProposal]:
    return [
        SchemaFieldProposal(
            path=f"{domain_name}.intents.{action.name}",
            type=action.type.value,
            description=f"{action.type.value}: {action.name}",
            source=_source(action.source_patterns),
            confidence=action.confidence,
        )
        for action in actions
    ]


def infer_state_fields(
    patterns: Sequence[Pattern], domain_name: str
) -> list[SchemaFieldProposal]:
    """State slots from context names and reducer state shapes.

    A path is proposed once; the first pattern naming it wins.
    """
    fields: dict[str, SchemaFieldProposal] = {}
    for pattern in patterns:
        if isinstance(pattern, ContextPattern) and pattern.context_name:
            path = f"{domain_name}.state.{pattern.context_name}"
            fields.setdefault(
                path,
                SchemaFieldProposal(
                    path=path,
                    type="context",
                    description=f"Context state from {pattern.name}",
                    source=pattern.name,
                    confidence=pattern.confidence,
                ),
            )
    for pattern in patterns:
        if not isinstance(pattern, ReducerPattern):
            continue
        for key, value in pattern.state_shape.items():
            path = f"{domain_name}.state.{key}"
            fields.setdefault(
                path,
                SchemaFieldProposal(
                    path=path,
                    type=value or "unknown",
                    description=f"State field from {pattern.name}",
                    source=pattern.name,
                    confidence=pattern.confidence,
                ),
            )
    return list(fields.values())


def _mean_confidence(fields: Sequence[SchemaFieldProposal]) -> float:
    if not fields:
        return 0.0
    return sum(f.confidence for f in fields) / len(fields)


def _from_enrichment(sources: Sequence[str]) -> bool:
    return bool(sources) and all(
        s.startswith(LLM_SOURCE_PREFIX) for s in sources
    )


def enrichment_items(
    domain: DomainSummary,
) -> tuple[list[ExtractedEntity], list[ExtractedAction]]:
    """Entities and actions recorded on ``domain`` by enrichment."""
    return (
        [e for e in domain.entities if _from_enrichment(e.source_patterns)],
        [a for a in domain.actions if _from_enrichment(a.source_patterns)],
    )


def new_by_name[T: (ExtractedEntity, ExtractedAction)](
    derived: Sequence[T], supplied: Sequence[T] | None
) -> list[T]:
    """Items of ``supplied`` whose name is not already in ``derived``."""
    known = {item.name.lower() for item in derived}
    fresh: list[T] = []
    for item in supplied or ():
        key = item.name.lower()
        if key not in known:
            known.add(key)
            fresh.append(item)
    return fresh


def generate_schema_proposal(
    domain: DomainSummary,
    patterns: Sequence[Pattern],
    llm_entities: Sequence[ExtractedEntity] | None = None,
    llm_actions: Sequence[ExtractedAction] | None = None,
    *,
    relationships: Sequence[DomainRelationship] = (),
    config: SummarizerConfig | None = None,
) -> SchemaProposal:
    """Derive a proposal from ``patterns``, then fold in enrichment output.

    Enrichment items whose name (case-insensitive) is already derived are
    ignored. When anything new is added the overall confidence is scaled
    by 1.1 and capped at 0.95.
    """
    cfg = config or SummarizerConfig()
    entities = extract_entities_from_patterns(patterns)
    actions = extract_actions_from_patterns(patterns)

    entity_fields = entities_to_schema_fields(entities, domain.name)
    state_fields = infer_state_fields(patterns, domain.name)
    intent_fields = actions_to_schema_fields(actions, domain.name)
    confidence = _mean_confidence(
        [*entity_fields, *state_fields, *intent_fields]
    )

    extra_entities = new_by_name(entities, llm_entities)
    extra_actions = new_by_name(actions, llm_actions)
    if extra_entities or extra_actions:
        entity_fields += entities_to_schema_fields(extra_entities, domain.name)
        intent_fields += actions_to_schema_fields(extra_actions, domain.name)
        confidence = min(
            confidence * ENRICHED_CONFIDENCE_FACTOR, ENRICHED_CONFIDENCE_CAP
        )
        logger.info(
            "event=proposal_enriched domain=%s entities=%d actions=%d",
            domain.name,
            len(extra_entities),
            len(extra_actions),
        )

    notes: list[str] = []
    if not entities and not extra_entities:
        notes.append(
            "No entities could be extracted; manual entity definition may be needed"
        )
    if not actions and not extra_actions:
        notes.append(
            "No actions could be extracted; manual action definition may be needed"
        )
    all_fields = [*entity_fields, *state_fields, *intent_fields]
    low = sum(1 for f in all_fields if f.confidence < cfg.confidence_threshold)
    if low:
        notes.append(f"{low} fields have low confidence and may need review")
    related = [
        r.to_domain if r.from_domain == domain.id else r.from_domain
        for r in relationships
        if domain.id in (r.from_domain, r.to_domain)
    ]
    if related:
        notes.append("Related domains: " + ", ".join(dict.fromkeys(related)))

    return SchemaProposal(
        id=_new_id(f"proposal-{domain.id}"),
        domain_id=domain.id,
        domain_name=domain.name,
        entities=entity_fields,
        state=state_fields,
        intents=intent_fields,
        confidence=confidence,
        needs_review=(
            confidence < cfg.confidence_threshold
            or len(notes) > MAX_REVIEW_NOTES_BEFORE_REVIEW
        ),
        review_notes=notes,
    )


def validate_schema_proposal(proposal: SchemaProposal) -> ProposalValidation:
    errors: list[str] = []
    for field in proposal.entities:
        if not field.path.startswith(proposal.domain_name):
            errors.append(
                f'Entity path "{field.path}" does not start with domain name'
            )

    paths = [f.path for f in proposal.all_fields]
    seen: set[str] = set()
    duplicates: list[str] = []
    for path in paths:
        if path in seen and path not in duplicates:
            duplicates.append(path)
        seen.add(path)
    if duplicates:
        errors.append("Duplicate paths found: " + ", ".join(duplicates))

    if not paths:
        errors.append("Schema proposal is empty")

    missing = [f.path for f in proposal.all_fields if not f.source.strip()]
    if missing:
        errors.append("Fields without a source: " + ", ".join(missing))

    return ProposalValidation(valid=not errors, errors=errors)


def _merge_fields(
    fields: Iterable[SchemaFieldProposal],
) -> list[SchemaFieldProposal]:
    by_path: dict[str, SchemaFieldProposal] = {}
    for field in fields:
        existing = by_path.get(field.path)
        if existing is None or field.confidence > existing.confidence:
            by_path[field.path] = field
    return list(by_path.values())


def merge_schema_proposals(
    proposals: Sequence[SchemaProposal],
) -> SchemaProposal:
    """Combine proposals for one domain; higher confidence wins per path.

    Raises:
        SchemaProposalError: ``proposals`` is empty.
    """
    if not proposals:
        raise SchemaProposalError("Cannot merge an empty list of proposals")
    if len(proposals) == 1:
        return proposals[0]

    first = proposals[0]
    return SchemaProposal(
        id=_new_id("merged"),
        domain_id=first.domain_id,
        domain_name=first.domain_name,
        entities=_merge_fields(f for p in proposals for f in p.entities),
        state=_merge_fields(f for p in proposals for f in p.state),
        intents=_merge_fields(f for p in proposals for f in p.intents),
        confidence=sum(p.confidence for p in proposals) / len(proposals),
        needs_review=any(p.needs_review for p in proposals),
        review_notes=list(
            dict.fromkeys(n for p in proposals for n in p.review_notes)
        ),
    )
