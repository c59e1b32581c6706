"""Shared constants: single source of truth for cross-module values.

All magic strings and numbers that appear in 2+ files belong here.
StrEnum members are str-compatible, so downstream code (JSON, SQL,
snapshot payloads) works unchanged.
"""

from __future__ import annotations

from enum import StrEnum

# ── String Enums ─────────────────────────────────────────


class PatternKind(StrEnum):
    """Structural idioms reported by the pattern detector."""

    COMPONENT = "component"
    HOOK = "hook"
    CONTEXT = "context"
    REDUCER = "reducer"
    EFFECT = "effect"
    FORM = "form"
    UNKNOWN = "unknown"


class CandidateStrategy(StrEnum):
    """Heuristic that proposed a domain candidate."""

    CONTEXT = "context"
    REDUCER = "reducer"
    HOOK = "hook"
    FILE_STRUCTURE = "file_structure"


class CandidateRelationshipType(StrEnum):
    """Edges between domain candidates before clustering."""

    IMPORTS = "imports"
    PROVIDES_CONTEXT = "provides_context"
    CONSUMES_CONTEXT = "consumes_context"
    SHARED_STATE = "shared_state"


class DomainRelationshipType(StrEnum):
    """Edges between domain summaries."""

    DEPENDENCY = "dependency"
    SHARED_STATE = "shared_state"
    EVENT_FLOW = "event_flow"
    COMPOSITION = "composition"


class ConflictType(StrEnum):
    OWNERSHIP = "ownership"
    NAMING = "naming"
    BOUNDARY = "boundary"


class ResolutionAction(StrEnum):
    """Actions offered for an ambiguous pattern."""

    CLASSIFY_AS = "classify_as"
    SKIP = "skip"
    MERGE_WITH = "merge_with"
    SPLIT = "split"


class ConflictAction(StrEnum):
    """Actions offered for a domain conflict."""

    MERGE = "merge"
    SPLIT = "split"
    ASSIGN = "assign"
    RENAME = "rename"
    SKIP = "skip"


class ActionType(StrEnum):
    """Intent classification for extracted domain actions."""

    COMMAND = "command"
    QUERY = "query"
    EVENT = "event"


class Phase(StrEnum):
    """Orchestrator lifecycle phase."""

    INIT = "INIT"
    ANALYZING = "ANALYZING"
    SUMMARIZING = "SUMMARIZING"
    TRANSFORMING = "TRANSFORMING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


class AgentStatus(StrEnum):
    """Status of a child stage tracked by the orchestrator."""

    IDLE = "IDLE"
    RUNNING = "RUNNING"
    WAITING = "WAITING"
    DONE = "DONE"
    FAILED = "FAILED"


class TaskStatus(StrEnum):
    """Per-file analysis task status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


class DomainStatus(StrEnum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    DONE = "done"


class StageOutcome(StrEnum):
    """Outcome of an individual pipeline stage execution."""

    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class StageName(StrEnum):
    """Named stages persisted in the snapshot store."""

    ORCHESTRATOR = "orchestrator"
    ANALYZER = "analyzer"
    SUMMARIZER = "summarizer"
    TRANSFORMER = "transformer"


class EventType(StrEnum):
    """Outbound events drained by the host after each step."""

    PHASE_CHANGED = "phase_changed"
    PROGRESS = "progress"
    FILE_ANALYZED = "file_analyzed"
    FILE_FAILED = "file_failed"
    DOMAIN_DISCOVERED = "domain_discovered"
    AMBIGUOUS_PATTERN = "ambiguous_pattern"
    CONFLICT_DETECTED = "conflict_detected"
    PROPOSAL_READY = "proposal_ready"
    HITL_REQUESTED = "hitl_requested"
    HITL_RESOLVED = "hitl_resolved"
    MODEL_UPGRADED = "model_upgraded"
    ERROR = "error"
    COMPLETE = "complete"


class EffectType(StrEnum):
    """Effect names recorded through ``log_effect``."""

    SCAN_FILES = "scan_files"
    ANALYZE_FILE = "analyze_file"
    SAVE_SNAPSHOT = "save_snapshot"
    LOAD_SNAPSHOT = "load_snapshot"
    WRITE_DOMAIN_FILE = "write_domain_file"
    HITL = "hitl"


# ── Candidate extraction ─────────────────────────────────

CONTEXT_STRATEGY_CONFIDENCE = 0.9
REDUCER_STRATEGY_CONFIDENCE = 0.8
HOOK_STRATEGY_CONFIDENCE = 0.7
FILE_STRUCTURE_MAX_CONFIDENCE = 0.6
FILE_STRUCTURE_MIN_FILES = 2

MERGE_OVERLAP_THRESHOLD = 0.8
IMPORTS_RELATIONSHIP_STRENGTH = 0.5
SHARED_STATE_RELATIONSHIP_STRENGTH = 0.8

REDUCER_SPLIT_ACTION_LIMIT = 8
REDUCER_ACTIONS_PER_SPLIT = 5
SPLIT_RESOLUTION_CONFIDENCE = 0.6
SKIP_RESOLUTION_CONFIDENCE = 0.3

# Reserved HITL option id; always a legal response.
SKIP_OPTION_ID = "__skip__"

# Directory names whose child segment names a domain.
DOMAIN_DIRECTORIES = frozenset({
    "features",
    "modules",
    "domains",
    "pages",
    "views",
    "screens",
})

# Names that never make a usable domain on their own.
DOMAIN_STOP_WORDS = frozenset({"use", "reducer"})

# ── Thresholds ───────────────────────────────────────────

DEFAULT_CONFIDENCE_THRESHOLD = 0.7
DEFAULT_MIN_CLUSTER_SIZE = 2
DEFAULT_SIMILARITY_THRESHOLD = 0.5
DEFAULT_MAX_ALTERNATIVES = 3
STRONG_COUPLING_THRESHOLD = 0.7
MERGE_SUGGESTION_THRESHOLD = 0.8
MIN_RELATIONSHIP_STRENGTH = 0.1
MAX_RELATIONSHIP_EVIDENCE = 5
UNCLUSTERED_CONFIDENCE_FACTOR = 0.7

# ── Schema proposals ─────────────────────────────────────

ENRICHED_CONFIDENCE_FACTOR = 1.1
ENRICHED_CONFIDENCE_CAP = 0.95
LLM_ITEM_CONFIDENCE = 0.85
LLM_SOURCE_PREFIX = "llm:"
HOOK_QUERY_CONFIDENCE_FACTOR = 0.8
FIELD_CONFIDENCE_FACTOR = 0.9
MAX_REVIEW_NOTES_BEFORE_REVIEW = 2

# ── Pipeline ─────────────────────────────────────────────

DEFAULT_MAX_CONCURRENCY = 1
SNAPSHOT_INTERVAL = 10
ID_HEX_LENGTH = 8

# ── Priority scoring ─────────────────────────────────────

PRIORITY_BASE = 50
PRIORITY_MIN = 0
PRIORITY_MAX = 100

# ── Enrichment retry / circuit breaker ───────────────────

RETRY_MAX_ATTEMPTS = 3
RETRY_BASE_DELAY = 1.0  # seconds
RETRY_MAX_DELAY = 30.0  # seconds
RETRY_JITTER_RATIO = 0.25
CB_LLM_FAILURE_THRESHOLD = 5
CB_LLM_RECOVERY_TIMEOUT = 30
LLM_MAX_OUTPUT_TOKENS = 4096
