"""Domain summarization: clustering, relationships, conflicts, proposals."""

from domainscope.summary.clustering import perform_clustering
from domainscope.summary.conflicts import detect_conflicts
from domainscope.summary.relationship import (
    analyze_all_relationships,
    detect_cyclic_dependencies,
)
from domainscope.summary.schema_proposal import (
    generate_schema_proposal,
    merge_schema_proposals,
    validate_schema_proposal,
)
from domainscope.summary.schemas import (
    DomainConflict,
    DomainRelationship,
    DomainSummary,
    SchemaProposal,
    SummarizerConfig,
)

__all__ = [
    "DomainConflict",
    "DomainRelationship",
    "DomainSummary",
    "SchemaProposal",
    "SummarizerConfig",
    "analyze_all_relationships",
    "detect_conflicts",
    "detect_cyclic_dependencies",
    "generate_schema_proposal",
    "merge_schema_proposals",
    "perform_clustering",
    "validate_schema_proposal",
]
