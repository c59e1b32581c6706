"""LLM prompts for optional domain enrichment.

Only entity and action extraction go through the model; everything else
in the summarizer is deterministic.
"""

from __future__ import annotations

from collections.abc import Sequence

from domainscope.analysis.schemas import Pattern

ENRICHMENT_SYSTEM_PROMPT = """\
You extract business concepts from structural patterns detected in a \
component-oriented front-end codebase. Answer with a single JSON object \
and nothing else. Focus on business concepts, not UI plumbing."""

# Patterns that can carry actions
ACTION_PATTERN_KINDS = frozenset({"reducer", "hook", "effect"})

_MAX_PATTERN_TEXT = 500


def _pattern_text(pattern: Pattern) -> str:
    details = pattern.model_dump_json(
        exclude={"name", "kind", "location", "source_file"}
    )
    if len(details) > _MAX_PATTERN_TEXT:
        details = details[:_MAX_PATTERN_TEXT] + "..."
    return f"- {pattern.kind}: {pattern.name}\n  Metadata: {details}"


def entities_prompt(patterns: Sequence[Pattern], domain_name: str) -> str:
    listing = "\n\n".join(_pattern_text(p) for p in patterns)
    return f"""\
You are extracting business entities for the "{domain_name}" domain.

Patterns:
{listing}

Instructions:
1. Identify distinct business entities from these patterns
2. For each entity give a singular PascalCase name, its fields with \
types, and a short description
3. Merge similar patterns into one entity

Respond in JSON format:
{{
  "entities": [
    {{
      "name": "EntityName",
      "description": "What this entity represents",
      "fields": [
        {{"name": "fieldName", "type": "string", "description": "purpose"}}
      ],
      "source": "pattern name this came from"
    }}
  ]
}}"""


def actions_prompt(patterns: Sequence[Pattern], domain_name: str) -> str:
    listing = "\n\n".join(_pattern_text(p) for p in patterns)
    return f"""\
You are extracting business actions for the "{domain_name}" domain.

Handlers:
{listing}

Instructions:
1. Identify the business operations these handlers perform
2. Classify each as "command" (modifies state), "query" (reads data) \
or "event" (responds to something that happened)

Respond in JSON format:
{{
  "actions": [
    {{
      "name": "actionName",
      "type": "command",
      "description": "What this action does",
      "source": "handler name this came from"
    }}
  ]
}}"""
