"""Orchestrator state machine, HITL channel, events and the effect port."""

from domainscope.orchestration.effects import EffectPort, StoredSnapshot
from domainscope.orchestration.events import EventQueue, OrchestratorEvent
from domainscope.orchestration.schemas import (
    HITLOption,
    HITLRequest,
    HITLResponse,
    OrchestratorData,
    OrchestratorState,
)

__all__ = [
    "EffectPort",
    "EventQueue",
    "HITLOption",
    "HITLRequest",
    "HITLResponse",
    "OrchestratorData",
    "OrchestratorEvent",
    "OrchestratorState",
    "StoredSnapshot",
]
