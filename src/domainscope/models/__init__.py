"""SQLAlchemy ORM models."""

from domainscope.models.base import Base
from domainscope.models.effect_log import EffectLogEntry
from domainscope.models.snapshot import StageSnapshot

__all__ = [
    "Base",
    "EffectLogEntry",
    "StageSnapshot",
]
