"""Core module - configuration, logging, concurrency, and shared models."""

from keygraph.core.concurrency import WorkerPool, WorkResult
from keygraph.core.config import Settings, get_settings
from keygraph.core.errors import KeygraphError
from keygraph.core.models.base import (
    Cardinality,
    DetectionMethod,
    InferenceMethod,
    KnowledgeFactType,
    RelationshipSource,
    RelationshipStatus,
    Result,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Concurrency
    "WorkerPool",
    "WorkResult",
    # Errors
    "KeygraphError",
    # Models
    "Cardinality",
    "DetectionMethod",
    "InferenceMethod",
    "KnowledgeFactType",
    "RelationshipSource",
    "RelationshipStatus",
    "Result",
]
