"""Base models and types shared by every keygraph module."""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class Result(BaseModel, Generic[T]):
    """Result type for operations that can fail.

    Use this instead of exceptions for expected failures.
    Exceptions are reserved for unexpected/programming errors.
    """

    success: bool
    value: T | None = None
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def ok(cls, value: T, warnings: list[str] | None = None) -> Result[T]:
        """Create a successful result."""
        return cls(success=True, value=value, warnings=warnings or [])

    @classmethod
    def fail(cls, error: str) -> Result[T]:
        """Create a failed result."""
        return cls(success=False, error=error)

    def unwrap(self) -> T:
        """Get the value or raise if failed."""
        if not self.success:
            raise ValueError(f"Result failed: {self.error}")
        assert self.value is not None
        return self.value

    def map(self, fn: Callable[[T], Any]) -> Result[Any]:
        """Transform the value if successful."""
        if self.success and self.value is not None:
            return Result.ok(fn(self.value), self.warnings)
        return self


# === Enums ===


class Cardinality(str, Enum):
    """Multiplicity of a source column -> target column relationship."""

    ONE_TO_ONE = "1:1"
    ONE_TO_MANY = "1:N"
    MANY_TO_ONE = "N:1"
    MANY_TO_MANY = "N:M"


class DetectionMethod(str, Enum):
    """How a relationship was established."""

    FOREIGN_KEY = "foreign_key"  # Declared in the datasource catalog
    DATA_OVERLAP = "data_overlap"  # Inferred by column feature extraction
    PK_MATCH = "pk_match"  # Join-tested candidate confirmed by the semantic judge


class RelationshipStatus(str, Enum):
    """Review status of a persisted relationship."""

    CONFIRMED = "confirmed"
    PENDING = "pending"
    REJECTED = "rejected"


class RelationshipSource(str, Enum):
    """Who produced a relationship record."""

    INFERRED = "inferred"
    MANUAL = "manual"


class InferenceMethod(str, Enum):
    """How a schema-level relationship was found in the datasource."""

    FOREIGN_KEY = "foreign_key"
    COLUMN_FEATURES = "column_features"
    PK_MATCH = "pk_match"
    MANUAL = "manual"


class KnowledgeFactType(str, Enum):
    """Kinds of project knowledge that inform semantic judging."""

    TERMINOLOGY = "terminology"
    BUSINESS_RULE = "business_rule"
    ENUMERATION = "enumeration"
    CONVENTION = "convention"
