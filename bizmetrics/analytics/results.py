"""
Metric Result Wrapper

Every engine operation returns a MetricResult so callers can tell a real
computation from a degraded default.
"""

from enum import Enum
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class DataSource(str, Enum):
    """Where a metric was computed from"""
    DOCUMENT = "document"
    RELATIONAL = "relational"
    DEFAULT = "default"


class MetricResult(BaseModel, Generic[T]):
    """
    Metric payload with provenance.

    ``degraded`` is set when the value is a documented default or a lossy
    substitute (missing store, missing column); ``notes`` says which.
    """
    data: T
    source: DataSource
    degraded: bool = False
    notes: List[str] = Field(default_factory=list)

    @classmethod
    def relational(cls, data, notes: Optional[List[str]] = None, degraded: bool = False) -> "MetricResult":
        return cls(data=data, source=DataSource.RELATIONAL, degraded=degraded, notes=notes or [])

    @classmethod
    def document(cls, data, notes: Optional[List[str]] = None) -> "MetricResult":
        return cls(data=data, source=DataSource.DOCUMENT, notes=notes or [])

    @classmethod
    def default(cls, data, note: str) -> "MetricResult":
        return cls(data=data, source=DataSource.DEFAULT, degraded=True, notes=[note])
