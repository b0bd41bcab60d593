"""Value objects passed between the query pipeline components.

Everything here is created and discarded inside a single request.
"""

from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


class ValidationResult(BaseModel):
    """Outcome of checking a natural-language question."""
    is_valid: bool
    errors: List[str] = []
    warnings: List[str] = []


class SqlValidationResult(BaseModel):
    """Outcome of the read-only SQL safety check."""
    is_valid: bool
    error: Optional[str] = None
    warnings: List[str] = []


class ColumnSpec(BaseModel):
    key: str
    name: str


class QueryResult(BaseModel):
    """Discriminated success/failure result of executing a query."""
    success: bool
    rows: List[Dict[str, Any]] = []
    columns: List[ColumnSpec] = []
    collection: Optional[str] = None
    error: Optional[str] = None
    # format | safety | execution
    error_type: Optional[str] = None


class GenerationResult(BaseModel):
    success: bool
    pipeline: Optional[str] = None
    collection: Optional[str] = None
    error: Optional[str] = None


class ColumnStats(BaseModel):
    column: str
    average: float
    min: float
    max: float
    count: int


class SchemaField(BaseModel):
    key: str
    label: str


class EvidenceRow(BaseModel):
    id: int
    data: Dict[str, Any]


class EvidencePack(BaseModel):
    """Relevance-ranked rows plus column statistics used to ground an answer."""
    schema_: List[SchemaField] = Field(default_factory=list, alias="schema")
    stats: List[ColumnStats] = []
    rows: List[EvidenceRow] = []

    model_config = ConfigDict(populate_by_name=True)


class NumericInsight(BaseModel):
    column: str
    average: float
    min: float
    max: float
    median: float
    count: int
    range: float


class CategoricalInsight(BaseModel):
    column: str
    # (value, count) pairs sorted by count, most frequent first
    distribution: List[List[Any]]
    unique_values: int
    most_common: Optional[str] = None


Insight = Union[NumericInsight, CategoricalInsight]


class ResultAnalysis(BaseModel):
    count: int
    insights: List[Insight] = []
    columns: List[str] = []
