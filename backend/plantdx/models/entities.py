"""Domain objects passed between the services and the repository ports."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence


@dataclass(frozen=True)
class Label:
    id: int
    name: str
    min: float
    max: float
    weight: int = 0
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def contains(self, severity: float) -> bool:
        return self.min <= severity <= self.max


@dataclass(frozen=True)
class Category:
    id: int
    name: str
    description: Optional[str] = None


@dataclass(frozen=True)
class Recommendation:
    id: int
    min_severity: float
    max_severity: float
    category: Category
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def contains(self, severity: float) -> bool:
        return self.min_severity <= severity <= self.max_severity


@dataclass(frozen=True)
class MarkType:
    id: int
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class PredictionMark:
    id: str
    data: bytes
    mark_type: MarkType
    prediction_id: str
    created_at: Optional[datetime] = None


@dataclass
class Prediction:
    id: str
    user_id: str
    image_id: str
    label: Label
    presence_confidence: float
    absence_confidence: float
    severity: float
    plot_id: Optional[str] = None
    created_at: Optional[datetime] = None
    marks: List[PredictionMark] = field(default_factory=list)


@dataclass(frozen=True)
class Image:
    id: str
    user_id: str
    filename: str
    filepath: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Plot:
    id: str
    company_id: str
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class User:
    id: str
    name: str
    company_id: Optional[str] = None


@dataclass(frozen=True)
class PredictionResult:
    """What the model server tells us about one image."""

    presence: float
    absence: float
    severity: float
    leaf_mask: bytes
    lesion_mask: bytes


@dataclass(frozen=True)
class DetailedPlot:
    id: Optional[str]
    name: str
    created_at: datetime
    total_diagnosis: int
    matching_diagnosis: int
    last_diagnosis: Optional[datetime] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class PaginatedDetailedPlot:
    total: int
    page: int
    limit: int
    items: List[DetailedPlot]


@dataclass(frozen=True)
class AssignedPlot:
    prediction_ids: List[str]
    missing_ids: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class DashboardLabelCount:
    label: Label
    count: int


@dataclass(frozen=True)
class DashboardDistribution:
    month: str
    labels: List[DashboardLabelCount]


@dataclass(frozen=True)
class DashboardSummary:
    total: int
    plots: int
    mean_severity: float
    distribution: Optional[List[DashboardDistribution]] = None


@dataclass(frozen=True)
class DashboardFilters:
    labels: List[Label]
    plots: List[Plot]
    users: List[User]


@dataclass(frozen=True)
class PredictionFilter:
    """Conjunctive filter; list fields are "any of", ``None`` means unrestricted.

    ``plots`` may contain ``None`` to select predictions without a plot.
    """

    company_id: Optional[str] = None
    users: Optional[Sequence[str]] = None
    plots: Optional[Sequence[Optional[str]]] = None
    labels: Optional[Sequence[str]] = None
    min_date: Optional[datetime] = None
    max_date: Optional[datetime] = None
