import base64
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .entities import Prediction, PredictionFilter, PredictionMark


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; convert aware inputs before comparing."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class LabelOut(ORMModel):
    id: int
    name: str
    description: Optional[str] = None
    min: float
    max: float
    weight: int


class CategoryOut(ORMModel):
    id: int
    name: str
    description: Optional[str] = None


class RecommendationOut(ORMModel):
    id: int
    description: Optional[str] = None
    min_severity: float
    max_severity: float
    category: CategoryOut


class PlotOut(ORMModel):
    id: str
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class UserOut(ORMModel):
    id: str
    name: str


class ImageOut(ORMModel):
    id: str
    user_id: str
    filename: str
    created_at: Optional[datetime] = None


class MarkOut(BaseModel):
    id: str
    mark_type: str
    data: str  # base64

    @classmethod
    def from_entity(cls, mark: PredictionMark) -> "MarkOut":
        return cls(
            id=mark.id,
            mark_type=mark.mark_type.name,
            data=base64.b64encode(mark.data).decode("ascii"),
        )


class PredictionOut(BaseModel):
    id: str
    user_id: str
    image_id: str
    plot_id: Optional[str] = None
    label: LabelOut
    presence_confidence: float
    absence_confidence: float
    severity: float
    created_at: Optional[datetime] = None
    marks: List[MarkOut] = Field(default_factory=list)

    @classmethod
    def from_entity(cls, prediction: Prediction) -> "PredictionOut":
        return cls(
            id=prediction.id,
            user_id=prediction.user_id,
            image_id=prediction.image_id,
            plot_id=prediction.plot_id,
            label=LabelOut.model_validate(prediction.label),
            presence_confidence=prediction.presence_confidence,
            absence_confidence=prediction.absence_confidence,
            severity=prediction.severity,
            created_at=prediction.created_at,
            marks=[MarkOut.from_entity(mark) for mark in prediction.marks],
        )


class CreatePredictionRequest(BaseModel):
    user_id: str
    image_id: str
    label_id: Optional[int] = None
    plot_id: Optional[str] = None


class PredictionCreated(BaseModel):
    run_id: str
    prediction: PredictionOut
    recommendations: List[RecommendationOut]


class PaginatedPredictions(BaseModel):
    total: int
    page: int
    limit: int
    items: List[PredictionOut]


class DashboardFilterRequest(BaseModel):
    company_id: Optional[str] = None
    users: Optional[List[str]] = None
    plots: Optional[List[Optional[str]]] = None
    labels: Optional[List[str]] = None
    min_date: Optional[datetime] = None
    max_date: Optional[datetime] = None
    include_distribution: bool = True

    def to_filter(self) -> PredictionFilter:
        return PredictionFilter(
            company_id=self.company_id,
            users=self.users,
            plots=self.plots,
            labels=self.labels,
            min_date=naive_utc(self.min_date),
            max_date=naive_utc(self.max_date),
        )


class LabelCountOut(ORMModel):
    label: LabelOut
    count: int


class DistributionOut(ORMModel):
    month: str
    labels: List[LabelCountOut]


class DashboardSummaryOut(ORMModel):
    total: int
    plots: int
    mean_severity: float
    distribution: Optional[List[DistributionOut]] = None


class DashboardFiltersOut(ORMModel):
    labels: List[LabelOut]
    plots: List[PlotOut]
    users: List[UserOut]


class DetailedPlotOut(ORMModel):
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    total_diagnosis: int
    last_diagnosis: Optional[datetime] = None
    matching_diagnosis: int


class PaginatedDetailedPlotOut(ORMModel):
    total: int
    page: int
    limit: int
    items: List[DetailedPlotOut]


class AssignRequest(BaseModel):
    prediction_ids: List[str]


class AssignedPlotOut(ORMModel):
    prediction_ids: List[str]
    missing_ids: List[str]


class ErrorResponse(BaseModel):
    error: str
    kind: str
    retryable: bool
    detail: str
