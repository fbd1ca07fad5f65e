"""Storage ports the services depend on.

Every repository works inside the transaction of the :class:`UnitOfWork` that
created it; nothing is visible to other units until that unit exits cleanly.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence, Tuple

from ..models.entities import (
    DashboardSummary,
    DetailedPlot,
    Image,
    Label,
    MarkType,
    Plot,
    Prediction,
    PredictionFilter,
    PredictionMark,
    Recommendation,
    User,
)


class LabelRepository(ABC):
    @abstractmethod
    def get_by_id(self, label_id: int) -> Optional[Label]: ...

    @abstractmethod
    def get_by_name(self, name: str) -> Optional[Label]: ...

    @abstractmethod
    def get_by_severity(self, severity: float) -> Optional[Label]:
        """Best label containing ``severity`` under the classifier's tie-break order."""

    @abstractmethod
    def get_all(self) -> List[Label]: ...


class RecommendationRepository(ABC):
    @abstractmethod
    def get_all(self) -> List[Recommendation]: ...

    @abstractmethod
    def get_by_severity(self, severity: float) -> List[Recommendation]: ...


class MarkTypeRepository(ABC):
    @abstractmethod
    def get_by_name(self, name: str) -> Optional[MarkType]: ...

    @abstractmethod
    def get_all(self) -> List[MarkType]: ...


class ImageRepository(ABC):
    @abstractmethod
    def create(self, image: Image) -> Image: ...

    @abstractmethod
    def get_by_id(self, image_id: str) -> Optional[Image]: ...


class UserRepository(ABC):
    @abstractmethod
    def get_by_id(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    def get_by_company_id(self, company_id: str) -> List[User]: ...


class PredictionRepository(ABC):
    @abstractmethod
    def create(self, prediction: Prediction) -> Prediction: ...

    @abstractmethod
    def get_by_id(self, prediction_id: str) -> Optional[Prediction]: ...

    @abstractmethod
    def update(self, prediction: Prediction) -> Prediction: ...

    @abstractmethod
    def delete(self, prediction_id: str) -> Optional[Prediction]:
        """Remove the prediction together with its marks."""

    @abstractmethod
    def filter(
        self, criteria: PredictionFilter, offset: int, limit: int
    ) -> Tuple[int, List[Prediction]]: ...

    @abstractmethod
    def assign_plot(self, prediction_ids: Sequence[str], plot_id: Optional[str]) -> List[str]:
        """Set ``plot_id`` on every existing prediction and return the ids touched."""


class PredictionMarkRepository(ABC):
    @abstractmethod
    def create(self, mark: PredictionMark) -> PredictionMark: ...

    @abstractmethod
    def create_many(self, marks: Iterable[PredictionMark]) -> List[PredictionMark]: ...

    @abstractmethod
    def get_by_prediction_id(self, prediction_id: str) -> List[PredictionMark]: ...

    @abstractmethod
    def get_by_predictions_ids(self, prediction_ids: Sequence[str]) -> List[PredictionMark]: ...


class PlotRepository(ABC):
    @abstractmethod
    def get_by_id(self, plot_id: str) -> Optional[Plot]: ...

    @abstractmethod
    def get_by_company_id(self, company_id: str) -> List[Plot]: ...

    @abstractmethod
    def count_by_company_id(self, company_id: str) -> int: ...

    @abstractmethod
    def get_detailed_page(
        self, company_id: str, labels: Sequence[str], offset: int, limit: int
    ) -> List[DetailedPlot]: ...

    @abstractmethod
    def get_detailed(self, plot_id: str, labels: Sequence[str]) -> Optional[DetailedPlot]: ...

    @abstractmethod
    def get_default_detailed(
        self, company_id: str, labels: Sequence[str]
    ) -> Optional[DetailedPlot]:
        """Rollup of the company's predictions that have no plot, or ``None`` if there are none."""


class DashboardRepository(ABC):
    @abstractmethod
    def summary(self, criteria: PredictionFilter, include_distribution: bool) -> DashboardSummary: ...


class UnitOfWork(ABC):
    """One transaction exposing every repository.

    Leaving the ``with`` block normally commits, leaving it with an exception
    rolls everything back.
    """

    labels: LabelRepository
    recommendations: RecommendationRepository
    mark_types: MarkTypeRepository
    images: ImageRepository
    users: UserRepository
    predictions: PredictionRepository
    marks: PredictionMarkRepository
    plots: PlotRepository
    dashboard: DashboardRepository

    @abstractmethod
    def __enter__(self) -> "UnitOfWork": ...

    @abstractmethod
    def __exit__(self, exc_type, exc, tb) -> None: ...
