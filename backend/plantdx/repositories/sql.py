"""SQLAlchemy adapters for the repository ports."""
from __future__ import annotations

from collections import OrderedDict
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import case, distinct, func, literal_column, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from ..errors import PersistenceFailure
from ..models import db_models, mappers
from ..models.entities import (
    DashboardDistribution,
    DashboardLabelCount,
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
from . import base

DEFAULT_PLOT_NAME = "Default Plot"
DEFAULT_PLOT_DESCRIPTION = "Default plot for unassigned predictions"


def _company_user_ids(company_id: str):
    return select(db_models.User.id).where(db_models.User.company_id == company_id)


def prediction_conditions(criteria: PredictionFilter) -> list:
    """Translate a filter into WHERE clauses over ``predictions``.

    Empty lists are treated like omitted filters.
    """
    P = db_models.Prediction
    conditions = []
    if criteria.company_id:
        conditions.append(P.user_id.in_(_company_user_ids(criteria.company_id)))
    if criteria.users:
        conditions.append(P.user_id.in_(list(criteria.users)))
    if criteria.plots:
        plot_ids = [plot_id for plot_id in criteria.plots if plot_id is not None]
        alternatives = []
        if plot_ids:
            alternatives.append(P.plot_id.in_(plot_ids))
        if len(plot_ids) != len(criteria.plots):
            alternatives.append(P.plot_id.is_(None))
        conditions.append(or_(*alternatives))
    if criteria.labels:
        label_ids = select(db_models.Label.id).where(db_models.Label.name.in_(list(criteria.labels)))
        conditions.append(P.label_id.in_(label_ids))
    if criteria.min_date is not None:
        conditions.append(P.created_at >= criteria.min_date)
    if criteria.max_date is not None:
        conditions.append(P.created_at <= criteria.max_date)
    return conditions


def month_expression(dialect_name: str, column):
    """``YYYY-MM`` bucket of a timestamp column for the given SQL dialect."""
    if dialect_name == "postgresql":
        return func.to_char(column, literal_column("'YYYY-MM'"))
    if dialect_name in ("mysql", "mariadb"):
        return func.date_format(column, literal_column("'%Y-%m'"))
    return func.strftime(literal_column("'%Y-%m'"), column)


def matching_condition(labels: Sequence[str]):
    """Predictions counted as "matching": label name in ``labels``, or healthy when no labels."""
    if labels:
        return db_models.Label.name.in_(list(labels))
    return db_models.Prediction.severity == 0.0


def _rollup_columns(labels: Sequence[str]):
    P = db_models.Prediction
    return (
        func.count(P.id).label("total_diagnosis"),
        func.max(P.created_at).label("last_diagnosis"),
        func.coalesce(
            func.sum(case((matching_condition(labels), 1), else_=0)), 0
        ).label("matching_diagnosis"),
    )


class SqlLabelRepository(base.LabelRepository):
    def __init__(self, db: Session) -> None:
        self._db = db

    def get_by_id(self, label_id: int) -> Optional[Label]:
        row = self._db.get(db_models.Label, label_id)
        return mappers.label_from_row(row) if row else None

    def get_by_name(self, name: str) -> Optional[Label]:
        row = self._db.query(db_models.Label).filter_by(name=name).first()
        return mappers.label_from_row(row) if row else None

    def get_by_severity(self, severity: float) -> Optional[Label]:
        L = db_models.Label
        row = (
            self._db.query(L)
            .filter(L.min <= severity, L.max >= severity)
            .order_by(L.min.asc(), L.weight.desc(), L.id.asc())
            .first()
        )
        return mappers.label_from_row(row) if row else None

    def get_all(self) -> List[Label]:
        L = db_models.Label
        rows = self._db.query(L).order_by(L.min.asc(), L.weight.desc(), L.id.asc()).all()
        return [mappers.label_from_row(row) for row in rows]


class SqlRecommendationRepository(base.RecommendationRepository):
    def __init__(self, db: Session) -> None:
        self._db = db

    def get_all(self) -> List[Recommendation]:
        R = db_models.Recommendation
        rows = self._db.query(R).order_by(R.min_severity.asc(), R.id.asc()).all()
        return [mappers.recommendation_from_row(row) for row in rows]

    def get_by_severity(self, severity: float) -> List[Recommendation]:
        R = db_models.Recommendation
        rows = (
            self._db.query(R)
            .filter(R.min_severity <= severity, R.max_severity >= severity)
            .order_by(R.min_severity.asc(), R.id.asc())
            .all()
        )
        return [mappers.recommendation_from_row(row) for row in rows]


class SqlMarkTypeRepository(base.MarkTypeRepository):
    def __init__(self, db: Session) -> None:
        self._db = db

    def get_by_name(self, name: str) -> Optional[MarkType]:
        row = self._db.query(db_models.MarkType).filter_by(name=name).first()
        return mappers.mark_type_from_row(row) if row else None

    def get_all(self) -> List[MarkType]:
        rows = self._db.query(db_models.MarkType).order_by(db_models.MarkType.id).all()
        return [mappers.mark_type_from_row(row) for row in rows]


class SqlImageRepository(base.ImageRepository):
    def __init__(self, db: Session) -> None:
        self._db = db

    def create(self, image: Image) -> Image:
        row = mappers.image_to_row(image)
        self._db.add(row)
        self._db.flush()
        return mappers.image_from_row(row)

    def get_by_id(self, image_id: str) -> Optional[Image]:
        row = self._db.get(db_models.Image, image_id)
        return mappers.image_from_row(row) if row else None


class SqlUserRepository(base.UserRepository):
    def __init__(self, db: Session) -> None:
        self._db = db

    def get_by_id(self, user_id: str) -> Optional[User]:
        row = self._db.get(db_models.User, user_id)
        return mappers.user_from_row(row) if row else None

    def get_by_company_id(self, company_id: str) -> List[User]:
        rows = (
            self._db.query(db_models.User)
            .filter_by(company_id=company_id)
            .order_by(db_models.User.name)
            .all()
        )
        return [mappers.user_from_row(row) for row in rows]


class SqlPredictionRepository(base.PredictionRepository):
    def __init__(self, db: Session) -> None:
        self._db = db

    def create(self, prediction: Prediction) -> Prediction:
        row = mappers.prediction_to_row(prediction)
        self._db.add(row)
        self._db.flush()
        self._db.refresh(row)
        return mappers.prediction_from_row(row)

    def get_by_id(self, prediction_id: str) -> Optional[Prediction]:
        row = (
            self._db.query(db_models.Prediction)
            .options(selectinload(db_models.Prediction.marks))
            .filter_by(id=prediction_id)
            .first()
        )
        return mappers.prediction_from_row(row, with_marks=True) if row else None

    def update(self, prediction: Prediction) -> Prediction:
        row = self._db.get(db_models.Prediction, prediction.id)
        if row is None:
            raise LookupError(prediction.id)
        row.label_id = prediction.label.id
        row.plot_id = prediction.plot_id
        row.presence_confidence = prediction.presence_confidence
        row.absence_confidence = prediction.absence_confidence
        row.severity = prediction.severity
        self._db.flush()
        self._db.refresh(row)
        return mappers.prediction_from_row(row)

    def delete(self, prediction_id: str) -> Optional[Prediction]:
        row = self._db.get(db_models.Prediction, prediction_id)
        if row is None:
            return None
        deleted = mappers.prediction_from_row(row, with_marks=True)
        self._db.delete(row)
        self._db.flush()
        return deleted

    def filter(
        self, criteria: PredictionFilter, offset: int, limit: int
    ) -> Tuple[int, List[Prediction]]:
        P = db_models.Prediction
        conditions = prediction_conditions(criteria)
        total = self._db.query(func.count(P.id)).filter(*conditions).scalar() or 0
        rows = (
            self._db.query(P)
            .filter(*conditions)
            .order_by(P.created_at.desc(), P.id.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return int(total), [mappers.prediction_from_row(row) for row in rows]

    def assign_plot(self, prediction_ids: Sequence[str], plot_id: Optional[str]) -> List[str]:
        if not prediction_ids:
            return []
        rows = (
            self._db.query(db_models.Prediction)
            .filter(db_models.Prediction.id.in_(list(prediction_ids)))
            .all()
        )
        for row in rows:
            row.plot_id = plot_id
        self._db.flush()
        return [row.id for row in rows]


class SqlPredictionMarkRepository(base.PredictionMarkRepository):
    def __init__(self, db: Session) -> None:
        self._db = db

    def create(self, mark: PredictionMark) -> PredictionMark:
        return self.create_many([mark])[0]

    def create_many(self, marks: Iterable[PredictionMark]) -> List[PredictionMark]:
        rows = [mappers.mark_to_row(mark) for mark in marks]
        self._db.add_all(rows)
        self._db.flush()
        for row in rows:
            self._db.refresh(row)
        return [mappers.mark_from_row(row) for row in rows]

    def get_by_prediction_id(self, prediction_id: str) -> List[PredictionMark]:
        return self.get_by_predictions_ids([prediction_id])

    def get_by_predictions_ids(self, prediction_ids: Sequence[str]) -> List[PredictionMark]:
        if not prediction_ids:
            return []
        M = db_models.PredictionMark
        rows = (
            self._db.query(M)
            .filter(M.prediction_id.in_(list(prediction_ids)))
            .order_by(M.prediction_id, M.mark_type_id)
            .all()
        )
        return [mappers.mark_from_row(row) for row in rows]


class SqlPlotRepository(base.PlotRepository):
    def __init__(self, db: Session) -> None:
        self._db = db

    def get_by_id(self, plot_id: str) -> Optional[Plot]:
        row = self._db.get(db_models.Plot, plot_id)
        return mappers.plot_from_row(row) if row else None

    def get_by_company_id(self, company_id: str) -> List[Plot]:
        rows = (
            self._db.query(db_models.Plot)
            .filter_by(company_id=company_id)
            .order_by(db_models.Plot.created_at.desc(), db_models.Plot.id.asc())
            .all()
        )
        return [mappers.plot_from_row(row) for row in rows]

    def count_by_company_id(self, company_id: str) -> int:
        return int(
            self._db.query(func.count(db_models.Plot.id))
            .filter(db_models.Plot.company_id == company_id)
            .scalar()
            or 0
        )

    def _detailed_query(self, labels: Sequence[str]):
        Pl, P, L = db_models.Plot, db_models.Prediction, db_models.Label
        return (
            self._db.query(Pl.id, Pl.name, Pl.description, Pl.created_at, *_rollup_columns(labels))
            .select_from(Pl)
            .outerjoin(P, P.plot_id == Pl.id)
            .outerjoin(L, L.id == P.label_id)
            .group_by(Pl.id, Pl.name, Pl.description, Pl.created_at)
        )

    def get_detailed_page(
        self, company_id: str, labels: Sequence[str], offset: int, limit: int
    ) -> List[DetailedPlot]:
        Pl = db_models.Plot
        rows = (
            self._detailed_query(labels)
            .filter(Pl.company_id == company_id)
            .order_by(Pl.created_at.desc(), Pl.id.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return [self._to_detailed(row) for row in rows]

    def get_detailed(self, plot_id: str, labels: Sequence[str]) -> Optional[DetailedPlot]:
        row = self._detailed_query(labels).filter(db_models.Plot.id == plot_id).first()
        return self._to_detailed(row) if row else None

    def get_default_detailed(
        self, company_id: str, labels: Sequence[str]
    ) -> Optional[DetailedPlot]:
        P, L = db_models.Prediction, db_models.Label
        row = (
            self._db.query(func.min(P.created_at).label("created_at"), *_rollup_columns(labels))
            .select_from(P)
            .outerjoin(L, L.id == P.label_id)
            .filter(P.plot_id.is_(None), P.user_id.in_(_company_user_ids(company_id)))
            .one()
        )
        if not row.total_diagnosis:
            return None
        return DetailedPlot(
            id=None,
            name=DEFAULT_PLOT_NAME,
            description=DEFAULT_PLOT_DESCRIPTION,
            created_at=row.created_at,
            total_diagnosis=int(row.total_diagnosis),
            last_diagnosis=row.last_diagnosis,
            matching_diagnosis=int(row.matching_diagnosis or 0),
        )

    @staticmethod
    def _to_detailed(row) -> DetailedPlot:
        return DetailedPlot(
            id=row.id,
            name=row.name,
            description=row.description,
            created_at=row.created_at,
            total_diagnosis=int(row.total_diagnosis or 0),
            last_diagnosis=row.last_diagnosis,
            matching_diagnosis=int(row.matching_diagnosis or 0),
        )


class SqlDashboardRepository(base.DashboardRepository):
    def __init__(self, db: Session) -> None:
        self._db = db

    def summary(self, criteria: PredictionFilter, include_distribution: bool) -> DashboardSummary:
        P = db_models.Prediction
        conditions = prediction_conditions(criteria)
        total, mean_severity, plots = (
            self._db.query(
                func.count(P.id),
                func.avg(P.severity),
                func.count(distinct(P.plot_id)),
            )
            .filter(*conditions)
            .one()
        )
        total = int(total or 0)
        distribution = self._distribution(conditions) if include_distribution else None
        return DashboardSummary(
            total=total,
            plots=int(plots or 0),
            mean_severity=float(mean_severity) if total else 0.0,
            distribution=distribution,
        )

    def _distribution(self, conditions: list) -> List[DashboardDistribution]:
        P, L = db_models.Prediction, db_models.Label
        dialect = self._db.get_bind().dialect.name
        month = month_expression(dialect, P.created_at).label("month")
        rows = (
            self._db.query(month, L, func.count(P.id).label("count"))
            .select_from(P)
            .join(L, L.id == P.label_id)
            .filter(*conditions)
            .group_by(month, L.id)
            .order_by(month.asc(), L.min.asc(), L.id.asc())
            .all()
        )
        buckets: "OrderedDict[str, List[DashboardLabelCount]]" = OrderedDict()
        for month_key, label_row, count in rows:
            buckets.setdefault(month_key, []).append(
                DashboardLabelCount(label=mappers.label_from_row(label_row), count=int(count))
            )
        return [DashboardDistribution(month=key, labels=labels) for key, labels in buckets.items()]


class SqlUnitOfWork(base.UnitOfWork):
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory
        self._db: Optional[Session] = None

    def __enter__(self) -> "SqlUnitOfWork":
        self._db = db = self._session_factory()
        self.labels = SqlLabelRepository(db)
        self.recommendations = SqlRecommendationRepository(db)
        self.mark_types = SqlMarkTypeRepository(db)
        self.images = SqlImageRepository(db)
        self.users = SqlUserRepository(db)
        self.predictions = SqlPredictionRepository(db)
        self.marks = SqlPredictionMarkRepository(db)
        self.plots = SqlPlotRepository(db)
        self.dashboard = SqlDashboardRepository(db)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        db, self._db = self._db, None
        try:
            if exc_type is None:
                db.commit()
            else:
                db.rollback()
        except SQLAlchemyError as err:
            db.rollback()
            raise PersistenceFailure(f"Storage transaction failed: {err}") from err
        finally:
            db.close()
        if exc_type is not None and issubclass(exc_type, SQLAlchemyError):
            raise PersistenceFailure(f"Storage operation failed: {exc}") from exc


__all__ = [
    "DEFAULT_PLOT_DESCRIPTION",
    "DEFAULT_PLOT_NAME",
    "SqlUnitOfWork",
    "month_expression",
    "prediction_conditions",
]
