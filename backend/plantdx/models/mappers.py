"""Explicit row <-> entity conversions for the SQLAlchemy adapter."""
from __future__ import annotations

from . import db_models, entities


def label_from_row(row: db_models.Label) -> entities.Label:
    return entities.Label(
        id=row.id,
        name=row.name,
        description=row.description,
        min=float(row.min),
        max=float(row.max),
        weight=int(row.weight or 0),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def category_from_row(row: db_models.Category) -> entities.Category:
    return entities.Category(id=row.id, name=row.name, description=row.description)


def recommendation_from_row(row: db_models.Recommendation) -> entities.Recommendation:
    return entities.Recommendation(
        id=row.id,
        description=row.description,
        min_severity=float(row.min_severity),
        max_severity=float(row.max_severity),
        category=category_from_row(row.category),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def mark_type_from_row(row: db_models.MarkType) -> entities.MarkType:
    return entities.MarkType(
        id=row.id, name=row.name, description=row.description, created_at=row.created_at
    )


def mark_from_row(row: db_models.PredictionMark) -> entities.PredictionMark:
    return entities.PredictionMark(
        id=row.id,
        data=bytes(row.data),
        mark_type=mark_type_from_row(row.mark_type),
        prediction_id=row.prediction_id,
        created_at=row.created_at,
    )


def mark_to_row(mark: entities.PredictionMark) -> db_models.PredictionMark:
    return db_models.PredictionMark(
        id=mark.id,
        data=mark.data,
        mark_type_id=mark.mark_type.id,
        prediction_id=mark.prediction_id,
        created_at=mark.created_at or db_models.utcnow(),
    )


def prediction_from_row(row: db_models.Prediction, with_marks: bool = False) -> entities.Prediction:
    return entities.Prediction(
        id=row.id,
        user_id=row.user_id,
        image_id=row.image_id,
        label=label_from_row(row.label),
        plot_id=row.plot_id,
        presence_confidence=float(row.presence_confidence),
        absence_confidence=float(row.absence_confidence),
        severity=float(row.severity),
        created_at=row.created_at,
        marks=[mark_from_row(mark) for mark in row.marks] if with_marks else [],
    )


def prediction_to_row(prediction: entities.Prediction) -> db_models.Prediction:
    return db_models.Prediction(
        id=prediction.id,
        user_id=prediction.user_id,
        image_id=prediction.image_id,
        label_id=prediction.label.id,
        plot_id=prediction.plot_id,
        presence_confidence=prediction.presence_confidence,
        absence_confidence=prediction.absence_confidence,
        severity=prediction.severity,
        created_at=prediction.created_at or db_models.utcnow(),
    )


def image_from_row(row: db_models.Image) -> entities.Image:
    return entities.Image(
        id=row.id,
        user_id=row.user_id,
        filename=row.filename,
        filepath=row.filepath,
        created_at=row.created_at,
    )


def image_to_row(image: entities.Image) -> db_models.Image:
    return db_models.Image(
        id=image.id,
        user_id=image.user_id,
        filename=image.filename,
        filepath=image.filepath,
        created_at=image.created_at or db_models.utcnow(),
    )


def plot_from_row(row: db_models.Plot) -> entities.Plot:
    return entities.Plot(
        id=row.id,
        company_id=row.company_id,
        name=row.name,
        description=row.description,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def user_from_row(row: db_models.User) -> entities.User:
    return entities.User(id=row.id, name=row.name, company_id=row.company_id)
