from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid4())


class Company(Base):
    __tablename__ = "companies"
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False)


class User(Base):
    __tablename__ = "users"
    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey("companies.id"), index=True, nullable=True)
    name = Column(String, nullable=False)


class Label(Base):
    __tablename__ = "labels"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(Text)
    min = Column(Float, nullable=False)
    max = Column(Float, nullable=False)
    weight = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Category(Base):
    __tablename__ = "categories"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(Text)


class Recommendation(Base):
    __tablename__ = "recommendations"
    id = Column(Integer, primary_key=True, index=True)
    description = Column(Text)
    min_severity = Column(Float, nullable=False)
    max_severity = Column(Float, nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    category = relationship("Category", lazy="joined")


class MarkType(Base):
    __tablename__ = "mark_types"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(Text)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Plot(Base):
    __tablename__ = "plots"
    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey("companies.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Image(Base):
    __tablename__ = "images"
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    filename = Column(String, nullable=False)
    filepath = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Prediction(Base):
    __tablename__ = "predictions"
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    image_id = Column(String(36), ForeignKey("images.id"), index=True, nullable=False)
    label_id = Column(Integer, ForeignKey("labels.id"), nullable=False)
    plot_id = Column(String(36), ForeignKey("plots.id", ondelete="SET NULL"), index=True, nullable=True)
    presence_confidence = Column(Float, nullable=False)
    absence_confidence = Column(Float, nullable=False)
    severity = Column(Float, nullable=False)
    created_at = Column(DateTime, default=utcnow, index=True, nullable=False)

    label = relationship("Label", lazy="joined")
    marks = relationship(
        "PredictionMark",
        back_populates="prediction",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class PredictionMark(Base):
    __tablename__ = "prediction_marks"
    id = Column(String(36), primary_key=True, default=new_id)
    data = Column(LargeBinary, nullable=False)
    mark_type_id = Column(Integer, ForeignKey("mark_types.id"), nullable=False)
    prediction_id = Column(
        String(36), ForeignKey("predictions.id", ondelete="CASCADE"), index=True, nullable=False
    )
    created_at = Column(DateTime, default=utcnow, nullable=False)

    mark_type = relationship("MarkType", lazy="joined")
    prediction = relationship("Prediction", back_populates="marks")
