"""Reference data (labels, mark types, recommendations) shipped as a JSON resource."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from typing import Any, Dict, List, Mapping

from sqlalchemy.orm import Session

from . import db_models

logger = logging.getLogger(__name__)

SEED_PACKAGE = "plantdx.data"
SEED_RESOURCE = "seed.json"


@dataclass(frozen=True)
class SeedData:
    """Read-only reference rows, inserted by name when missing."""

    mark_types: List[Mapping[str, Any]]
    labels: List[Mapping[str, Any]]
    categories: List[Mapping[str, Any]]
    recommendations: List[Mapping[str, Any]]

    @classmethod
    def from_json_resource(cls, package: str, resource_name: str) -> "SeedData":
        with resources.files(package).joinpath(resource_name).open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        for entry in data.get("labels", []):
            if entry["min"] > entry["max"]:
                raise ValueError(f"Label {entry['name']} has min > max")
        return cls(
            mark_types=data.get("mark_types", []),
            labels=data.get("labels", []),
            categories=data.get("categories", []),
            recommendations=data.get("recommendations", []),
        )

    def apply(self, db: Session) -> Dict[str, int]:
        """Insert missing rows and return how many of each kind were added."""
        added = {"mark_types": 0, "labels": 0, "categories": 0, "recommendations": 0}

        for entry in self.mark_types:
            if db.query(db_models.MarkType).filter_by(name=entry["name"]).first() is None:
                db.add(db_models.MarkType(**entry))
                added["mark_types"] += 1

        for entry in self.labels:
            if db.query(db_models.Label).filter_by(name=entry["name"]).first() is None:
                db.add(db_models.Label(**entry))
                added["labels"] += 1

        categories = {}
        for entry in self.categories:
            row = db.query(db_models.Category).filter_by(name=entry["name"]).first()
            if row is None:
                row = db_models.Category(**entry)
                db.add(row)
                added["categories"] += 1
            categories[entry["name"]] = row
        db.flush()

        for entry in self.recommendations:
            category = categories[entry["category"]]
            exists = (
                db.query(db_models.Recommendation)
                .filter_by(
                    category_id=category.id,
                    min_severity=entry["min_severity"],
                    max_severity=entry["max_severity"],
                    description=entry.get("description"),
                )
                .first()
            )
            if exists is None:
                db.add(
                    db_models.Recommendation(
                        category_id=category.id,
                        min_severity=entry["min_severity"],
                        max_severity=entry["max_severity"],
                        description=entry.get("description"),
                    )
                )
                added["recommendations"] += 1
        db.flush()

        logger.info("Seeded %s", ", ".join(f"{count} {name}" for name, count in added.items()))
        return added


@lru_cache(maxsize=1)
def get_seed_data() -> SeedData:
    return SeedData.from_json_resource(SEED_PACKAGE, SEED_RESOURCE)
