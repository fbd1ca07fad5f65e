"""Runtime configuration read once from environment variables."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import quote_plus

BASE_DIR = Path(__file__).resolve().parent.parent

INFERENCE_BACKENDS = ("http", "grpc", "mock")


def build_database_url() -> str:
    """Construct a SQLAlchemy database URL from environment variables."""
    if url := os.getenv("DATABASE_URL"):
        return url

    user = os.getenv("POSTGRES_USER", "postgres")
    password = quote_plus(os.getenv("POSTGRES_PASSWORD", "postgres"))
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    database = os.getenv("POSTGRES_DB", "postgres")

    return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{database}"


def _optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else None


@dataclass(frozen=True)
class Settings:
    database_url: str
    storage_dir: Path
    inference_backend: str = "http"
    tf_serving_url: str = "http://localhost:8501"
    tf_serving_grpc_url: str = "localhost:8500"
    model_name: str = "leaf_disease"
    model_version: Optional[int] = None
    timeout_seconds: float = 30.0
    image_size: int = 256
    concurrency_limit: int = 4
    inference_retries: int = 2
    backoff_seconds: float = 0.1
    run_history_size: int = 1000
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.inference_backend not in INFERENCE_BACKENDS:
            raise ValueError(
                f"INFERENCE_BACKEND must be one of {', '.join(INFERENCE_BACKENDS)}, "
                f"got {self.inference_backend!r}"
            )
        if self.image_size <= 0:
            raise ValueError("INFERENCE_IMAGE_SIZE must be positive")
        if self.concurrency_limit <= 0:
            raise ValueError("INFERENCE_CONCURRENCY must be positive")
        if self.inference_retries < 0:
            raise ValueError("INFERENCE_RETRIES cannot be negative")
        if self.run_history_size <= 0:
            raise ValueError("RUN_HISTORY_SIZE must be positive")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=build_database_url(),
            storage_dir=Path(os.getenv("STORAGE_DIR", str(BASE_DIR / "storage"))),
            inference_backend=os.getenv("INFERENCE_BACKEND", "http").strip().lower(),
            tf_serving_url=os.getenv("TF_SERVING_URL", "http://localhost:8501"),
            tf_serving_grpc_url=os.getenv("TF_SERVING_GRPC_URL", "localhost:8500"),
            model_name=os.getenv("TF_SERVING_MODEL_NAME", "leaf_disease"),
            model_version=_optional_int("TF_SERVING_MODEL_VERSION"),
            timeout_seconds=float(os.getenv("INFERENCE_TIMEOUT_SECONDS", "30")),
            image_size=int(os.getenv("INFERENCE_IMAGE_SIZE", "256")),
            concurrency_limit=int(os.getenv("INFERENCE_CONCURRENCY", "4")),
            inference_retries=int(os.getenv("INFERENCE_RETRIES", "2")),
            backoff_seconds=float(os.getenv("INFERENCE_BACKOFF_SECONDS", "0.1")),
            run_history_size=int(os.getenv("RUN_HISTORY_SIZE", "1000")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


__all__ = ["Settings", "build_database_url", "INFERENCE_BACKENDS"]
