"""Service layer utilities."""
from .classifier import classify_label, match_recommendations  # noqa: F401
from .dashboard import DashboardAggregator  # noqa: F401
from .plots import PlotStatsAssembler  # noqa: F401
from .prediction_service import (  # noqa: F401
    CreatePrediction,
    PipelineOutcome,
    PredictionPipeline,
    PredictionService,
)
