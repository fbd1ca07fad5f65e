import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .container import Services, build_services
from .errors import InferenceFailure, InvalidImage, NotFound, PlantDxError
from .models import schemas
from .models.entities import PredictionFilter
from .services import CreatePrediction

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# query value standing for "no plot" in prediction filters
UNASSIGNED_PLOT = "default"


def error_responses(*status_codes: int) -> dict:
    return {code: {"model": schemas.ErrorResponse} for code in status_codes}


def get_services(request: Request) -> Services:
    return request.app.state.services


@asynccontextmanager
async def lifespan(app: FastAPI):
    owned = getattr(app.state, "services", None) is None
    if owned:
        settings = Settings.from_env()
        logging.getLogger().setLevel(settings.log_level)
        app.state.services = build_services(settings)
    yield
    if owned:
        await app.state.services.close()


async def handle_plantdx_error(request: Request, exc: PlantDxError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.as_dict())


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(title="Plant Diagnosis API", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # restrict in prod
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(PlantDxError, handle_plantdx_error)

    @app.get("/health")
    async def health(services: Services = Depends(get_services)):
        try:
            await services.inference.health_check()
        except InferenceFailure as exc:
            logger.warning("Inference health check failed: %s", exc.message)
            return {"status": "degraded", "inference": exc.kind}
        return {"status": "ok", "inference": services.inference.name}

    @app.post(
        "/api/v1/images",
        response_model=schemas.ImageOut,
        status_code=201,
        responses=error_responses(400, 404, 500),
    )
    async def upload_image(
        user_id: str = Form(...),
        file: UploadFile = File(...),
        services: Services = Depends(get_services),
    ):
        content = await file.read()
        if not content:
            raise InvalidImage("Uploaded file is empty")
        image = await services.predictions.upload_image(user_id, file.filename or "upload", content)
        return schemas.ImageOut.model_validate(image)

    @app.post(
        "/api/v1/predictions",
        response_model=schemas.PredictionCreated,
        status_code=201,
        responses=error_responses(400, 404, 422, 500, 502, 503),
    )
    async def create_prediction(
        payload: schemas.CreatePredictionRequest,
        services: Services = Depends(get_services),
    ):
        outcome = await services.predictions.create(CreatePrediction(**payload.model_dump()))
        return schemas.PredictionCreated(
            run_id=outcome.run_id,
            prediction=schemas.PredictionOut.from_entity(outcome.prediction),
            recommendations=[
                schemas.RecommendationOut.model_validate(item) for item in outcome.recommendations
            ],
        )

    @app.get(
        "/api/v1/predictions",
        response_model=schemas.PaginatedPredictions,
        responses=error_responses(400, 500),
    )
    async def list_predictions(
        company_id: Optional[str] = None,
        users: Optional[List[str]] = Query(None),
        plots: Optional[List[str]] = Query(None),
        labels: Optional[List[str]] = Query(None),
        min_date: Optional[datetime] = None,
        max_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 16,
        services: Services = Depends(get_services),
    ):
        criteria = PredictionFilter(
            company_id=company_id,
            users=users,
            plots=[None if plot == UNASSIGNED_PLOT else plot for plot in plots] if plots else None,
            labels=labels,
            min_date=schemas.naive_utc(min_date),
            max_date=schemas.naive_utc(max_date),
        )
        total, page, limit, items = await services.predictions.filter(criteria, page, limit)
        return schemas.PaginatedPredictions(
            total=total,
            page=page,
            limit=limit,
            items=[schemas.PredictionOut.from_entity(item) for item in items],
        )

    @app.get(
        "/api/v1/predictions/{prediction_id}",
        response_model=schemas.PredictionOut,
        responses=error_responses(404, 500),
    )
    async def get_prediction(prediction_id: str, services: Services = Depends(get_services)):
        return schemas.PredictionOut.from_entity(await services.predictions.get(prediction_id))

    @app.delete(
        "/api/v1/predictions/{prediction_id}",
        response_model=schemas.PredictionOut,
        responses=error_responses(404, 500),
    )
    async def delete_prediction(prediction_id: str, services: Services = Depends(get_services)):
        return schemas.PredictionOut.from_entity(await services.predictions.delete(prediction_id))

    @app.post(
        "/api/v1/predictions/{prediction_id}/reclassify",
        response_model=schemas.PredictionOut,
        responses=error_responses(404, 422, 500),
    )
    async def reclassify_prediction(prediction_id: str, services: Services = Depends(get_services)):
        return schemas.PredictionOut.from_entity(
            await services.predictions.reclassify(prediction_id)
        )

    @app.get(
        "/api/v1/recommendations",
        response_model=List[schemas.RecommendationOut],
        responses=error_responses(500),
    )
    async def list_recommendations(
        severity: float = Query(..., ge=0.0, le=1.0),
        services: Services = Depends(get_services),
    ):
        matched = await services.predictions.recommendations_for(severity)
        return [schemas.RecommendationOut.model_validate(item) for item in matched]

    @app.get("/api/v1/runs/{run_id}", responses=error_responses(404))
    def get_run(run_id: str, services: Services = Depends(get_services)):
        try:
            record = services.runs.get(run_id)
        except KeyError:
            raise NotFound("Run", run_id)
        return record.as_dict()

    @app.post(
        "/api/v1/dashboard/summary",
        response_model=schemas.DashboardSummaryOut,
        responses=error_responses(400, 500),
    )
    def dashboard_summary(
        payload: schemas.DashboardFilterRequest,
        services: Services = Depends(get_services),
    ):
        summary = services.dashboard.summary(payload.to_filter(), payload.include_distribution)
        return schemas.DashboardSummaryOut.model_validate(summary)

    @app.get(
        "/api/v1/dashboard/filters",
        response_model=schemas.DashboardFiltersOut,
        responses=error_responses(500),
    )
    def dashboard_filters(company_id: str, services: Services = Depends(get_services)):
        return schemas.DashboardFiltersOut.model_validate(services.dashboard.filters(company_id))

    @app.get(
        "/api/v1/plots/detailed",
        response_model=schemas.PaginatedDetailedPlotOut,
        responses=error_responses(500),
    )
    def list_detailed_plots(
        company_id: str,
        labels: Optional[List[str]] = Query(None),
        page: int = 1,
        limit: int = 10,
        services: Services = Depends(get_services),
    ):
        result = services.plots.list_detailed(company_id, labels, page, limit)
        return schemas.PaginatedDetailedPlotOut.model_validate(result)

    @app.get(
        "/api/v1/plots/default/detailed",
        response_model=schemas.DetailedPlotOut,
        responses=error_responses(404, 500),
    )
    def default_plot_detailed(
        company_id: str,
        labels: Optional[List[str]] = Query(None),
        services: Services = Depends(get_services),
    ):
        return schemas.DetailedPlotOut.model_validate(
            services.plots.get_default_detailed(company_id, labels)
        )

    @app.get(
        "/api/v1/plots/{plot_id}/detailed",
        response_model=schemas.DetailedPlotOut,
        responses=error_responses(404, 500),
    )
    def plot_detailed(
        plot_id: str,
        labels: Optional[List[str]] = Query(None),
        services: Services = Depends(get_services),
    ):
        return schemas.DetailedPlotOut.model_validate(services.plots.get_detailed(plot_id, labels))

    @app.post(
        "/api/v1/plots/unassign",
        response_model=schemas.AssignedPlotOut,
        responses=error_responses(500),
    )
    def unassign_predictions(
        payload: schemas.AssignRequest, services: Services = Depends(get_services)
    ):
        return schemas.AssignedPlotOut.model_validate(
            services.plots.unassign(payload.prediction_ids)
        )

    @app.post(
        "/api/v1/plots/{plot_id}/assign",
        response_model=schemas.AssignedPlotOut,
        responses=error_responses(404, 500),
    )
    def assign_predictions(
        plot_id: str,
        payload: schemas.AssignRequest,
        services: Services = Depends(get_services),
    ):
        return schemas.AssignedPlotOut.model_validate(
            services.plots.assign(plot_id, payload.prediction_ids)
        )

    return app


app = create_app()
