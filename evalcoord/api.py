"""HTTP routes for triggering and inspecting evaluation workflows."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, FastAPI, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .errors import DuplicateWorkflowError
from .orchestrator import WorkflowOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


def _orchestrator(request: Request) -> WorkflowOrchestrator:
    return request.app.state.orchestrator


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


@router.post("/evaluate/{subject_id}", status_code=status.HTTP_202_ACCEPTED)
async def evaluate(subject_id: str, request: Request):
    if not _is_uuid(subject_id):
        logger.warning(f"Invalid subject_id format: {subject_id}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid subject_id format. Must be a valid UUID."},
        )

    try:
        result = await _orchestrator(request).initiate_evaluation(
            subject_id, correlation_id=request.state.correlation_id
        )
    except DuplicateWorkflowError as exc:
        logger.info(f"Rejected duplicate evaluation for subject_id={subject_id}")
        return JSONResponse(
            status_code=422,
            content={"error": str(exc)},
        )

    logger.info(
        f"Evaluation workflow {result['workflow_id']} initiated "
        f"correlation_id={result['correlation_id']}"
    )
    return result


@router.get("/status/{subject_id}")
async def get_status(subject_id: str, request: Request):
    workflow_status = await _orchestrator(request).get_workflow_status(subject_id)
    if workflow_status is None:
        logger.info(f"Workflow not found for subject_id={subject_id}")
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": "Workflow not found for this subject_id"},
        )
    return jsonable_encoder(workflow_status)


@router.get("/metrics")
def metrics(request: Request):
    return _orchestrator(request).metrics.snapshot()


@router.get("/health")
def health():
    return {"status": "healthy"}


@router.get("/health/live")
def live():
    return {"status": "alive"}


@router.get("/health/ready")
def ready():
    return {"status": "ready"}


def create_app(orchestrator: WorkflowOrchestrator) -> FastAPI:
    app = FastAPI(title="Evaluation Coordinator", version="0.1.0")
    app.state.orchestrator = orchestrator
    app.include_router(router)

    @app.middleware("http")
    async def correlation_id_header(request: Request, call_next):
        correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        resp: Response = await call_next(request)
        resp.headers.setdefault("X-Correlation-ID", correlation_id)
        return resp

    @app.exception_handler(Exception)
    async def default_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error"},
        )

    return app
