"""HTTP surface for operators and enqueuing collaborators.

All routes live under ``/notifications``. When an admin token is configured
every request must carry it in the ``X-Admin-Token`` header.
"""

import hmac
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from coralqueue import __version__
from coralqueue.domain.models import NotificationType
from coralqueue.logging import get_logger
from coralqueue.persistence.exceptions import PersistenceError, StoreUnavailable
from coralqueue.queue.batcher import Batcher

from .service import DEFAULT_CLEANUP_DAYS, QueueAdmin

logger = get_logger(__name__, component="api")

router = APIRouter(prefix="/notifications", tags=["notifications"])


class EnqueueRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: NotificationType
    payload: Dict[str, Any] = Field(default_factory=dict)
    max_attempts: Optional[int] = Field(None, alias="maxAttempts", ge=1, le=50)
    batch_window: Optional[int] = Field(None, alias="batchWindow", ge=0, le=86400)


class SendTestRequest(BaseModel):
    recipient: Optional[str] = None


def get_admin(request: Request) -> QueueAdmin:
    return request.app.state.admin


def get_batcher(request: Request) -> Batcher:
    return request.app.state.batcher


def require_admin_token(
    request: Request, x_admin_token: Optional[str] = Header(None)
) -> None:
    expected = request.app.state.api_token
    if not expected:
        return
    if x_admin_token is None or not hmac.compare_digest(
        x_admin_token.encode("utf-8"), expected.encode("utf-8")
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")


@router.post("/test", status_code=status.HTTP_202_ACCEPTED)
def send_test(
    body: Optional[SendTestRequest] = None,
    admin: QueueAdmin = Depends(get_admin),
) -> Dict[str, Any]:
    job = admin.send_test(recipient=body.recipient if body else None)
    return {"message": "Test notification queued", "id": job.id}


@router.get("/queue/status")
def queue_status(admin: QueueAdmin = Depends(get_admin)) -> Dict[str, Any]:
    return admin.queue_status().to_dict()


@router.post("/queue/retry")
def retry_jobs(
    body: Dict[str, Any] = Body(...),
    admin: QueueAdmin = Depends(get_admin),
) -> Dict[str, Any]:
    ids = body.get("ids")
    if not isinstance(ids, list):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request format")

    reset = admin.retry(ids)
    return {"message": "Notifications queued for retry", "count": reset}


@router.delete("/queue/cleanup")
def cleanup_jobs(
    days: str = Query(str(DEFAULT_CLEANUP_DAYS)),
    admin: QueueAdmin = Depends(get_admin),
) -> Dict[str, Any]:
    try:
        days_num = int(days)
    except ValueError:
        days_num = 0
    if days_num < 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid days parameter")

    deleted = admin.cleanup(days_num)
    return {
        "message": f"Cleaned up {deleted} finished notifications older than {days_num} days",
        "count": deleted,
    }


@router.delete("/queue/all")
def delete_all_jobs(admin: QueueAdmin = Depends(get_admin)) -> Dict[str, Any]:
    deleted = admin.delete_all()
    return {"message": "Successfully cleared all notifications", "count": deleted}


@router.post("/queue/enqueue", status_code=status.HTTP_201_CREATED)
def enqueue_job(
    body: EnqueueRequest,
    batcher: Batcher = Depends(get_batcher),
) -> Dict[str, Any]:
    job = batcher.enqueue(
        body.type,
        body.payload,
        max_attempts=body.max_attempts,
        batch_window=body.batch_window,
    )
    return {
        "id": job.id,
        "type": job.type.value,
        "status": job.status.value,
        "correlationKey": job.correlation_key,
        "nextAttempt": job.next_attempt.isoformat() if job.next_attempt else None,
    }


def _store_unavailable(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.error(
        f"Job store unavailable: {exc}",
        extra={"event": "api.store_unavailable", "path": request.url.path},
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Notification store unavailable"},
    )


def _persistence_error(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error(
        f"Job store error: {exc}",
        extra={"event": "api.store_error", "path": request.url.path},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Notification store error"},
    )


def _value_error(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


def create_app(
    admin: QueueAdmin, batcher: Batcher, api_token: Optional[str] = None
) -> FastAPI:
    """Build the FastAPI application serving the notification routes."""
    app = FastAPI(title="Coral notification queue", version=__version__)
    app.state.admin = admin
    app.state.batcher = batcher
    app.state.api_token = api_token

    app.include_router(router, dependencies=[Depends(require_admin_token)])

    # Most specific first: StoreUnavailable is a PersistenceError
    app.add_exception_handler(StoreUnavailable, _store_unavailable)
    app.add_exception_handler(PersistenceError, _persistence_error)
    app.add_exception_handler(ValueError, _value_error)

    return app
