import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from disclosure_api.core.auth import Principal
from disclosure_api.core.security import get_principal
from disclosure_api.schemas.jobs import (
    ClaimRequest,
    EnqueueRequest,
    JobOut,
    JobStatus,
    ReapResponse,
    ResultRequest,
    ReviewRequest,
)
from disclosure_api.services.repository import (
    RepositoryConflictError,
    RepositoryError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _require(principal: Principal, scopes: set[str]) -> None:
    try:
        principal.require_scopes(scopes)
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


def _http_error(exc: RepositoryError) -> HTTPException:
    if isinstance(exc, RepositoryNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, RepositoryConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, RepositoryForbiddenError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, RepositoryValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, RepositoryUnavailableError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("", response_model=JobOut, status_code=status.HTTP_202_ACCEPTED)
async def enqueue_job(
    payload: EnqueueRequest,
    principal: Principal = Depends(get_principal),
    repository=Depends(get_repository),
) -> JobOut:
    _require(principal, {"jobs:write"})
    try:
        job = await repository.enqueue_job(
            kind=payload.kind,
            data=payload.data,
            max_attempts=payload.max_attempts,
            dedupe_key=payload.dedupe_key,
        )
    except RepositoryError as exc:
        raise _http_error(exc) from exc
    logger.info("enqueued job id=%s kind=%s by=%s", job["id"], job["kind"], principal.subject)
    return JobOut(**job)


@router.get("", response_model=list[JobOut])
async def get_jobs(
    principal: Principal = Depends(get_principal),
    repository=Depends(get_repository),
    limit: int = Query(default=20, ge=1, le=100),
    job_status: JobStatus | None = Query(default=None, alias="status"),
) -> list[JobOut]:
    _require(principal, {"jobs:read"})
    try:
        if job_status is None:
            rows = await repository.list_queued_jobs(limit)
        else:
            rows = await repository.list_jobs(status=job_status, limit=limit)
    except RepositoryError as exc:
        raise _http_error(exc) from exc
    return [JobOut(**row) for row in rows]


@router.post("/reap-expired", response_model=ReapResponse)
async def reap_expired_jobs(
    principal: Principal = Depends(get_principal),
    repository=Depends(get_repository),
    limit: int = Query(default=100, ge=1, le=1000),
) -> ReapResponse:
    _require(principal, {"jobs:write"})
    try:
        reaped = await repository.requeue_expired_claimed_jobs(limit)
    except RepositoryError as exc:
        raise _http_error(exc) from exc
    return ReapResponse(
        requeued=sum(1 for row in reaped if row["status"] == "queued"),
        dead_lettered=[JobOut(**row) for row in reaped if row["status"] == "dead_letter"],
    )


@router.get("/{job_id}", response_model=JobOut)
async def get_job(
    job_id: str,
    principal: Principal = Depends(get_principal),
    repository=Depends(get_repository),
) -> JobOut:
    _require(principal, {"jobs:read"})
    try:
        job = await repository.get_job(job_id)
    except RepositoryError as exc:
        raise _http_error(exc) from exc
    return JobOut(**job)


@router.post("/{job_id}/claim", response_model=JobOut)
async def claim_job(
    job_id: str,
    payload: ClaimRequest,
    principal: Principal = Depends(get_principal),
    repository=Depends(get_repository),
) -> JobOut:
    _require(principal, {"jobs:write"})
    try:
        job = await repository.claim_job(job_id, principal.subject, payload.lease_seconds)
    except RepositoryError as exc:
        raise _http_error(exc) from exc
    return JobOut(**job)


@router.post("/{job_id}/result", response_model=JobOut)
async def submit_job_result(
    job_id: str,
    payload: ResultRequest,
    principal: Principal = Depends(get_principal),
    repository=Depends(get_repository),
) -> JobOut:
    _require(principal, {"jobs:write"})
    try:
        job = await repository.submit_job_result(
            job_id,
            principal.subject,
            payload.status,
            payload.result_json,
            payload.error_json,
            payload.logs,
        )
    except RepositoryError as exc:
        raise _http_error(exc) from exc
    if job["status"] == "dead_letter":
        logger.warning("job dead-lettered id=%s kind=%s attempts=%s", job["id"], job["kind"], job["attempt"])
    return JobOut(**job)


@router.post("/{job_id}/approve", response_model=JobOut)
async def approve_job(
    job_id: str,
    principal: Principal = Depends(get_principal),
    repository=Depends(get_repository),
) -> JobOut:
    _require(principal, {"review:write"})
    try:
        job = await repository.approve_job(job_id, principal.subject)
    except RepositoryError as exc:
        raise _http_error(exc) from exc
    logger.info("job approved id=%s kind=%s reviewer=%s", job["id"], job["kind"], principal.subject)
    return JobOut(**job)


@router.post("/{job_id}/reject", response_model=JobOut)
async def reject_job(
    job_id: str,
    payload: ReviewRequest,
    principal: Principal = Depends(get_principal),
    repository=Depends(get_repository),
) -> JobOut:
    _require(principal, {"review:write"})
    try:
        job = await repository.reject_job(job_id, principal.subject, payload.reason)
    except RepositoryError as exc:
        raise _http_error(exc) from exc
    logger.info("job rejected id=%s kind=%s reviewer=%s", job["id"], job["kind"], principal.subject)
    return JobOut(**job)
