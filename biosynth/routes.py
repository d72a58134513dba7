from typing import List, Optional

from fastapi import APIRouter, HTTPException, Request

from biosynth.config import API_PREFIX
from biosynth.errors import JobNotFoundError, ValidationError
from biosynth.schemas.job import CreateJobRequest, CreateJobResponse, JobStatus, JobType, JobView

router = APIRouter(prefix=API_PREFIX)


def _runtime(request: Request):
    return request.app.state.runtime


# --------------------------------------------------
# Create job
# --------------------------------------------------
@router.post("/jobs", status_code=201, response_model=CreateJobResponse)
def create_job(req: CreateJobRequest, request: Request):
    producer = _runtime(request).producer

    try:
        jobId = producer.enqueue(req.jobType, req.inputData, req.userId)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return CreateJobResponse(
        id=jobId,
        status=JobStatus.PENDING,
        jobType=JobType(req.jobType),
    )


# --------------------------------------------------
# User's jobs
# --------------------------------------------------
@router.get("/jobs", response_model=List[JobView])
def list_jobs(request: Request, userId: Optional[str] = None, limit: int = 50):
    repo = _runtime(request).repo
    limit = max(1, min(limit, 50))
    return [JobView.from_record(job) for job in repo.list_for_user(userId, limit=limit)]


# --------------------------------------------------
# Re-send jobs whose publish failed
# --------------------------------------------------
@router.post("/jobs/republish")
def republish_jobs(request: Request):
    return {"republished": _runtime(request).producer.republish_pending()}


# --------------------------------------------------
# Job status
# --------------------------------------------------
@router.get("/jobs/{jobId}", response_model=JobView)
def job_status(jobId: int, request: Request):
    try:
        job = _runtime(request).repo.require(jobId)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")

    return JobView.from_record(job)
