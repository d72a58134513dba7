# biosynth/schemas/job.py
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class JobType(str, Enum):
    GENERATE = "generate"
    SYNTHESIZE = "synthesize"
    ANALYZE = "analyze"
    IMPROVE = "improve"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobRecord(BaseModel):
    """
    Persisted job state.

    resultData is set only when completed, errorMessage only when failed.
    """

    id: int
    userId: Optional[str] = None
    type: JobType
    status: JobStatus = JobStatus.PENDING

    inputData: Dict[str, Any] = Field(default_factory=dict)
    resultData: Optional[Any] = None
    errorMessage: Optional[str] = None

    attempts: int = 0
    heartbeatAt: Optional[str] = None

    createdAt: str
    updatedAt: str
    completedAt: Optional[str] = None


class BrokerMessage(BaseModel):
    """Payload carried on the queue for one job."""

    jobId: int
    userId: Optional[str] = None
    jobType: JobType
    inputData: Dict[str, Any] = Field(default_factory=dict)


# -------------------------
# HTTP
# -------------------------
class CreateJobRequest(BaseModel):
    jobType: str = Field(..., description="generate | synthesize | analyze | improve")
    inputData: Dict[str, Any] = Field(default_factory=dict)
    userId: Optional[str] = Field(None, description="Authenticated user ID")


class CreateJobResponse(BaseModel):
    id: int
    status: JobStatus
    jobType: JobType


class JobView(BaseModel):
    id: int
    jobType: JobType
    status: JobStatus
    inputData: Dict[str, Any]

    # Present only when job is done
    resultData: Optional[Any] = None
    errorMessage: Optional[str] = None

    createdAt: str
    updatedAt: str
    completedAt: Optional[str] = None

    @classmethod
    def from_record(cls, record: JobRecord) -> "JobView":
        return cls(
            id=record.id,
            jobType=record.type,
            status=record.status,
            inputData=record.inputData,
            resultData=record.resultData,
            errorMessage=record.errorMessage,
            createdAt=record.createdAt,
            updatedAt=record.updatedAt,
            completedAt=record.completedAt,
        )
