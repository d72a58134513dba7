# biosynth/errors.py


class BioSynthError(Exception):
    """Base class for job subsystem errors."""


class ValidationError(BioSynthError):
    """Unknown job type or malformed input, rejected before a record exists."""


class BrokerUnavailableError(BioSynthError):
    """The broker could not be reached or refused a publish."""


class ProcessorError(BioSynthError):
    """A processor failed; the job record is (or will be) marked failed."""

    def __init__(self, message: str, *, jobId=None, jobType=None):
        super().__init__(message)
        self.jobId = jobId
        self.jobType = jobType


class JobNotFoundError(BioSynthError):
    def __init__(self, jobId):
        super().__init__(f"Job {jobId} not found")
        self.jobId = jobId
