"""Exception classes shared by the API, store and worker."""

from typing import Optional

GENERIC_ERROR_MESSAGE = "An error occurred during processing"


class DesignPipelineError(Exception):
    """Base exception for the design pipeline."""

    def __init__(self, code: str, message: str, status_code: int = 500):
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ValidationError(DesignPipelineError):
    """Missing or invalid input at submission time. Nothing has been stored."""

    def __init__(self, message: str):
        super().__init__("VALIDATION_ERROR", message, status_code=400)


class UploadError(DesignPipelineError):
    """Writing an uploaded asset failed."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        self.job_id = job_id
        super().__init__("UPLOAD_ERROR", message, status_code=500)


class StageError(DesignPipelineError):
    """A pipeline stage failed. Terminal for the job, never retried."""

    def __init__(self, message: str, stage: Optional[str] = None):
        self.stage = stage
        super().__init__("STAGE_ERROR", message, status_code=500)


class NotificationDeliveryError(DesignPipelineError):
    """The change-notification transport dropped or failed to deliver an update."""

    def __init__(self, message: str):
        super().__init__("NOTIFICATION_DELIVERY_ERROR", message, status_code=503)


class JobNotFoundError(DesignPipelineError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__("NOT_FOUND", f"Design job '{job_id}' not found", status_code=404)


class JobConflictError(DesignPipelineError):
    """The job is already owned by a runner or is no longer pending."""

    def __init__(self, message: str):
        super().__init__("CONFLICT", message, status_code=409)


class InvalidTransitionError(DesignPipelineError):
    """A write would break the job/step state machine."""

    def __init__(self, message: str):
        super().__init__("INVALID_TRANSITION", message, status_code=409)
