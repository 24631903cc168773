"""Error taxonomy shared by the analyzers and the API layer."""


class VerificationError(Exception):
    """Base class for every error the pipeline raises to its caller."""
    status_code = 500
    error_code = "VERIFICATION_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(VerificationError):
    status_code = 400
    error_code = "INVALID_INPUT"


class OwnershipViolation(VerificationError):
    status_code = 403
    error_code = "OWNERSHIP_VIOLATION"


class NotFound(VerificationError):
    status_code = 404
    error_code = "NOT_FOUND"


class InvalidStateTransition(VerificationError):
    status_code = 409
    error_code = "INVALID_STATE_TRANSITION"


class PreconditionFailed(VerificationError):
    status_code = 422
    error_code = "PRECONDITION_FAILED"


class NoEnrolledSignature(PreconditionFailed):
    error_code = "NO_ENROLLED_SIGNATURE"


class CalibrationTooShort(PreconditionFailed):
    error_code = "CALIBRATION_TOO_SHORT"


class AttemptLimitExceeded(VerificationError):
    status_code = 429
    error_code = "ATTEMPT_LIMIT_EXCEEDED"
