"""Exception types for the audit queue."""


class AuditQueueError(Exception):
    """Base exception for all audit queue errors."""

    pass


class JobNotFoundError(AuditQueueError):
    """Raised when a queue entry is not found."""

    def __init__(self, job_id: str, message: str = None):
        self.job_id = job_id
        if message is None:
            message = f"Job {job_id} not found"
        super().__init__(message)


class AuditNotFoundError(AuditQueueError):
    """Raised when an audit record is not found."""

    def __init__(self, audit_id: str, message: str = None):
        self.audit_id = audit_id
        if message is None:
            message = f"Audit {audit_id} not found"
        super().__init__(message)


class AuthTokenError(AuditQueueError):
    """Raised when a shared secret is missing or invalid."""

    pass


class RemoteHttpError(AuditQueueError):
    """Raised when an HTTP request to a collaborator service fails."""

    def __init__(self, status_code: int, message: str, response_body: str = None):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(f"HTTP {status_code}: {message}")


class PermanentTargetError(AuditQueueError):
    """Raised when the audited site cannot be reached in a way retries won't fix.

    Covers unauthorized, forbidden and not-found responses from the target site
    as well as DNS failures and refused connections.
    """

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class EmailDeliveryError(AuditQueueError):
    """Raised when the report email could not be handed to the provider."""

    pass
