"""
Domain Exceptions for the Permit Coordination Engine

Exception hierarchy for project workflow and conflict detection.
All exceptions inherit from BasePermitException.
"""


class BasePermitException(Exception):
    """Base exception for every business-logic error"""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        """Serialize to dict for API responses"""
        return {
            "error": {
                "code": self.__class__.__name__,
                "message": self.message,
                "details": self.details
            }
        }


# =============================================================================
# Validation
# =============================================================================

class InvalidTransition(BasePermitException):
    """Requested state change is not in the transition table"""

    def __init__(self, project_id: str, from_state: str, to_state: str, allowed: list):
        super().__init__(
            message=f"Invalid state transition from '{from_state}' to '{to_state}'",
            details={
                "project_id": project_id,
                "from_state": from_state,
                "to_state": to_state,
                "allowed": allowed
            }
        )


class InvalidGeometry(BasePermitException):
    """Malformed, empty or unsupported geometry"""

    def __init__(self, reason: str, geometry_type: str = None):
        super().__init__(
            message=f"Invalid geometry: {reason}",
            details={
                "reason": reason,
                "geometry_type": geometry_type
            }
        )


class InvalidDateRange(BasePermitException):
    """End date precedes start date"""

    def __init__(self, start: str, end: str):
        super().__init__(
            message="End date must not be before start date",
            details={
                "start": start,
                "end": end
            }
        )


class InvalidMoratorium(BasePermitException):
    """Moratorium validity interval violates policy"""

    def __init__(self, reason: str, valid_from: str, valid_to: str):
        super().__init__(
            message=f"Invalid moratorium: {reason}",
            details={
                "valid_from": valid_from,
                "valid_to": valid_to
            }
        )


# =============================================================================
# Lookup / ownership
# =============================================================================

class ProjectNotFound(BasePermitException):

    def __init__(self, project_id: str):
        super().__init__(
            message="Project does not exist",
            details={"project_id": project_id}
        )


class ProjectNotEditable(BasePermitException):
    """Projects in a final state can no longer be changed"""

    def __init__(self, project_id: str, state: str):
        super().__init__(
            message=f"Project in state '{state}' can no longer be modified",
            details={
                "project_id": project_id,
                "state": state
            }
        )


class MoratoriumNotFound(BasePermitException):

    def __init__(self, moratorium_id: str):
        super().__init__(
            message="Moratorium does not exist",
            details={"moratorium_id": moratorium_id}
        )


class MoratoriumNotEditable(BasePermitException):
    """Moratorium can only be changed by its creator"""

    def __init__(self, moratorium_id: str, actor_id: str):
        super().__init__(
            message="Moratorium can only be modified by its creator",
            details={
                "moratorium_id": moratorium_id,
                "actor_id": actor_id
            }
        )


# =============================================================================
# Conflict detection
# =============================================================================

class ConflictDetectionFailed(BasePermitException):
    """
    Underlying store or query failure.

    Never to be read as "no conflict".
    """

    def __init__(self, message: str, cause: BaseException = None, details: dict = None):
        self.cause = cause
        details = dict(details or {})
        if cause is not None:
            details.setdefault("cause", f"{type(cause).__name__}: {cause}")
        super().__init__(message=message, details=details)


class ConflictDetectionTimeout(ConflictDetectionFailed):
    """Detection did not complete within the allotted time"""

    def __init__(self, timeout_seconds: float, details: dict = None):
        details = dict(details or {})
        details["timeout_seconds"] = timeout_seconds
        super().__init__(
            message=f"Conflict detection timed out after {timeout_seconds}s",
            details=details
        )


class PartialBatchFailure(BasePermitException):
    """One or more projects in a batch failed"""

    def __init__(self, failures: dict):
        super().__init__(
            message=f"{len(failures)} project(s) failed conflict re-evaluation",
            details={"failures": failures}
        )


# =============================================================================
# HTTP Status Mapping
# =============================================================================

EXCEPTION_TO_STATUS = {
    InvalidTransition: 409,
    InvalidGeometry: 422,
    InvalidDateRange: 422,
    InvalidMoratorium: 422,
    ProjectNotFound: 404,
    ProjectNotEditable: 409,
    MoratoriumNotFound: 404,
    MoratoriumNotEditable: 403,
    ConflictDetectionTimeout: 504,
    ConflictDetectionFailed: 503,
    PartialBatchFailure: 207,
}
