"""
Report Exceptions

Error taxonomy for the report subsystem. Every error is raised synchronously
to the caller of the failing operation; none are logged and swallowed.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

from typing import Iterable, List, Optional


class ReportError(Exception):
    """Base exception for report errors"""
    pass


class AuthorizationError(ReportError):
    """Raised when the caller lacks the privilege an operation requires"""

    def __init__(self, privilege: str, username: Optional[str] = None):
        self.privilege = privilege
        self.username = username
        who = f"User '{username}'" if username else "Caller"
        super().__init__(f"{who} lacks required privilege: {privilege}")


class MissingParameterError(ReportError):
    """Raised when required schema parameters are unbound in the evaluation context"""

    def __init__(self, missing: Iterable[str]):
        self.missing: List[str] = list(missing)
        super().__init__(f"Missing required parameter(s): {', '.join(self.missing)}")


class MaterializationError(ReportError):
    """Raised when serialized schema text cannot be turned into a ReportSchema"""
    pass


class EvaluationError(ReportError):
    """Raised when a data set fails to evaluate; aborts the whole evaluation"""

    def __init__(self, data_set_name: str, cause: BaseException):
        self.data_set_name = data_set_name
        self.cause = cause
        super().__init__(f"Data set '{data_set_name}' failed to evaluate: {cause}")


class UnknownRendererError(ReportError):
    """Raised when a renderer name cannot be resolved to a constructible renderer"""

    def __init__(self, name: str, reason: Optional[str] = None):
        self.name = name
        message = f"Unknown report renderer: {name}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
