from typing import Optional, Any


class SailSetuError(Exception):
    """
    Base exception for the SailSetu gateway.
    """
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500, details: Optional[Any] = None):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class ConfigurationMissingError(SailSetuError):
    """
    Raised when backend credentials are needed but have not been provided.
    """
    def __init__(self, message: str = "SailPoint configuration missing", details: Optional[Any] = None):
        super().__init__(message, code="CONFIGURATION_MISSING", status_code=503, details=details)


class FeatureNotFoundError(SailSetuError):
    """
    Raised when a feature id does not resolve to a registered feature.
    """
    def __init__(self, message: str = "Feature not found", details: Optional[Any] = None):
        super().__init__(message, code="NOT_FOUND", status_code=404, details=details)


class DuplicateFeatureError(SailSetuError):
    """
    Raised when a feature id is registered twice without replace=True.
    """
    def __init__(self, message: str = "Feature already registered", details: Optional[Any] = None):
        super().__init__(message, code="DUPLICATE_FEATURE", status_code=409, details=details)


class ValidationError(SailSetuError):
    """
    Raised when input validation fails.
    """
    def __init__(self, message: str = "Validation error", details: Optional[Any] = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=422, details=details)


class AuthenticationError(SailSetuError):
    """
    Raised when a caller (e.g. the WhatsApp bridge) fails authentication.
    """
    def __init__(self, message: str = "Authentication failed", details: Optional[Any] = None):
        super().__init__(message, code="AUTHENTICATION_FAILED", status_code=401, details=details)


class ExternalServiceError(SailSetuError):
    """
    Raised when an external service (SailPoint, Telegram, WhatsApp bridge) fails.
    """
    def __init__(self, message: str = "External service error", code: str = "EXTERNAL_SERVICE_ERROR", details: Optional[Any] = None):
        super().__init__(message, code=code, status_code=502, details=details)


class WorkflowLaunchError(ExternalServiceError):
    """
    Raised when SailPoint rejects or fails a workflow launch.
    """
    def __init__(self, message: str = "Workflow launch failed", details: Optional[Any] = None):
        super().__init__(message, code="WORKFLOW_LAUNCH_FAILED", details=details)


class TransportError(ExternalServiceError):
    """
    Raised when a chat transport cannot deliver or fetch a message.
    """
    def __init__(self, message: str = "Chat transport error", details: Optional[Any] = None):
        super().__init__(message, code="TRANSPORT_ERROR", details=details)
