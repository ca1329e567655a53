"""Error taxonomy for entitlement and landing configuration resolution.

NotFoundError and ConfigurationError abort resolution and reach the caller.
PlanViolationError is recoverable: the editor shows an upgrade prompt.
ValidationError carries every invalid field at once.
"""
from typing import Any, Dict, Optional


class LandingEngineError(Exception):
    """Base class; carries an error code and HTTP status for the API layer."""
    error_code = "LANDING_ENGINE_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "error_code": self.error_code, **self.details}


class NotFoundError(LandingEngineError):
    """Unknown account or template."""
    error_code = "NOT_FOUND"
    status_code = 404


class ConfigurationError(LandingEngineError):
    """Catalog inconsistency: unknown plan id, plan without usable templates."""
    error_code = "CONFIGURATION_ERROR"
    status_code = 503


class PlanViolationError(LandingEngineError):
    """Write rejected because the current plan does not allow it."""
    error_code = "PLAN_NOT_ELIGIBLE"
    status_code = 403

    def __init__(
        self,
        message: str,
        feature: Optional[str] = None,
        current_plan: Optional[str] = None,
        required_plan: Optional[str] = None,
        upgrade_info: Optional[Dict[str, Any]] = None,
    ):
        self.feature = feature
        self.current_plan = current_plan
        self.required_plan = required_plan
        details = {
            "upgrade_required": True,
            "feature": feature,
            "current_plan": current_plan,
            "required_plan": required_plan,
            **(upgrade_info or {}),
        }
        super().__init__(message, details)


class ValidationError(LandingEngineError):
    """One or more fields failed validation; field_errors maps field -> message."""
    error_code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(self, field_errors: Dict[str, str], message: Optional[str] = None):
        self.field_errors = dict(field_errors)
        super().__init__(
            message or f"{len(self.field_errors)} invalid field(s)",
            {"field_errors": self.field_errors},
        )


class PermissionDeniedError(LandingEngineError):
    """Actor lacks the role required for an administrative write."""
    error_code = "FORBIDDEN"
    status_code = 403
