"""Error taxonomy shared by the resolver, the store and the synchronizer.

Every failure a caller can see is one of four kinds; the HTTP layer maps
``status_code`` straight onto the response.
"""
from typing import Dict, Optional


class FisError(Exception):
    status_code = 500
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind}


class NotFound(FisError):
    status_code = 404
    kind = "not_found"


class ValidationError(FisError):
    """A field-level invariant was violated. ``errors`` maps field -> message."""

    status_code = 422
    kind = "validation_error"

    def __init__(self, errors: Dict[str, str], message: Optional[str] = None):
        super().__init__(message or "; ".join(f"{k}: {v}" for k, v in errors.items()))
        self.errors = dict(errors)

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["errors"] = self.errors
        return out


class Conflict(FisError):
    status_code = 409
    kind = "conflict"


class IntegrationError(FisError):
    kind = "integration_error"
