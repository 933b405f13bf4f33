"""
Error taxonomy shared by the catalog, the planner and the HTTP layer.

Every error carries a stable ``kind`` (reported to clients as the OGC
exception ``code``) and the HTTP status it maps to.
"""


class FeatureServError(Exception):
    """Base class for all errors raised by the feature server core."""

    kind = "Internal"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {"code": self.kind, "description": self.message}


class InvalidRequest(FeatureServError):
    kind = "InvalidRequest"
    status_code = 400


class FilterSyntax(InvalidRequest):
    kind = "FilterSyntax"


class UnknownProperty(InvalidRequest):
    kind = "UnknownProperty"


class InvalidBbox(InvalidRequest):
    kind = "InvalidBbox"


class UnsupportedCRS(InvalidRequest):
    kind = "UnsupportedCRS"


class TypeMismatch(InvalidRequest):
    kind = "TypeMismatch"


class InvalidIdentifier(InvalidRequest):
    kind = "InvalidIdentifier"


class OutOfRange(InvalidRequest):
    kind = "OutOfRange"


class NoPrimaryKey(InvalidRequest):
    # Only raised for the single-item endpoint, which reports it as absent.
    kind = "NoPrimaryKey"
    status_code = 404


class NotFound(FeatureServError):
    kind = "NotFound"
    status_code = 404


class Upstream(FeatureServError):
    """Database driver or spatial extension failure; keeps the driver text."""

    kind = "Upstream"
    status_code = 500

    def __init__(self, message: str = "", cause: Exception = None):
        if cause is not None and not message:
            message = str(cause)
        super().__init__(message)
        self.cause = cause


class Internal(FeatureServError):
    kind = "Internal"
    status_code = 500
