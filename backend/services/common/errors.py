"""
Error taxonomy for the Masjid Finder backend
"""


class MasjidFinderError(Exception):
    """Base class for all service errors"""
    kind = "error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MasjidFinderError, ValueError):
    """Malformed input: bad time string, out-of-range value, missing field for a search mode"""
    kind = "validation_error"
    status_code = 400


class NotFoundError(MasjidFinderError):
    """A lookup by id found nothing"""
    kind = "not_found"
    status_code = 404


class AuthenticationError(MasjidFinderError):
    """No identity attached to a request that needs one"""
    kind = "unauthenticated"
    status_code = 401


class AuthorizationError(MasjidFinderError):
    """Identity is known but the role does not allow the operation"""
    kind = "forbidden"
    status_code = 403


class UpstreamError(MasjidFinderError):
    """The persistence collaborator failed (connection, timeout, driver error)"""
    kind = "upstream_error"
    status_code = 503
