"""
Error taxonomy shared by the engine, services and HTTP routes.

Each error carries the HTTP status the routes answer with, so the API layer
maps errors without knowing about individual services.
"""


class GamificationError(Exception):
    """Base class for every error the engine surfaces to its callers."""
    status_code = 500

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self):
        body = {'error': type(self).__name__, 'message': self.message}
        if self.details:
            body['details'] = self.details
        return body


class ValidationError(GamificationError):
    """Malformed input, rejected before any mutation."""
    status_code = 400


class NotFoundError(GamificationError):
    """A referenced achievement, leaderboard, zone or bonus does not exist."""
    status_code = 404

    def __init__(self, resource, resource_id):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            f"{resource} '{resource_id}' not found",
            {'resource': resource, 'id': resource_id},
        )


class ConflictError(GamificationError):
    """The write collides with existing state (already earned, overlapping period)."""
    status_code = 409


class DependencyError(GamificationError):
    """Persistence or an external collaborator failed; the caller decides on retry."""
    status_code = 503

    def __init__(self, dependency, message):
        self.dependency = dependency
        super().__init__(f"{dependency} failure: {message}", {'dependency': dependency})
