"""Error taxonomy shared by the data layer, the workflow guards and the API."""


class PortalError(Exception):
    status_code = 500
    code = 'portal_error'

    def __init__(self, message=None, fields=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.fields = fields or {}

    def to_dict(self):
        payload = {'error': self.code, 'message': self.message}
        if self.fields:
            payload['fields'] = dict(self.fields)
        return payload


class AuthenticationRequired(PortalError):
    status_code = 401
    code = 'authentication_required'


class Unauthorized(PortalError):
    status_code = 403
    code = 'unauthorized'


class ValidationFailed(PortalError):
    status_code = 400
    code = 'validation_failed'


class NotFound(PortalError):
    status_code = 404
    code = 'not_found'


class InvalidTransition(PortalError):
    status_code = 409
    code = 'invalid_transition'


class ConcurrentUpdate(PortalError):
    status_code = 409
    code = 'concurrent_update'


class StoreUnavailable(PortalError):
    status_code = 503
    code = 'store_unavailable'


class ProfileFetchError(StoreUnavailable):
    code = 'profile_fetch_failed'
