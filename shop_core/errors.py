# shop_core/errors.py
"""
Error taxonomy for the admin API.

Every failure a handler can report is an ``ApiError`` subclass carrying its
HTTP status. Anything else reaching the request boundary is logged and
answered with a generic 500.
"""
import traceback

from flask import jsonify, current_app
from flask_babel import lazy_gettext as _l
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    status_code = 500
    message = _l("An unexpected error occurred")

    def __init__(self, message=None, errors=None):
        super().__init__(str(message or self.message))
        if message is not None:
            self.message = message
        self.errors = errors

    def to_dict(self):
        payload = {'success': False, 'message': str(self.message)}
        if self.errors:
            payload['errors'] = self.errors
        return payload


class Unauthenticated(ApiError):
    status_code = 401
    message = _l("Access token required")


class InvalidToken(ApiError):
    status_code = 401
    message = _l("Invalid or expired token")


class InvalidCredentials(ApiError):
    status_code = 401
    message = _l("Invalid credentials")


class IncorrectPassword(ApiError):
    status_code = 422
    message = _l("Current password is incorrect")


class NotFound(ApiError):
    status_code = 404
    message = _l("Resource not found")


class ImageNotOwned(NotFound):
    message = _l("Image does not belong to this product")


class ValidationFailed(ApiError):
    status_code = 422
    message = _l("Validation error")


class Conflict(ApiError):
    status_code = 409
    message = _l("The product images were changed by another request, please retry")


class StorageFailure(ApiError):
    status_code = 500
    message = _l("File storage operation failed")


def json_response(data=None, message=None, status=200, **extra):
    payload = {'success': True}
    if data is not None:
        payload['data'] = data
    if message is not None:
        payload['message'] = str(message)
    payload.update(extra)
    return jsonify(payload), status


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(error):
        from . import db
        db.session.rollback()
        if error.status_code >= 500:
            current_app.logger.error("%s: %s", type(error).__name__, error, exc_info=error)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'success': False, 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected(error):
        from . import db
        db.session.rollback()
        current_app.logger.exception("Unhandled error: %s", error)
        payload = {'success': False, 'message': str(ApiError.message)}
        if current_app.debug:
            payload['error'] = str(error)
            payload['trace'] = traceback.format_exception(type(error), error, error.__traceback__)
        return jsonify(payload), 500
