from __future__ import annotations

from http import HTTPStatus


class ServiceError(Exception):
    """Base error raised by services; carries the HTTP status routes should answer with."""
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    status_code = HTTPStatus.BAD_REQUEST


class NotFoundError(ServiceError):
    status_code = HTTPStatus.NOT_FOUND


class UpstreamError(ServiceError):
    status_code = HTTPStatus.BAD_GATEWAY


class NotSupportedError(ServiceError):
    status_code = HTTPStatus.NOT_IMPLEMENTED


class WebhookDeliveryError(UpstreamError):
    def __init__(self, message: str, status_code_received=None):
        super().__init__(message)
        self.status_code_received = status_code_received


class AuthenticationError(ServiceError):
    status_code = HTTPStatus.UNAUTHORIZED


class PermissionDeniedError(ServiceError):
    status_code = HTTPStatus.FORBIDDEN
