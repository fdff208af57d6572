"""Typed domain errors. The HTTP layer maps `status_code` onto the response."""


class RegistryError(Exception):
    status_code = 500

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra


class ValidationError(RegistryError):
    status_code = 400


class ForbiddenError(RegistryError):
    status_code = 403


class NotFoundError(RegistryError):
    status_code = 404


class ConflictError(RegistryError):
    status_code = 409
