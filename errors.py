"""
errors.py – domain exceptions raised by the lifecycle and repository layers.

Each carries the HTTP status the API layer answers with, so route handlers
never translate them one by one.
"""


class MockTestError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(MockTestError):
    status_code = 404


class ValidationError(MockTestError):
    status_code = 400


class ConflictError(MockTestError):
    status_code = 409
