"""
Error taxonomy for the LMS service layer.

Every service call raises one of these; the HTTP layer turns them into
responses using ``status_code``.
"""


class LMSError(Exception):
    status_code = 400

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail or self.__class__.__name__


class NotFound(LMSError):
    status_code = 404


class Conflict(LMSError):
    status_code = 409


class InvalidCredentials(LMSError):
    status_code = 401


class Unauthorized(LMSError):
    status_code = 403


class InvalidInput(LMSError):
    status_code = 400
