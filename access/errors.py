# LibraryGate - access-control errors
from fastapi import HTTPException


class AccessControlError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_http(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.detail)


class BadRequestError(AccessControlError):
    status_code = 400


class ForbiddenError(AccessControlError):
    status_code = 403


class NotFoundError(AccessControlError):
    status_code = 404
