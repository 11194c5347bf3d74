"""
Error taxonomy for the API.

Each kind is an HTTPException so services can raise it the same way route
functions raise plain HTTPException. main.py renders every one of them as
``{"message": ...}``.
"""

from fastapi import HTTPException


class BadRequest(HTTPException):
    def __init__(self, message: str = "Bad request"):
        super().__init__(status_code=400, detail=message)


class Unauthorized(HTTPException):
    def __init__(self, message: str = "Not authorized, no token"):
        super().__init__(status_code=401, detail=message)


class Forbidden(HTTPException):
    def __init__(self, message: str = "Not authorized"):
        super().__init__(status_code=403, detail=message)


class NotFound(HTTPException):
    def __init__(self, message: str = "Not found"):
        super().__init__(status_code=404, detail=message)


class ServerError(HTTPException):
    def __init__(self, message: str = "Server error"):
        super().__init__(status_code=500, detail=message)
