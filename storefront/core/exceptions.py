from fastapi import HTTPException, status


class UnauthorizedError(HTTPException):
    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class ForbiddenError(HTTPException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class InvalidRequestError(HTTPException):
    """Malformed or out-of-range input (bad enum, missing reason, below minimum)."""

    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ConflictError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class UpstreamError(HTTPException):
    """A payment processor or procedure failure. The detail is caller-safe."""

    def __init__(self, detail: str = "Upstream service error", status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR):
        super().__init__(status_code=status_code, detail=detail)


class RateLimitedError(HTTPException):
    def __init__(self, detail: str, wait_seconds: int):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=detail,
            headers={"Retry-After": str(wait_seconds)},
        )
        self.wait_seconds = wait_seconds


class PaymentNotCompletedError(HTTPException):
    def __init__(self, detail: str = "Payment not completed"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
