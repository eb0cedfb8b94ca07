"""Exceptions raised by the try-on services"""


class TryOnError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ImageValidationError(TryOnError):
    """An image was rejected before any remote call was made."""

    status_code = 400

    def __init__(self, message: str, reason: str = "invalid"):
        self.reason = reason
        super().__init__(message)


class StyleCodeError(TryOnError):
    status_code = 400


class LimitExceededError(TryOnError):
    status_code = 400


class NotFoundError(TryOnError):
    status_code = 404


class BatchNotReadyError(TryOnError):
    status_code = 400


class BatchRunningError(TryOnError):
    status_code = 409


class AuthError(TryOnError):
    status_code = 401

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class UpstreamError(TryOnError):
    """The remote image service failed or returned something unusable."""

    status_code = 500


class UploadFailedError(UpstreamError):
    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"Upload failed: {status} {body}")


class GenerationFailedError(UpstreamError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Generation failed: {reason}")


class ExtractionFailedError(UpstreamError):
    def __init__(self, message: str = "Could not extract image URL from Replicate output."):
        super().__init__(message)
