"""Typed failures raised by the studio.

Every error carries a human-readable ``message`` that is shown verbatim in the
error banner and an HTTP ``status_code`` used by the API layer. ``kind`` is the
stable identifier the front-end switches on.
"""


class StudioError(Exception):
    kind = "Unknown"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnsupportedFormat(StudioError):
    kind = "UnsupportedFormat"
    status_code = 415


class FileTooLarge(StudioError):
    kind = "FileTooLarge"
    status_code = 413


class CropRegionEmpty(StudioError):
    kind = "CropRegionEmpty"
    status_code = 422


class InvalidCropRegion(StudioError):
    kind = "InvalidCropRegion"
    status_code = 422


class ContextUnavailable(StudioError):
    kind = "ContextUnavailable"
    status_code = 500


class EncodeFailed(StudioError):
    kind = "EncodeFailed"
    status_code = 500


class NoImageReturned(StudioError):
    kind = "NoImageReturned"
    status_code = 502


class RateLimited(StudioError):
    kind = "RateLimited"
    status_code = 429


class InvalidCredential(StudioError):
    kind = "InvalidCredential"
    status_code = 502


class UpstreamError(StudioError):
    kind = "Unknown"
    status_code = 502


class MissingInput(StudioError):
    kind = "MissingInput"
    status_code = 400


class Busy(StudioError):
    kind = "Busy"
    status_code = 409


class NoCropSession(StudioError):
    kind = "NoCropSession"
    status_code = 409


class MissingCredential(RuntimeError):
    """Raised at startup when GEMINI_API_KEY is absent."""
