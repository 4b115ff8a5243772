"""
Error taxonomy for the chunked upload pipeline.

Routes translate these into HTTP statuses; services raise them and never
return error dictionaries.
"""


class UploadError(Exception):
    """Base class for upload pipeline errors"""
    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(UploadError):
    """Malformed or missing request parameters (client error, never retried)"""
    status_code = 400


class SessionNotFound(UploadError):
    """Unknown, expired or already finalized upload session"""
    status_code = 400


class IncompleteUpload(UploadError):
    """Complete was requested for a session with no recorded parts"""
    status_code = 400


class SessionBusy(UploadError):
    """A complete or abort is already running for this session"""
    status_code = 409


class StorageIntegrityError(UploadError):
    """Object store rejected the assembled part list; the session is kept"""
    status_code = 409


class StorageUnavailable(UploadError):
    """Object store call failed (network, auth or service error); safe to retry"""
    status_code = 502
