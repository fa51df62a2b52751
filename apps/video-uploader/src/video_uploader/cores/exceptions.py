class UploadError(Exception):
    """Base class for errors surfaced to the uploading user"""


class ValidationError(UploadError):
    """The selected file was rejected before any network call"""


class TicketUnavailable(UploadError):
    """No ingestion URL could be obtained within the retry budget"""


class TransferError(UploadError):
    """The provider rejected or dropped the chunked transfer"""


class StreamError(Exception):
    """The status push stream failed; recovered by reconnecting or polling, never surfaced"""
