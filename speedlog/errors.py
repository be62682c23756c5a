"""Exception hierarchy shared by the measurement, statistics and storage layers."""

from __future__ import annotations

from typing import Optional


class SpeedlogError(Exception):
    """Base class for all errors raised by the service."""


class MeasurementError(SpeedlogError):
    """A network phase could not produce a metric."""


class InvalidEndpointError(MeasurementError):
    def __init__(self, url: Optional[str] = None):
        self.url = url
        super().__init__("Invalid base URL.")


class BadResponseError(MeasurementError):
    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        message = "Invalid server response."
        if detail:
            message = f"Invalid server response: {detail}"
        super().__init__(message)


class HTTPStatusError(MeasurementError):
    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"HTTP error: {status_code}")


class UploadRejectedError(MeasurementError):
    def __init__(self):
        super().__init__("Upload failed: server returned ok=false.")


class MeasurementCancelled(MeasurementError):
    def __init__(self):
        super().__init__("Cancelled.")


class EmptyInputError(SpeedlogError, ValueError):
    """Raised when a statistic is requested over no values."""


class StorageError(SpeedlogError):
    """The log file could not be created, read or written."""


class CannotCreateDirectoryError(StorageError):
    def __init__(self, path=None):
        self.path = path
        super().__init__("Cannot create storage directory.")


class CannotWriteHeaderError(StorageError):
    def __init__(self, path=None):
        self.path = path
        super().__init__("Cannot write CSV header.")


class CannotReadFileError(StorageError):
    def __init__(self, path=None):
        self.path = path
        super().__init__("Cannot read CSV file.")


class CannotAppendRecordError(StorageError):
    def __init__(self, path=None):
        self.path = path
        super().__init__("Cannot append CSV record.")
