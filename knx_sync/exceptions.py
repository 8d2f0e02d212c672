"""Exception hierarchy for the KNX state bridge.

Import-time errors abort the whole import. Runtime errors (binding, transmit,
store write) are logged by the sync engine and never escape its callbacks.
"""


class KnxSyncError(Exception):
    """Base class for all bridge errors"""
    pass


class ImportUnavailable(KnxSyncError):
    """Raised when the project file parser library cannot be loaded"""
    pass


class NoProjectConfigured(KnxSyncError):
    """Raised when an import is requested without a project file name"""
    pass


class FileNotFound(KnxSyncError):
    """Raised when the project file is missing from the file store"""

    def __init__(self, file_name: str, location: str = ""):
        self.file_name = file_name
        self.location = location
        where = f"{location}/{file_name}" if location else file_name
        super().__init__(f"Could not read ETS project from file store: {where}")


class ParseFailure(KnxSyncError):
    """Raised when a project JSON dump does not have a known structure"""
    pass


class BindingFailure(KnxSyncError):
    """Raised when a datapoint cannot be created for a mapping record"""
    pass


class TxFailure(KnxSyncError):
    """Raised when a queued bus job fails"""
    pass


class StoreWriteFailure(KnxSyncError):
    """Raised when a value cannot be written to the object store"""
    pass


class ConfigValidationError(KnxSyncError):
    """Raised when configuration validation fails"""
    pass
