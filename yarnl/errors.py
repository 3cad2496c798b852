class BackupError(Exception):
    """Base class for backup/restore failures."""

    status = 500


class BackupNotFound(BackupError):
    status = 404


class InvalidArchive(BackupError):
    status = 400


class TransactionFailure(BackupError):
    """A database error during restore; the transaction was rolled back."""


class FileSyncFailure(BackupError):
    """File trees could not be replaced after the database was committed."""


class ArchiveIOError(BackupError):
    pass
