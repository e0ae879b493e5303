"""Domain exceptions raised by the import pipeline."""

from __future__ import annotations


class ImportPipelineError(Exception):
    """Base class for import pipeline errors."""


class SessionNotFoundError(ImportPipelineError, KeyError):
    """Raised when a session id is unknown to the store."""

    def __init__(self, session_id: str):
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Import session {self.session_id} not found"


class SessionExistsError(ImportPipelineError):
    """Raised when creating a session whose id is already registered."""


class SessionStateError(ImportPipelineError, ValueError):
    """Raised when a control call does not fit the session's current status."""


class RecordValidationError(ImportPipelineError, ValueError):
    """A row failed a field-level rule; the message names the rule."""


class CsvFormatError(ImportPipelineError, ValueError):
    """Uploaded file is not a usable CSV (encoding, headers, parsing)."""


class SessionBusyError(ImportPipelineError):
    """Raised when another driver holds the session's lease."""

    def __init__(self, session_id: str):
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Import session {self.session_id} is owned by another driver"
