"""
Exception hierarchy for the quiz widget.
"""


class QuizWidgetError(Exception):
    """Base exception for quiz widget errors."""
    pass


class InvalidQuestionDataError(QuizWidgetError):
    """Raised when the question dataset cannot be used to run a quiz."""
    pass


class ConfigError(QuizWidgetError):
    """Raised when a configuration file cannot be read or parsed."""
    pass


class AttemptStoreError(QuizWidgetError):
    """Base exception for attempt storage errors."""
    pass


class StorageUnavailableError(AttemptStoreError):
    """Raised when the backing store cannot be opened or written."""
    pass


class DuplicateKeyError(AttemptStoreError):
    """Raised when an attempt with the same timestamp already exists."""

    def __init__(self, timestamp: str):
        super().__init__(f"Attempt with timestamp {timestamp!r} already exists")
        self.timestamp = timestamp
