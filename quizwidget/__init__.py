"""
Timed single-user quiz widget with local attempt history.
"""
from .attempt_store import AttemptStore, InMemoryAttemptStore, JsonAttemptStore
from .config_manager import ConfigManager
from .exceptions import (
    AttemptStoreError,
    ConfigError,
    DuplicateKeyError,
    InvalidQuestionDataError,
    QuizWidgetError,
    StorageUnavailableError,
)
from .main import create_app
from .models import AttemptRecord, Feedback, HistoryEntry, Question, QuizSettings, QuizSnapshot, QuizState
from .question_store import QuestionStore
from .quiz_controller import AppSnapshot, QuizController, Screen
from .quiz_engine import QuizEngine

__version__ = "1.0.0"
