"""
Quiz controller for the quiz widget.
Exposes the intents the rendering layer dispatches and the screen it should show.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .attempt_store import AttemptStore, InMemoryAttemptStore
from .config_manager import ConfigManager
from .exceptions import InvalidQuestionDataError, QuizWidgetError, StorageUnavailableError
from .models import AttemptRecord, HistoryEntry, Question, QuizSnapshot, QuizState
from .question_store import QuestionStore
from .quiz_engine import QuizEngine

NO_ATTEMPTS_MESSAGE = "No attempts yet"


class Screen(Enum):
    """Screens the rendering layer can be asked to show."""
    MENU = "menu"
    QUIZ = "quiz"
    RESULTS = "results"
    HISTORY = "history"


class QuizControllerError(QuizWidgetError):
    """Raised when an intent is dispatched before the controller is ready."""
    pass


@dataclass(frozen=True)
class AppSnapshot:
    """Everything a view needs to render the current screen."""
    screen: Screen
    quiz: QuizSnapshot
    intro_text: str
    storage_warning: Optional[str] = None


class QuizController:
    """
    Orchestrates the question store, attempt store and quiz engine.

    Views hold a reference to the controller, render its snapshots and call
    its intent methods; they never mutate quiz state directly.
    """

    def __init__(
        self,
        question_store: QuestionStore,
        attempt_store: AttemptStore,
        config_manager: Optional[ConfigManager] = None
    ):
        """
        Initialize the quiz controller.

        Args:
            question_store: Source of the question list
            attempt_store: Durable store for completed attempts
            config_manager: Settings, defaults to a fresh ConfigManager
        """
        self.logger = logging.getLogger(__name__)
        self.question_store = question_store
        self.attempt_store = attempt_store
        self.config_manager = config_manager or ConfigManager()
        self.engine: Optional[QuizEngine] = None
        self.storage_warning: Optional[str] = None
        self._screen = Screen.MENU
        self._listeners: List[Callable[[AppSnapshot], Any]] = []

    def initialize(self) -> Dict[str, Any]:
        """
        Load questions and open the attempt store.

        Storage problems are recovered by keeping history in memory for the
        rest of the process; question problems are fatal.

        Returns:
            Dictionary summarising the questions loaded and storage status

        Raises:
            InvalidQuestionDataError: If the question dataset is unusable
        """
        questions = self.question_store.load_questions()
        if not questions:
            raise InvalidQuestionDataError("No questions available")

        try:
            self.attempt_store.initialize()
        except StorageUnavailableError as e:
            self.storage_warning = f"History is unavailable, results will not be saved: {e}"
            self.logger.warning(f"Attempt store unavailable, falling back to memory: {e}")
            self.attempt_store = InMemoryAttemptStore()
            self.attempt_store.initialize()

        self._build_engine(questions)
        self.logger.info(
            f"QuizController initialized with {len(questions)} questions, "
            f"durable history: {self.attempt_store.is_durable}"
        )
        return {
            'question_count': len(questions),
            'durable_history': self.attempt_store.is_durable,
            'storage_warning': self.storage_warning
        }

    def _build_engine(self, questions: List[Question]) -> None:
        if self.engine is not None:
            self.engine.stop()
            self.engine.unsubscribe(self._on_engine_change)
        self.engine = QuizEngine(
            questions,
            attempt_store=self.attempt_store,
            settings=self.config_manager.get_quiz_settings()
        )
        self.engine.subscribe(self._on_engine_change)

    def _require_engine(self) -> QuizEngine:
        if self.engine is None:
            raise QuizControllerError("QuizController.initialize() must be called first")
        return self.engine

    @property
    def screen(self) -> Screen:
        return self._screen

    def subscribe(self, listener: Callable[[AppSnapshot], Any]) -> None:
        """Register a view listener called with an AppSnapshot after every change."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[AppSnapshot], Any]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def start_quiz(self) -> AppSnapshot:
        """Start (or restart) the quiz from the first question."""
        engine = self._require_engine()
        previous_screen = self._screen
        self._screen = Screen.QUIZ
        try:
            engine.start_quiz()
        except Exception:
            self._screen = previous_screen
            raise
        self.logger.info("Quiz started")
        return self.snapshot()

    def submit_answer(self, choice: str) -> bool:
        """Answer the current multiple-choice question."""
        return self._require_engine().submit_answer(choice)

    def submit_text(self, text: str) -> bool:
        """Answer the current free-text question."""
        return self._require_engine().submit_text(text)

    def view_history(self) -> List[HistoryEntry]:
        """
        Switch to the history screen and return past attempts, newest first.

        An unfinished quiz is abandoned.
        """
        engine = self._require_engine()
        if engine.state == QuizState.IN_PROGRESS:
            self.logger.info("Abandoning quiz in progress to show history")
            engine.stop()
        self._screen = Screen.HISTORY
        entries = self.get_history()
        self._notify()
        return entries

    def return_to_menu(self) -> AppSnapshot:
        """Go back to the start menu, abandoning an unfinished quiz."""
        engine = self._require_engine()
        if engine.state == QuizState.IN_PROGRESS:
            self.logger.info("Abandoning quiz in progress to return to menu")
            engine.stop()
        self._screen = Screen.MENU
        self._notify()
        return self.snapshot()

    def shutdown(self) -> None:
        """Tear down: cancel every pending timer."""
        if self.engine is not None:
            self.engine.stop()
            self.engine.unsubscribe(self._on_engine_change)
        self._listeners.clear()
        self.logger.info("QuizController shut down")

    def get_history(self) -> List[HistoryEntry]:
        """
        Build history rows from stored and unsaved attempts.

        Returns:
            HistoryEntry list sorted by timestamp descending; the oldest
            attempt is number 1
        """
        records: Dict[str, AttemptRecord] = {}
        try:
            for record in self.attempt_store.list_all():
                records[record.timestamp] = record
        except StorageUnavailableError as e:
            self.storage_warning = f"History is unavailable: {e}"
            self.logger.warning(f"Could not read attempt history: {e}")

        if self.engine is not None:
            for record in self.engine.unsaved_attempts:
                records.setdefault(record.timestamp, record)

        ordered = sorted(records.values(), key=lambda r: r.timestamp, reverse=True)
        total = len(ordered)
        return [
            HistoryEntry(
                attempt_number=total - index,
                timestamp=record.timestamp,
                formatted_time=record.formatted_time,
                score=record.score,
                total_questions=record.total_questions,
                percentage=f"{float(record.percentage):.1f}"
            )
            for index, record in enumerate(ordered)
        ]

    def get_history_placeholder(self) -> Optional[str]:
        """Text shown instead of the history list when there are no attempts."""
        return None if self.get_history() else NO_ATTEMPTS_MESSAGE

    def get_results_summary(self) -> Optional[str]:
        """Results line for a completed quiz, or None if no quiz has completed."""
        engine = self._require_engine()
        quiz = engine.snapshot()
        if not quiz.completed:
            return None
        return f"Score: {quiz.score} / {quiz.total_questions} ({quiz.percentage}%)"

    def snapshot(self) -> AppSnapshot:
        engine = self._require_engine()
        quiz = engine.snapshot()
        return AppSnapshot(
            screen=self._screen,
            quiz=quiz,
            intro_text=self.config_manager.get_intro_text(quiz.total_questions),
            storage_warning=self.storage_warning
        )

    def _on_engine_change(self, quiz: QuizSnapshot) -> None:
        if quiz.completed and self._screen == Screen.QUIZ:
            self._screen = Screen.RESULTS
            self.logger.info(f"Quiz completed: {quiz.score}/{quiz.total_questions} ({quiz.percentage}%)")
            if quiz.persistence_warning:
                self.logger.warning(quiz.persistence_warning)
        self._notify()

    def _notify(self) -> None:
        if not self._listeners or self.engine is None:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                result = listener(snapshot)
                if inspect.isawaitable(result):
                    asyncio.ensure_future(result)
            except Exception:
                self.logger.exception("View listener failed")
