"""
Quiz engine core logic for the quiz widget.
Drives question progression, the per-question countdown, scoring and
completion of an attempt.
"""
import asyncio
import inspect
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Sequence

from .attempt_store import AttemptStore
from .exceptions import AttemptStoreError, DuplicateKeyError, InvalidQuestionDataError
from .models import (
    AttemptRecord,
    Feedback,
    Question,
    QuizSession,
    QuizSettings,
    QuizSnapshot,
    QuizState,
)

# Set up logger for timer operations
logger = logging.getLogger(__name__)

CORRECT_MESSAGE = "Correct!"
INCORRECT_MESSAGE = "Incorrect!"
TIMEOUT_MESSAGE = "Time's up!"


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_start(phase: str, duration: float) -> None:
        """Log a countdown or settle timer being scheduled."""
        logger.debug(
            f"Timer lifecycle: START - {phase}, Duration {duration}",
            extra={
                'event_type': 'timer_start',
                'phase': phase,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(phase: str, remaining_time: int, total_duration: int) -> None:
        """Log timer update events (throttled to avoid spam)."""
        if remaining_time % 10 == 0 or remaining_time <= 5:
            progress_percent = ((total_duration - remaining_time) / total_duration) * 100
            logger.debug(
                f"Timer lifecycle: UPDATE - {phase}, Remaining {remaining_time}s ({progress_percent:.1f}% complete)",
                extra={
                    'event_type': 'timer_update',
                    'phase': phase,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'progress_percent': progress_percent,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(phase: str, completion_type: str, total_duration: int) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.debug(
            f"Timer lifecycle: COMPLETED - {phase}, Type {completion_type}, Duration {total_duration}s",
            extra={
                'event_type': 'timer_completed',
                'phase': phase,
                'completion_type': completion_type,
                'total_duration': total_duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_cancelled(phase: str, reason: str) -> None:
        """Log a pending timer being cancelled by a state transition."""
        logger.debug(
            f"Timer lifecycle: CANCELLED - {phase} ({reason})",
            extra={
                'event_type': 'timer_cancelled',
                'phase': phase,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_state_transition(from_state: str, to_state: str, reason: str = None) -> None:
        """Log quiz state transitions."""
        logger.info(
            f"Quiz lifecycle: STATE_TRANSITION - {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'quiz_state_transition',
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_stale_callback(phase: str, details: str) -> None:
        """Log a timer callback that arrived for a superseded question or session."""
        logger.warning(
            f"Timer lifecycle: STALE_CALLBACK - {phase}: {details}",
            extra={
                'event_type': 'timer_stale_callback',
                'phase': phase,
                'details': details,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(phase: str, error_type: str, error_message: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - {phase}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'phase': phase,
                'error_type': error_type,
                'error_message': error_message,
                'timestamp': time.time()
            }
        )


class QuizTimer:
    """Countdown timer for a single question."""

    def __init__(self, phase: str = None):
        self._remaining_time = 0
        self._total_duration = 0
        self._is_cancelled = False
        self._phase = phase or "countdown"

    async def start_countdown(
        self,
        duration: int,
        interval: float,
        update_callback: Callable[[int], Any],
        completion_callback: Callable[[], Any]
    ) -> None:
        """
        Count down from duration, one step per interval.

        Args:
            duration: Number of steps (seconds) to count
            interval: Wall-clock length of one step in seconds
            update_callback: Called after every step with the remaining time
            completion_callback: Called once when the countdown reaches zero
        """
        self._remaining_time = duration
        self._total_duration = duration
        self._is_cancelled = False
        TimerLifecycleLogger.log_timer_start(self._phase, duration)

        try:
            while self._remaining_time > 0 and not self._is_cancelled:
                await asyncio.sleep(interval)
                if self._is_cancelled:
                    break
                self._remaining_time -= 1
                TimerLifecycleLogger.log_timer_update(
                    self._phase,
                    self._remaining_time,
                    self._total_duration
                )
                update_callback(self._remaining_time)

            if self._is_cancelled:
                TimerLifecycleLogger.log_timer_completion(self._phase, "cancelled", self._total_duration)
            else:
                TimerLifecycleLogger.log_timer_completion(self._phase, "natural_expiry", self._total_duration)
                completion_callback()

        except asyncio.CancelledError:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion(self._phase, "asyncio_cancelled", self._total_duration)
            raise

    def cancel(self) -> None:
        """Stop the countdown before its next step."""
        self._is_cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def remaining_time(self) -> int:
        return self._remaining_time


def calculate_percentage(score: int, total_questions: int) -> str:
    """
    Format a score as a percentage with one decimal place.

    Raises:
        InvalidQuestionDataError: If there are no questions to score against
    """
    if total_questions <= 0:
        raise InvalidQuestionDataError("Cannot compute a percentage for zero questions")
    return f"{score / total_questions * 100:.1f}"


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    if moment.tzinfo is None:
        moment = moment.astimezone()
    utc_moment = moment.astimezone(timezone.utc)
    return utc_moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QuizEngine:
    """
    State machine for one user taking a timed quiz.

    The engine runs on a single asyncio event loop. Each question has a
    countdown task; answering or timing out replaces it with a settle task
    that advances to the next question. The session holds the one active
    task, and every transition cancels the previous one before scheduling.
    """

    def __init__(
        self,
        questions: Sequence[Question],
        attempt_store: Optional[AttemptStore] = None,
        settings: Optional[QuizSettings] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the quiz engine.

        Args:
            questions: Ordered, validated question list
            attempt_store: Store receiving the record of each completed quiz,
                or None to keep attempts in memory only
            settings: Timing settings, defaults to QuizSettings()
            clock: Returns the completion time, defaults to the current UTC time
        """
        self.questions: List[Question] = list(questions)
        self.attempt_store = attempt_store
        self.settings = settings or QuizSettings()
        self._clock = clock or _utc_now
        self._state = QuizState.NOT_STARTED
        self.session = QuizSession(time_left_seconds=self.settings.timer_duration)
        self._listeners: List[Callable[[QuizSnapshot], Any]] = []

        self.last_attempt: Optional[AttemptRecord] = None
        self.unsaved_attempts: List[AttemptRecord] = []
        self.persistence_warning: Optional[str] = None

    @property
    def state(self) -> QuizState:
        return self._state

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def current_question(self) -> Optional[Question]:
        if self._state == QuizState.NOT_STARTED:
            return None
        index = self.session.current_question_index
        if 0 <= index < len(self.questions):
            return self.questions[index]
        return None

    def subscribe(self, listener: Callable[[QuizSnapshot], Any]) -> None:
        """Register a listener called with a snapshot after every state change."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[QuizSnapshot], Any]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def start_quiz(self) -> QuizSnapshot:
        """
        Reset the session and start the first question's countdown.

        Must be called while an asyncio event loop is running.

        Raises:
            InvalidQuestionDataError: If there are no questions
        """
        if not self.questions:
            raise InvalidQuestionDataError("Cannot start a quiz with zero questions")
        # Raises RuntimeError when no event loop is running
        asyncio.get_running_loop()

        self._cancel_timer("quiz restarted")
        previous_state = self._state
        self.session = QuizSession(
            time_left_seconds=self.settings.timer_duration,
            started=True,
            generation=self.session.generation + 1
        )
        self._state = QuizState.IN_PROGRESS
        self.last_attempt = None
        self.persistence_warning = None

        TimerLifecycleLogger.log_state_transition(
            previous_state.value, self._state.value, f"{len(self.questions)} questions"
        )
        self._start_countdown()
        self._notify()
        return self.snapshot()

    def submit_answer(self, choice: str) -> bool:
        """
        Lock in a multiple-choice answer.

        Args:
            choice: One of the current question's answers

        Returns:
            True if the answer was accepted, False if it was ignored
        """
        question = self._answerable_question("submit_answer")
        if question is None:
            return False

        if question.is_free_text:
            logger.warning(f"Ignoring choice {choice!r}: question {self.session.current_question_index} is free-text")
            return False

        if choice not in question.answers:
            logger.warning(f"Ignoring choice {choice!r}: not an option of question {self.session.current_question_index}")
            return False

        is_correct = choice == question.correct_answer
        self.session.selected_answer = choice
        if is_correct:
            self.session.score += 1
        if self.settings.show_choice_feedback:
            self.session.feedback = self._feedback_for(is_correct)

        logger.info(
            f"Question {self.session.current_question_index + 1}/{len(self.questions)} answered "
            f"{'correctly' if is_correct else 'incorrectly'}"
        )
        self._schedule_settle()
        self._notify()
        return True

    def submit_text(self, text: str) -> bool:
        """
        Submit a typed answer for a free-text question.

        The input is trimmed and compared case-insensitively.

        Returns:
            True if the answer was accepted, False if it was ignored
        """
        question = self._answerable_question("submit_text")
        if question is None:
            return False

        if not question.is_free_text:
            logger.warning(f"Ignoring text input: question {self.session.current_question_index} is multiple-choice")
            return False

        is_correct = text.strip().lower() == question.correct_answer.strip().lower()
        self.session.user_input = text
        if is_correct:
            self.session.score += 1
        self.session.feedback = self._feedback_for(is_correct)

        logger.info(
            f"Question {self.session.current_question_index + 1}/{len(self.questions)} answered "
            f"{'correctly' if is_correct else 'incorrectly'}"
        )
        self._schedule_settle()
        self._notify()
        return True

    def on_timeout(self) -> bool:
        """
        Handle the countdown reaching zero without an answer.

        Returns:
            True if the timeout was applied, False if the question was
            already answered or no quiz is running
        """
        if self._answerable_question("on_timeout") is None:
            return False

        self.session.time_left_seconds = 0
        self.session.feedback = Feedback(correct=False, message=TIMEOUT_MESSAGE)
        logger.info(f"Question {self.session.current_question_index + 1}/{len(self.questions)} timed out")
        self._schedule_settle()
        self._notify()
        return True

    def advance(self) -> None:
        """Move to the next question, or complete the quiz after the last one."""
        if self._state != QuizState.IN_PROGRESS:
            logger.debug(f"advance() ignored in state {self._state.value}")
            return

        self._cancel_timer("advancing")
        session = self.session
        if session.current_question_index + 1 < len(self.questions):
            session.current_question_index += 1
            session.time_left_seconds = self.settings.timer_duration
            session.selected_answer = None
            session.user_input = ""
            session.feedback = None
            self._start_countdown()
            self._notify()
        else:
            self._complete()

    def stop(self) -> None:
        """Cancel pending timers and abandon an unfinished quiz."""
        self._cancel_timer("quiz stopped")
        if self._state == QuizState.IN_PROGRESS:
            TimerLifecycleLogger.log_state_transition(
                self._state.value, QuizState.NOT_STARTED.value, "stopped before completion"
            )
            self._state = QuizState.NOT_STARTED
            self.session = QuizSession(
                time_left_seconds=self.settings.timer_duration,
                generation=self.session.generation + 1
            )
            self._notify()

    def snapshot(self) -> QuizSnapshot:
        """Return a read-only view of the current state."""
        session = self.session
        question = self.current_question
        completed = self._state == QuizState.COMPLETED
        return QuizSnapshot(
            state=self._state,
            current_question_index=session.current_question_index,
            total_questions=len(self.questions),
            question_text=question.question if question and not completed else None,
            answers=list(question.answers) if question and question.answers and not completed else None,
            time_left_seconds=session.time_left_seconds,
            time_warning=(
                self._state == QuizState.IN_PROGRESS
                and session.time_left_seconds <= self.settings.time_warning_threshold
            ),
            selected_answer=session.selected_answer,
            user_input=session.user_input,
            feedback=session.feedback,
            completed=completed,
            score=session.score,
            percentage=calculate_percentage(session.score, len(self.questions)) if completed else None,
            last_attempt=self.last_attempt,
            persistence_warning=self.persistence_warning
        )

    def _answerable_question(self, operation: str) -> Optional[Question]:
        if self._state != QuizState.IN_PROGRESS:
            logger.debug(f"{operation} ignored: quiz is {self._state.value}")
            return None
        if self.session.is_locked:
            logger.debug(
                f"{operation} ignored: question {self.session.current_question_index} already resolved"
            )
            return None
        return self.current_question

    @staticmethod
    def _feedback_for(is_correct: bool) -> Feedback:
        return Feedback(correct=is_correct, message=CORRECT_MESSAGE if is_correct else INCORRECT_MESSAGE)

    def _is_current(self, generation: int, index: int) -> bool:
        return (
            self._state == QuizState.IN_PROGRESS
            and self.session.generation == generation
            and self.session.current_question_index == index
        )

    def _start_countdown(self) -> None:
        generation = self.session.generation
        index = self.session.current_question_index
        timer = QuizTimer(f"question {index + 1} countdown")

        def on_tick(remaining: int) -> None:
            if not self._is_current(generation, index) or self.session.is_locked:
                TimerLifecycleLogger.log_stale_callback(
                    f"question {index + 1} countdown", "tick after question was resolved"
                )
                timer.cancel()
                return
            self.session.time_left_seconds = remaining
            self._notify()

        def on_expired() -> None:
            if not self._is_current(generation, index):
                TimerLifecycleLogger.log_stale_callback(
                    f"question {index + 1} countdown", "expiry for a superseded question"
                )
                return
            self.on_timeout()

        self._track(asyncio.create_task(
            timer.start_countdown(
                self.settings.timer_duration,
                self.settings.tick_interval,
                on_tick,
                on_expired
            )
        ))

    def _schedule_settle(self) -> None:
        self._cancel_timer("question resolved")
        generation = self.session.generation
        index = self.session.current_question_index
        TimerLifecycleLogger.log_timer_start(f"question {index + 1} settle", self.settings.settle_delay)
        self._track(asyncio.create_task(self._settle(generation, index)))

    async def _settle(self, generation: int, index: int) -> None:
        await asyncio.sleep(self.settings.settle_delay)
        if not self._is_current(generation, index):
            TimerLifecycleLogger.log_stale_callback(
                f"question {index + 1} settle", "settle delay for a superseded question"
            )
            return
        self.advance()

    def _track(self, task: asyncio.Task) -> None:
        self.session.timer_handle = task
        task.add_done_callback(self._log_task_failure)

    @staticmethod
    def _log_task_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            TimerLifecycleLogger.log_timer_error("timer task", type(error).__name__, str(error))

    def _cancel_timer(self, reason: str) -> None:
        handle = self.session.timer_handle
        self.session.timer_handle = None
        if handle is None or handle.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # The running task cannot cancel itself; it finishes on its own
        if handle is current:
            return
        handle.cancel()
        TimerLifecycleLogger.log_timer_cancelled(
            f"question {self.session.current_question_index + 1}", reason
        )

    def _complete(self) -> None:
        session = self.session
        session.completed = True
        session.selected_answer = None
        session.user_input = ""
        session.feedback = None
        self._state = QuizState.COMPLETED
        TimerLifecycleLogger.log_state_transition(
            QuizState.IN_PROGRESS.value,
            self._state.value,
            f"score {session.score}/{len(self.questions)}"
        )

        record = self._build_attempt_record(self._clock())
        self.last_attempt = self._persist(record)
        self._notify()

    def _build_attempt_record(self, moment: datetime) -> AttemptRecord:
        if moment.tzinfo is None:
            moment = moment.astimezone()
        return AttemptRecord(
            timestamp=format_timestamp(moment),
            formatted_time=moment.astimezone().strftime("%x, %X"),
            score=self.session.score,
            total_questions=len(self.questions),
            percentage=calculate_percentage(self.session.score, len(self.questions))
        )

    def _persist(self, record: AttemptRecord) -> AttemptRecord:
        if self.attempt_store is None:
            self.unsaved_attempts.append(record)
            return record

        try:
            self.attempt_store.append(record)
            return record
        except DuplicateKeyError as e:
            logger.warning(f"{e}; retrying with a disambiguated timestamp")
            retry_record = self._disambiguate(record)
            try:
                self.attempt_store.append(retry_record)
                return retry_record
            except AttemptStoreError as retry_error:
                self._keep_unsaved(retry_record, retry_error)
                return retry_record
        except AttemptStoreError as e:
            self._keep_unsaved(record, e)
            return record

    def _disambiguate(self, record: AttemptRecord) -> AttemptRecord:
        moment = datetime.fromisoformat(record.timestamp.replace("Z", "+00:00"))
        return record.model_copy(
            update={'timestamp': format_timestamp(moment + timedelta(milliseconds=1))}
        )

    def _keep_unsaved(self, record: AttemptRecord, error: Exception) -> None:
        self.unsaved_attempts.append(record)
        self.persistence_warning = f"Your result could not be saved to history: {error}"
        logger.warning(
            f"Keeping attempt {record.timestamp} in memory only: {error}",
            extra={
                'event_type': 'attempt_persistence_failed',
                'error_type': type(error).__name__,
                'timestamp': time.time()
            }
        )

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                result = listener(snapshot)
                if inspect.isawaitable(result):
                    asyncio.ensure_future(result)
            except Exception:
                logger.exception("Snapshot listener failed")
