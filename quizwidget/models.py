"""
Core data models for the quiz widget.
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Question(BaseModel):
    """
    A single quiz question loaded from the static dataset.

    Questions without ``answers`` are answered by typing (free-text mode).
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    question: str = Field(..., min_length=1)
    answers: Optional[List[str]] = None
    correct_answer: str = Field(..., min_length=1, alias="correctAnswer")

    @field_validator('answers')
    @classmethod
    def validate_answers_not_empty(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        """Multiple-choice questions need at least one option."""
        if v is not None and len(v) == 0:
            raise ValueError("answers must not be empty in multiple-choice mode")
        return v

    @property
    def is_free_text(self) -> bool:
        return self.answers is None


class AttemptRecord(BaseModel):
    """Summary of one completed quiz, keyed by its completion timestamp."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    timestamp: str = Field(..., min_length=1)
    formatted_time: str = Field(..., alias="formattedTime")
    score: int = Field(..., ge=0)
    total_questions: int = Field(..., gt=0, alias="totalQuestions")
    percentage: str

    @field_validator('percentage')
    @classmethod
    def validate_percentage(cls, v: str) -> str:
        """Percentages are stored as text but must read back as a number."""
        try:
            float(v)
        except ValueError:
            raise ValueError(f"percentage must be numeric text, got {v!r}")
        return v

    @model_validator(mode='after')
    def validate_score_consistency(self) -> 'AttemptRecord':
        """The score cannot exceed the question count and must agree with the percentage."""
        if self.score > self.total_questions:
            raise ValueError(f"score {self.score} exceeds totalQuestions {self.total_questions}")
        expected = round(self.score / self.total_questions * 100, 1)
        if abs(float(self.percentage) - expected) > 0.05:
            raise ValueError(
                f"percentage {self.percentage} does not match {self.score}/{self.total_questions}"
            )
        return self

    def to_storage(self) -> dict:
        """Serialize with the persisted (camelCase) field names."""
        return self.model_dump(by_alias=True)


class QuizState(Enum):
    """Lifecycle states of the quiz engine."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Feedback:
    """Result message shown after a free-text answer or a timeout."""
    correct: bool
    message: str


@dataclass
class QuizSettings:
    """Timing and presentation settings for a quiz session."""
    timer_duration: int = 30
    settle_delay: float = 1.0
    tick_interval: float = 1.0
    show_choice_feedback: bool = False
    time_warning_threshold: int = 10


@dataclass
class QuizSession:
    """Mutable state of the quiz currently being taken."""
    current_question_index: int = 0
    selected_answer: Optional[str] = None
    score: int = 0
    time_left_seconds: int = 30
    started: bool = False
    completed: bool = False
    user_input: str = ""
    feedback: Optional[Feedback] = None
    generation: int = 0
    # Countdown or settle task for the current waiting phase
    timer_handle: Optional[asyncio.Task] = field(default=None, repr=False, compare=False)

    @property
    def is_locked(self) -> bool:
        """True once the current question has been answered or timed out."""
        return self.selected_answer is not None or self.feedback is not None


@dataclass(frozen=True)
class QuizSnapshot:
    """Read-only view of the engine state handed to the rendering layer."""
    state: QuizState
    current_question_index: int
    total_questions: int
    question_text: Optional[str]
    answers: Optional[List[str]]
    time_left_seconds: int
    time_warning: bool
    selected_answer: Optional[str]
    user_input: str
    feedback: Optional[Feedback]
    completed: bool
    score: int
    percentage: Optional[str] = None
    last_attempt: Optional[AttemptRecord] = None
    persistence_warning: Optional[str] = None


@dataclass(frozen=True)
class HistoryEntry:
    """One row of the attempt history screen."""
    attempt_number: int
    timestamp: str
    formatted_time: str
    score: int
    total_questions: int
    percentage: str
