"""
Question store: loading and validation of the static question dataset.
"""
import json
import logging
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .exceptions import InvalidQuestionDataError
from .models import Question

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB


class QuestionStore:
    """Loads the ordered, read-only question list used by the quiz engine."""

    def __init__(self, questions_file: Optional[str] = None):
        """
        Initialize QuestionStore.

        Args:
            questions_file: Path to a JSON question file, or None to use the
                dataset bundled with the package
        """
        self.questions_file = Path(questions_file) if questions_file else None
        self.logger = logging.getLogger(__name__)
        self.load_errors: List[str] = []
        self._questions: List[Question] = []

    def load_questions(self) -> List[Question]:
        """
        Load and validate the question dataset.

        Returns:
            List of Question objects in dataset order

        Raises:
            InvalidQuestionDataError: If the dataset cannot be read or any
                question is malformed
        """
        self.load_errors.clear()
        self._questions = []

        raw_text = self._read_source()
        try:
            data = json.loads(raw_text)
        except json.JSONDecodeError as e:
            raise self._error(f"Invalid JSON in {self.source_name}: {e}")

        errors = self.validate_quiz_structure(data)
        if errors:
            self.load_errors.extend(errors)
            raise InvalidQuestionDataError(
                f"Invalid question data in {self.source_name}: {'; '.join(errors)}"
            )

        self._questions = self._parse_questions(self._question_items(data))
        self.logger.info(f"Loaded {len(self._questions)} questions from {self.source_name}")
        return list(self._questions)

    @property
    def source_name(self) -> str:
        return str(self.questions_file) if self.questions_file else "bundled questions.json"

    def _read_source(self) -> str:
        if self.questions_file is None:
            return (resources.files("quizwidget") / "data" / "questions.json").read_text(encoding="utf-8")

        try:
            file_size = self.questions_file.stat().st_size
        except FileNotFoundError:
            raise self._error(f"Question file not found: {self.questions_file}")
        except OSError as e:
            raise self._error(f"Cannot access question file {self.questions_file}: {e}")

        if file_size > MAX_FILE_SIZE:
            raise self._error(
                f"Question file too large ({file_size / 1024 / 1024:.1f}MB). "
                f"Maximum size is {MAX_FILE_SIZE / 1024 / 1024}MB"
            )

        try:
            with open(self.questions_file, 'r', encoding='utf-8') as f:
                return f.read()
        except UnicodeDecodeError as e:
            raise self._error(f"Question file {self.questions_file} is not valid UTF-8: {e}")
        except OSError as e:
            raise self._error(f"Failed to read question file {self.questions_file}: {e}")

    def _error(self, message: str) -> InvalidQuestionDataError:
        self.logger.error(message)
        self.load_errors.append(message)
        return InvalidQuestionDataError(message)

    @staticmethod
    def _question_items(data: Any) -> Any:
        if isinstance(data, dict):
            return data.get("questions")
        return data

    def validate_quiz_structure(self, data: Any) -> List[str]:
        """
        Validate that JSON data has the expected question structure.

        Expected structure (a bare array, or an object with a "questions" array):
        [
            {
                "question": str,
                "answers": [str, ...],  # Optional, absent for free-text
                "correctAnswer": str
            }
        ]

        Args:
            data: Parsed JSON data to validate

        Returns:
            List of problems found; empty when the data is valid
        """
        items = self._question_items(data)
        if isinstance(data, dict) and items is None:
            return ["Question data object must contain a 'questions' key"]

        if not isinstance(items, list):
            return ["Question data must be an array of question objects"]

        if not items:
            return ["Question list cannot be empty"]

        errors = []
        for i, item in enumerate(items):
            if not isinstance(item, dict):
                errors.append(f"Question {i} must be an object")
                continue

            if not isinstance(item.get("question"), str) or not item["question"].strip():
                errors.append(f"Question {i} missing 'question' text")

            if "correctAnswer" not in item:
                errors.append(f"Question {i} missing 'correctAnswer' field")
            elif not isinstance(item["correctAnswer"], str) or not item["correctAnswer"]:
                errors.append(f"Question {i} 'correctAnswer' must be a non-empty string")

            if "answers" in item and item["answers"] is not None:
                answers = item["answers"]
                if not isinstance(answers, list):
                    errors.append(f"Question {i} 'answers' field must be an array")
                elif not answers:
                    errors.append(f"Question {i} has empty 'answers' in multiple-choice mode")
                elif not all(isinstance(a, str) for a in answers):
                    errors.append(f"Question {i} 'answers' must only contain strings")

        for error in errors:
            self.logger.error(error)
        return errors

    def _parse_questions(self, items: List[Dict[str, Any]]) -> List[Question]:
        """
        Parse validated question items into Question objects.

        Raises:
            InvalidQuestionDataError: If pydantic rejects an item
        """
        questions = []
        for i, item in enumerate(items):
            try:
                question = Question.model_validate(item)
            except ValidationError as e:
                raise self._error(f"Question {i} failed validation: {e}")

            if question.answers is not None and question.correct_answer not in question.answers:
                self.logger.warning(
                    f"Question {i} correctAnswer {question.correct_answer!r} is not one of its answers"
                )
            questions.append(question)

        return questions

    def get_questions(self) -> List[Question]:
        """Return the questions from the last successful load."""
        return list(self._questions)

    def get_question_count(self) -> int:
        return len(self._questions)

    def get_load_errors(self) -> List[str]:
        """
        Get list of errors encountered during the last load operation.

        Returns:
            List of error messages
        """
        return self.load_errors.copy()

    def get_loading_summary(self) -> Dict[str, Any]:
        """
        Get a summary of the last loading operation.

        Returns:
            Dictionary with loading statistics and status
        """
        return {
            'source': self.source_name,
            'question_count': len(self._questions),
            'free_text_count': sum(1 for q in self._questions if q.is_free_text),
            'has_errors': bool(self.load_errors),
            'errors': self.get_load_errors(),
        }
