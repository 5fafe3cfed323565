"""
Configuration manager for quiz widget settings and storage locations.
"""
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from .exceptions import ConfigError
from .models import QuizSettings


class ConfigManager:
    """Manages quiz timing settings, data locations and logging options."""

    # Default configuration values
    DEFAULT_TIMER_DURATION = 30
    DEFAULT_SETTLE_DELAY = 1.0
    DEFAULT_TICK_INTERVAL = 1.0
    DEFAULT_TIME_WARNING_THRESHOLD = 10
    DEFAULT_STORAGE_PATH = "./data/quiz_database.json"
    DEFAULT_LOG_LEVEL = "INFO"
    DEFAULT_LOG_DIRECTORY = "./logs/"

    # Validation limits
    MIN_TIMER_DURATION = 5
    MAX_TIMER_DURATION = 300  # 5 minutes
    MIN_SETTLE_DELAY = 0.0
    MAX_SETTLE_DELAY = 10.0

    # Environment overrides
    ENV_QUESTIONS_FILE = "QUIZWIDGET_QUESTIONS_FILE"
    ENV_STORAGE_PATH = "QUIZWIDGET_STORAGE_PATH"
    ENV_TIMER_DURATION = "QUIZWIDGET_TIMER_DURATION"

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._settings = QuizSettings()
        self._questions_file: Optional[str] = None
        self._storage_path = self.DEFAULT_STORAGE_PATH
        self._log_level = self.DEFAULT_LOG_LEVEL
        self._log_directory: Optional[str] = self.DEFAULT_LOG_DIRECTORY

    def get_quiz_settings(self) -> QuizSettings:
        """
        Get current quiz settings.

        Returns:
            Copy of the current QuizSettings
        """
        return QuizSettings(
            timer_duration=self._settings.timer_duration,
            settle_delay=self._settings.settle_delay,
            tick_interval=self._settings.tick_interval,
            show_choice_feedback=self._settings.show_choice_feedback,
            time_warning_threshold=self._settings.time_warning_threshold
        )

    def set_timer_duration(self, duration: int) -> Dict[str, Any]:
        """
        Set the countdown duration for each question.

        Args:
            duration: Timer duration in seconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(duration, bool) or not isinstance(duration, int):
            error_msg = f"Timer duration must be an integer, got {type(duration).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"Invalid input: Expected a number, got {type(duration).__name__}"
            }

        if duration < self.MIN_TIMER_DURATION:
            error_msg = f"Timer duration must be at least {self.MIN_TIMER_DURATION} seconds"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"Timer too short: Minimum is {self.MIN_TIMER_DURATION} seconds"
            }

        if duration > self.MAX_TIMER_DURATION:
            error_msg = f"Timer duration cannot exceed {self.MAX_TIMER_DURATION} seconds"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"Timer too long: Maximum is {self.MAX_TIMER_DURATION} seconds ({self.MAX_TIMER_DURATION // 60} minutes)"
            }

        self._settings.timer_duration = duration
        self.logger.info(f"Timer duration set to {duration} seconds")
        return {
            'success': True,
            'message': f"Timer duration set to {duration} seconds",
            'user_message': f"Timer set to {duration} seconds"
        }

    def get_timer_duration(self) -> int:
        return self._settings.timer_duration

    def set_settle_delay(self, delay: float) -> Dict[str, Any]:
        """
        Set the pause between answering a question and moving on.

        Args:
            delay: Delay in seconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(delay, bool) or not isinstance(delay, (int, float)):
            error_msg = f"Settle delay must be a number, got {type(delay).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"Invalid input: Expected a number, got {type(delay).__name__}"
            }

        if not self.MIN_SETTLE_DELAY <= delay <= self.MAX_SETTLE_DELAY:
            error_msg = (
                f"Settle delay must be between {self.MIN_SETTLE_DELAY} and {self.MAX_SETTLE_DELAY} seconds"
            )
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"Delay out of range: Use {self.MIN_SETTLE_DELAY}-{self.MAX_SETTLE_DELAY} seconds"
            }

        self._settings.settle_delay = float(delay)
        self.logger.info(f"Settle delay set to {delay} seconds")
        return {
            'success': True,
            'message': f"Settle delay set to {delay} seconds",
            'user_message': f"Next question appears {delay} seconds after answering"
        }

    def set_show_choice_feedback(self, enabled: bool) -> Dict[str, Any]:
        """
        Set whether multiple-choice selections show a Correct!/Incorrect! message.

        Args:
            enabled: True to show feedback for choice questions

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(enabled, bool):
            error_msg = f"Choice feedback flag must be a boolean, got {type(enabled).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"Invalid input: Expected true/false, got {type(enabled).__name__}"
            }

        self._settings.show_choice_feedback = enabled
        state = "enabled" if enabled else "disabled"
        self.logger.info(f"Choice feedback {state}")
        return {
            'success': True,
            'message': f"Choice feedback {state}",
            'user_message': f"Feedback for multiple-choice answers {state}"
        }

    def set_questions_file(self, path: Optional[str]) -> Dict[str, Any]:
        """
        Set the question dataset file, or None to use the bundled dataset.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if path is None:
            self._questions_file = None
            self.logger.info("Using bundled question dataset")
            return {
                'success': True,
                'message': "Using bundled question dataset",
                'user_message': "Using the built-in questions"
            }

        if not isinstance(path, str) or not path.strip():
            error_msg = "Questions file must be a non-empty path string"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "Questions file path cannot be empty"
            }

        self._questions_file = str(Path(path).expanduser())
        self.logger.info(f"Questions file set to {self._questions_file}")
        return {
            'success': True,
            'message': f"Questions file set to {self._questions_file}",
            'user_message': f"Questions will be loaded from {self._questions_file}"
        }

    def get_questions_file(self) -> Optional[str]:
        return self._questions_file

    def set_storage_path(self, path: str) -> Dict[str, Any]:
        """
        Set the location of the attempt history database.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(path, str) or not path.strip():
            error_msg = "Storage path must be a non-empty path string"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "Storage path cannot be empty"
            }

        try:
            normalized_path = str(Path(path).expanduser().resolve())
        except (OSError, ValueError) as e:
            error_msg = f"Invalid storage path format: {e}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"Invalid path format: {path}"
            }

        self._storage_path = normalized_path
        self.logger.info(f"Storage path set to {normalized_path}")
        return {
            'success': True,
            'message': f"Storage path set to {normalized_path}",
            'user_message': f"History will be saved to {normalized_path}"
        }

    def get_storage_path(self) -> str:
        return self._storage_path

    def get_log_level(self) -> str:
        return self._log_level

    def get_log_directory(self) -> Optional[str]:
        return self._log_directory

    def load_from_dict(self, config: Dict[str, Any]) -> List[str]:
        """
        Apply a configuration document.

        Expected structure (every section optional):
        {
            "quiz": {"timer_duration": 30, "settle_delay": 1.0, "show_choice_feedback": false,
                     "questions_file": "questions.json"},
            "storage": {"path": "./data/quiz_database.json"},
            "logging": {"level": "INFO", "log_directory": "./logs/"}
        }

        Args:
            config: Parsed configuration document

        Returns:
            List of user-facing messages for settings that were rejected
        """
        rejected = []
        quiz_config = config.get('quiz', {})
        storage_config = config.get('storage', {})
        log_config = config.get('logging', {})

        results = []
        if 'timer_duration' in quiz_config:
            results.append(self.set_timer_duration(quiz_config['timer_duration']))
        if 'settle_delay' in quiz_config:
            results.append(self.set_settle_delay(quiz_config['settle_delay']))
        if 'show_choice_feedback' in quiz_config:
            results.append(self.set_show_choice_feedback(quiz_config['show_choice_feedback']))
        if 'questions_file' in quiz_config:
            results.append(self.set_questions_file(quiz_config['questions_file']))
        if 'path' in storage_config:
            results.append(self.set_storage_path(storage_config['path']))

        if 'level' in log_config:
            level = str(log_config['level']).upper()
            if isinstance(logging.getLevelName(level), int):
                self._log_level = level
            else:
                rejected.append(f"Unknown log level: {log_config['level']}")
        if 'log_directory' in log_config:
            self._log_directory = log_config['log_directory']

        rejected.extend(result['user_message'] for result in results if not result['success'])
        for message in rejected:
            self.logger.warning(f"Ignored configuration value: {message}")
        return rejected

    def load_from_file(self, config_path: str) -> List[str]:
        """
        Load configuration from a JSON file, then apply environment overrides.

        A missing file leaves the defaults in place.

        Raises:
            ConfigError: If the file exists but cannot be read or parsed
        """
        path = Path(config_path)
        rejected = []

        if path.exists():
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    config = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Invalid JSON in {path}: {e}") from e
            except OSError as e:
                raise ConfigError(f"Error loading {path}: {e}") from e

            if not isinstance(config, dict):
                raise ConfigError(f"Configuration in {path} must be a JSON object")
            rejected.extend(self.load_from_dict(config))
        else:
            self.logger.info(f"No configuration file at {path}, using defaults")

        rejected.extend(self.apply_environment())
        return rejected

    def apply_environment(self) -> List[str]:
        """Apply overrides from environment variables, which take precedence over files."""
        results = []

        questions_file = os.getenv(self.ENV_QUESTIONS_FILE)
        if questions_file:
            results.append(self.set_questions_file(questions_file))

        storage_path = os.getenv(self.ENV_STORAGE_PATH)
        if storage_path:
            results.append(self.set_storage_path(storage_path))

        timer_duration = os.getenv(self.ENV_TIMER_DURATION)
        if timer_duration:
            try:
                results.append(self.set_timer_duration(int(timer_duration)))
            except ValueError:
                results.append({
                    'success': False,
                    'user_message': f"{self.ENV_TIMER_DURATION} must be an integer, got {timer_duration!r}"
                })

        return [result['user_message'] for result in results if not result['success']]

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._settings = QuizSettings(
            timer_duration=self.DEFAULT_TIMER_DURATION,
            settle_delay=self.DEFAULT_SETTLE_DELAY,
            tick_interval=self.DEFAULT_TICK_INTERVAL,
            time_warning_threshold=self.DEFAULT_TIME_WARNING_THRESHOLD
        )
        self._questions_file = None
        self._storage_path = self.DEFAULT_STORAGE_PATH
        self._log_level = self.DEFAULT_LOG_LEVEL
        self._log_directory = self.DEFAULT_LOG_DIRECTORY
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }

        if (not isinstance(self._settings.timer_duration, int) or
            self._settings.timer_duration < self.MIN_TIMER_DURATION or
            self._settings.timer_duration > self.MAX_TIMER_DURATION):
            validation_result["valid"] = False
            validation_result["issues"].append(
                f"Invalid timer duration: {self._settings.timer_duration}"
            )

        if not self.MIN_SETTLE_DELAY <= self._settings.settle_delay <= self.MAX_SETTLE_DELAY:
            validation_result["valid"] = False
            validation_result["issues"].append(
                f"Invalid settle delay: {self._settings.settle_delay}"
            )

        if self._questions_file is not None and not Path(self._questions_file).exists():
            validation_result["valid"] = False
            validation_result["issues"].append(
                f"Questions file not found: {self._questions_file}"
            )

        if not isinstance(self._storage_path, str) or not self._storage_path.strip():
            validation_result["valid"] = False
            validation_result["issues"].append(
                f"Invalid storage path: {self._storage_path}"
            )

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        questions_str = self._questions_file or "built-in"
        feedback_str = "shown" if self._settings.show_choice_feedback else "hidden"

        return (
            f"Quiz Settings:\n"
            f"• Timer: {self._settings.timer_duration} seconds\n"
            f"• Settle delay: {self._settings.settle_delay} seconds\n"
            f"• Choice feedback: {feedback_str}\n"
            f"• Questions: {questions_str}\n"
            f"• History file: {self._storage_path}"
        )

    def get_intro_text(self, question_count: int) -> str:
        """Menu line describing the quiz about to be taken."""
        return f"{question_count} questions - {self._settings.timer_duration} seconds per question"
