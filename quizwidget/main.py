"""
Quiz widget bootstrap.

Builds a ready-to-use QuizController for an embedding application:

    controller = create_app("config.json")
    controller.start_quiz()  # from inside the host's asyncio event loop

Configuration:
    1. Optional config.json with "quiz", "storage" and "logging" sections
    2. Environment variables override the file:
       QUIZWIDGET_QUESTIONS_FILE, QUIZWIDGET_STORAGE_PATH, QUIZWIDGET_TIMER_DURATION
"""
import logging
from pathlib import Path
from typing import Optional

from .attempt_store import JsonAttemptStore
from .config_manager import ConfigManager
from .question_store import QuestionStore
from .quiz_controller import QuizController


def setup_logging_from_config(config_manager: ConfigManager) -> None:
    """Set up logging based on configuration."""
    log_level = getattr(logging, config_manager.get_log_level().upper(), logging.INFO)
    handlers = [logging.StreamHandler()]

    log_directory = config_manager.get_log_directory()
    if log_directory:
        log_path = Path(log_directory)
        log_path.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path / "quizwidget.log", encoding='utf-8'))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def load_config(config_path: Optional[str] = None) -> ConfigManager:
    """
    Build a ConfigManager from a JSON file and the environment.

    Raises:
        ConfigError: If the configuration file exists but is invalid
    """
    config_manager = ConfigManager()
    if config_path:
        config_manager.load_from_file(config_path)
    else:
        config_manager.apply_environment()
    return config_manager


def create_app(config_path: Optional[str] = None, configure_logging: bool = True) -> QuizController:
    """
    Load configuration, set up logging and return an initialized controller.

    Args:
        config_path: Optional JSON configuration file
        configure_logging: Set to False when the host application owns logging

    Raises:
        ConfigError: If the configuration file is invalid
        InvalidQuestionDataError: If the question dataset is unusable
    """
    config_manager = load_config(config_path)
    if configure_logging:
        setup_logging_from_config(config_manager)

    logger = logging.getLogger(__name__)
    for line in config_manager.get_settings_summary().splitlines():
        logger.debug(line)

    controller = QuizController(
        QuestionStore(config_manager.get_questions_file()),
        JsonAttemptStore(config_manager.get_storage_path()),
        config_manager
    )
    controller.initialize()
    return controller
