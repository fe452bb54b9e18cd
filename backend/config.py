"""Centralized configuration: all env vars in one place."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3001"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = 10  # max messages per second per client
MAX_WS_MESSAGE_SIZE = 4096  # bytes

# --- Rooms ---
MAX_ROOMS = 200
MAX_ROOM_CODE_ATTEMPTS = 20
ROOM_CODE_LENGTH = 6
ROOM_IDLE_SECONDS = int(os.getenv("ROOM_IDLE_SECONDS", str(2 * 60 * 60)))
CLEANUP_INTERVAL_SECONDS = int(os.getenv("CLEANUP_INTERVAL_SECONDS", str(30 * 60)))

# --- Players ---
MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 20
MIN_PLAYERS_TO_START = 2

# --- Game settings (defaults and bounds) ---
DEFAULT_MAX_PLAYERS = 30
MAX_PLAYERS_PER_ROOM = 30
DEFAULT_QUESTION_TIME = 30
MIN_QUESTION_TIME = 5
MAX_QUESTION_TIME = 120
DEFAULT_NUM_QUESTIONS = 10
MIN_QUESTIONS = 1
MAX_QUESTIONS = 50
DEFAULT_DIFFICULTY = "medium"
VALID_DIFFICULTIES = ("easy", "medium", "hard")
VALID_CATEGORIES = ("arithmetic", "logic", "geometry")

# --- Round timing ---
GAME_START_DELAY_SECONDS = float(os.getenv("GAME_START_DELAY_SECONDS", "3"))
RESULTS_DISPLAY_SECONDS = float(os.getenv("RESULTS_DISPLAY_SECONDS", "5"))
ROUND_DEADLINE_GRACE_SECONDS = float(os.getenv("ROUND_DEADLINE_GRACE_SECONDS", "2"))

# --- Question generation ---
PREDEFINED_QUESTION_PROBABILITY = 0.7
MAX_UNIQUE_QUESTION_ATTEMPTS = 10
DISTRACTOR_COUNT = 3
DISTRACTOR_SPREAD = 0.3  # distractors land within +/-30% of the answer

# --- Scoring ---
BASE_POINTS = 100
DIFFICULTY_MULTIPLIERS = {"easy": 0.8, "medium": 1.0, "hard": 1.3}
MAX_SPEED_BONUS_RATIO = 0.5
STREAK_BONUS_THRESHOLD = 3
MAX_STREAK_BONUS = 0.5

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")  # empty = stdout only


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
