"""Points, accuracy and performance labels.

``calculate_points`` is the only scoring formula in the game: live answers and
any score preview both go through it.
"""
import math

import config

PERFORMANCE_TIERS = (
    # (min accuracy %, max average response ms, label)
    (90, 5000, "Excellent"),
    (75, 10000, "Very Good"),
    (60, 15000, "Good"),
    (40, None, "Fair"),
)
LOWEST_TIER = "Needs Practice"


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (292.5 -> 293)."""
    return int(math.floor(value + 0.5))


def difficulty_multiplier(difficulty: str) -> float:
    return config.DIFFICULTY_MULTIPLIERS.get(difficulty, 1.0)


def calculate_points(difficulty: str, max_time: float, time_remaining: float, streak: int) -> int:
    """Points for a correct answer.

    ``streak`` is the player's streak including this answer. Callers award 0
    for incorrect answers without calling this.
    """
    base = config.BASE_POINTS * difficulty_multiplier(difficulty)

    speed_ratio = time_remaining / max_time if max_time > 0 else 0.0
    speed_ratio = min(max(speed_ratio, 0.0), 1.0)
    speed_bonus = round_half_up(base * config.MAX_SPEED_BONUS_RATIO * speed_ratio)
    subtotal = base + speed_bonus

    if streak >= config.STREAK_BONUS_THRESHOLD:
        streak_bonus = min(streak / 10, config.MAX_STREAK_BONUS)
        subtotal = round_half_up(subtotal * (1 + streak_bonus))

    return round_half_up(subtotal)


def accuracy_percent(correct: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up(correct / total * 100)


def performance_label(accuracy: int, average_response_ms: float) -> str:
    for min_accuracy, max_average, label in PERFORMANCE_TIERS:
        if accuracy >= min_accuracy and (max_average is None or average_response_ms <= max_average):
            return label
    return LOWEST_TIER
