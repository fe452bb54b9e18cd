import itertools
import logging
import re
from typing import Dict, Iterable, List, Optional

import config
from errors import DuplicateConnection, InvalidName, PlayerNotFound, ValidationError
from models import DifficultyTally, Player, RankedPlayer, ScoreUpdate
from scoring import accuracy_percent, performance_label, round_half_up

logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r'^[a-zA-Z0-9\s\-_]+$')


def is_valid_player_name(name) -> bool:
    if not isinstance(name, str):
        return False
    name = name.strip()
    return (config.MIN_NAME_LENGTH <= len(name) <= config.MAX_NAME_LENGTH
            and bool(NAME_PATTERN.match(name)))


class PlayerRoster:
    """Session-scoped player records keyed by connection id."""

    def __init__(self):
        self.players: Dict[str, Player] = {}
        self._join_counter = itertools.count(1)

    def __len__(self) -> int:
        return len(self.players)

    def __contains__(self, player_id: str) -> bool:
        return player_id in self.players

    def create_player(self, connection_id: str, name: str, is_host: bool = False) -> Player:
        if not is_valid_player_name(name):
            raise InvalidName(
                f"Player name must be {config.MIN_NAME_LENGTH}-{config.MAX_NAME_LENGTH} characters "
                "(letters, digits, spaces, dashes or underscores)"
            )
        if connection_id in self.players:
            raise DuplicateConnection()

        player = Player(id=connection_id, name=name.strip(), is_host=is_host,
                        join_seq=next(self._join_counter))
        self.players[connection_id] = player
        logger.info("Player created: %s (%s)%s", player.name, connection_id, " [HOST]" if is_host else "")
        return player

    def get_player(self, player_id: str) -> Optional[Player]:
        return self.players.get(player_id)

    def require_player(self, player_id: str) -> Player:
        player = self.players.get(player_id)
        if player is None:
            raise PlayerNotFound(f"Player {player_id} not found")
        return player

    def update_score(self, player_id: str, points: int, was_correct: bool, response_time_ms: int = 0,
                     category: str = "", difficulty: str = config.DEFAULT_DIFFICULTY) -> ScoreUpdate:
        if points < 0:
            raise ValidationError("Score changes cannot be negative")
        player = self.require_player(player_id)

        old_score = player.score
        player.score += points

        if was_correct:
            player.correct_answers += 1
            player.streak += 1
            player.best_streak = max(player.best_streak, player.streak)
            if category in player.correct_by_category:
                player.correct_by_category[category] += 1
        else:
            player.wrong_answers += 1
            player.streak = 0

        tally = player.difficulty_performance.get(difficulty)
        if tally is not None:
            tally.total += 1
            if was_correct:
                tally.correct += 1

        if response_time_ms >= 0:
            player.response_times.append(int(response_time_ms))
            player.average_response_time = round_half_up(
                sum(player.response_times) / len(player.response_times))

        logger.debug("Score updated - %s: %d -> %d (+%d)", player.name, old_score, player.score, points)

        return ScoreUpdate(
            player_id=player_id,
            player_name=player.name,
            points_added=points,
            old_score=old_score,
            new_score=player.score,
            is_correct=was_correct,
            current_streak=player.streak,
            best_streak=player.best_streak,
            total_questions=player.total_answers,
        )

    def break_streak(self, player_id: str) -> None:
        player = self.players.get(player_id)
        if player is not None:
            player.streak = 0

    def rank(self, player_ids: Iterable[str]) -> List[RankedPlayer]:
        """Rank by score, then lower average response time, then join order."""
        players = [self.players[pid] for pid in player_ids if pid in self.players]
        players.sort(key=lambda p: (-p.score, p.average_response_time, p.join_seq))

        ranking = []
        for i, player in enumerate(players):
            accuracy = accuracy_percent(player.correct_answers, player.total_answers)
            ranking.append(RankedPlayer(
                rank=i + 1,
                player_id=player.id,
                player_name=player.name,
                total_score=player.score,
                correct_answers=player.correct_answers,
                total_answers=player.total_answers,
                best_streak=player.best_streak,
                average_response_time=player.average_response_time,
                accuracy=accuracy,
                performance=performance_label(accuracy, player.average_response_time),
            ))
        return ranking

    def transfer_host(self, player_id: str) -> bool:
        player = self.players.get(player_id)
        if player is None:
            return False
        player.is_host = True
        logger.info("%s is now host", player.name)
        return True

    def remove(self, player_id: str) -> Optional[Player]:
        player = self.players.pop(player_id, None)
        if player is not None:
            logger.info("Player removed: %s (%s)", player.name, player_id)
        return player

    def reset_stats(self, player_id: str) -> bool:
        """Clear game statistics before a rematch, keeping identity and host flag."""
        player = self.players.get(player_id)
        if player is None:
            return False
        player.score = 0
        player.correct_answers = 0
        player.wrong_answers = 0
        player.streak = 0
        player.best_streak = 0
        player.average_response_time = 0
        player.response_times = []
        player.correct_by_category = {category: 0 for category in config.VALID_CATEGORIES}
        player.difficulty_performance = {d: DifficultyTally() for d in config.VALID_DIFFICULTIES}
        return True

    def general_stats(self) -> dict:
        players = list(self.players.values())
        if not players:
            return {"totalPlayers": 0, "averageScore": 0, "totalQuestionsAnswered": 0, "overallAccuracy": 0}
        total_questions = sum(p.total_answers for p in players)
        total_correct = sum(p.correct_answers for p in players)
        return {
            "totalPlayers": len(players),
            "averageScore": round_half_up(sum(p.score for p in players) / len(players)),
            "totalQuestionsAnswered": total_questions,
            "overallAccuracy": accuracy_percent(total_correct, total_questions),
        }
