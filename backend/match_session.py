import asyncio
import itertools
import logging
import math
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional, Sequence

import config
from errors import (DuplicateAnswer, GameInProgress, InsufficientPlayers, NoActiveQuestion,
                    NotHost, PlayerNotFound, StateError, ValidationError)
from models import (FinalResults, GameSettings, GameStats, QuestionBase, RankedAnswer,
                    RoundAnswer, RoundResult, RoundStats, ScoreUpdate)
from player_roster import PlayerRoster
from scoring import accuracy_percent, calculate_points, round_half_up
from session_directory import FINISHED, WAITING

logger = logging.getLogger(__name__)


class RoundPhase(str, Enum):
    INITIALIZING = "initializing"
    AWAITING_ANSWERS = "awaiting_answers"
    ROUND_COMPLETE = "round_complete"
    FINISHED = "finished"


class AnswerOutcome(NamedTuple):
    answer: RoundAnswer
    score: ScoreUpdate
    round_result: Optional[RoundResult] = None


def normalize_answer(value: Any) -> str:
    """Canonical text used to compare a submitted answer with the answer key."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value).strip().lower()


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class MatchSession:
    """Round state machine for one game in one room.

    The active roster is frozen at start and only shrinks (disconnects). A
    round closes once every active player has answered, or when
    ``expire_round`` is called at the deadline.
    """

    def __init__(self, room_code: str, player_ids: Sequence[str], settings: GameSettings,
                 questions: Sequence[QuestionBase], roster: PlayerRoster,
                 clock: Callable[[], float] = time.monotonic):
        self.room_code = room_code
        self.settings = settings
        self.questions: List[QuestionBase] = list(questions)
        self.roster = roster
        self.clock = clock

        self.active_players: List[str] = list(player_ids)
        self.scores: Dict[str, int] = {pid: 0 for pid in self.active_players}
        self.phase = RoundPhase.INITIALIZING
        self.round_index = -1
        self.answers: Dict[str, RoundAnswer] = {}
        self.history: List[RoundResult] = []
        self._all_answers: List[RoundAnswer] = []

        self.started_at = time.time()
        self._started_clock = clock()
        self._finished_clock: Optional[float] = None
        self.round_started_at: Optional[float] = None

        self.closed = False
        self._tasks: Dict[str, asyncio.Task] = {}
        self._task_ids = itertools.count(1)

    @classmethod
    def initialize(cls, room, initiator_id: str, roster: PlayerRoster, generator,
                   clock: Callable[[], float] = time.monotonic) -> "MatchSession":
        if initiator_id != room.host_id:
            raise NotHost("Only the host can start the game")
        if room.status not in (WAITING, FINISHED) or (
                room.match is not None and room.match.phase != RoundPhase.FINISHED):
            raise GameInProgress("A game is already running in this room")
        if len(room.players) < config.MIN_PLAYERS_TO_START:
            raise InsufficientPlayers(f"At least {config.MIN_PLAYERS_TO_START} players are needed to start")

        settings = room.settings
        questions = generator.generate_set(
            settings.total_questions,
            settings.difficulty_level,
            settings.categories,
            settings.question_time,
        )
        for player_id in room.player_ids:
            roster.reset_stats(player_id)

        logger.info("Match initialized in room %s: %d players, %d questions",
                    room.code, len(room.players), len(questions))
        return cls(room.code, room.player_ids, settings, questions, roster, clock)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def question_number(self) -> int:
        return self.round_index + 1

    @property
    def current_question(self) -> Optional[QuestionBase]:
        if 0 <= self.round_index < len(self.questions):
            return self.questions[self.round_index]
        return None

    @property
    def time_limit(self) -> int:
        question = self.current_question
        if question is not None and question.time_limit:
            return question.time_limit
        return self.settings.question_time

    def is_active(self, player_id: str) -> bool:
        return player_id in self.active_players

    def pending_players(self) -> List[str]:
        return [pid for pid in self.active_players if pid not in self.answers]

    def _ensure_open(self):
        if self.closed:
            raise StateError("Game session is closed")

    def _open_round(self, index: int) -> QuestionBase:
        self.round_index = index
        self.answers = {}
        self.phase = RoundPhase.AWAITING_ANSWERS
        self.round_started_at = self.clock()
        logger.debug("Room %s: question %d/%d open", self.room_code, self.question_number, self.total_questions)
        return self.questions[index]

    def begin_round(self) -> QuestionBase:
        self._ensure_open()
        if self.phase != RoundPhase.INITIALIZING:
            raise StateError("Game has already started")
        if not self.questions:
            raise StateError("No questions to play")
        return self._open_round(0)

    def advance(self) -> Optional[QuestionBase]:
        """Open the next round, or finish the game and return None."""
        self._ensure_open()
        if self.phase != RoundPhase.ROUND_COMPLETE:
            raise StateError("Current round is not complete")
        if self.round_index + 1 < len(self.questions):
            return self._open_round(self.round_index + 1)
        self.phase = RoundPhase.FINISHED
        self._finished_clock = self.clock()
        logger.info("Room %s: game finished after %d rounds", self.room_code, len(self.history))
        return None

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    def submit_answer(self, player_id: str, raw_answer: Any, time_remaining: Any) -> AnswerOutcome:
        question = self.current_question
        if self.closed or question is None or self.phase in (RoundPhase.INITIALIZING, RoundPhase.FINISHED):
            raise NoActiveQuestion()
        if self.phase != RoundPhase.AWAITING_ANSWERS:
            raise StateError("This round is already closed")
        if player_id not in self.active_players:
            raise PlayerNotFound("Player is not part of this game")
        if player_id in self.answers:
            raise DuplicateAnswer()
        if isinstance(time_remaining, bool) or not isinstance(time_remaining, (int, float)):
            raise ValidationError("timeRemaining must be a number")
        try:
            time_remaining = float(time_remaining)
        except OverflowError:
            raise ValidationError("timeRemaining is out of range") from None
        if not math.isfinite(time_remaining):
            raise ValidationError("timeRemaining must be a number")

        response_time = max(0, round_half_up((self.clock() - self.round_started_at) * 1000))
        is_correct = normalize_answer(raw_answer) == normalize_answer(question.correct_answer)

        player = self.roster.require_player(player_id)
        points = 0
        if is_correct:
            points = calculate_points(question.difficulty, self.time_limit, time_remaining, player.streak + 1)

        update = self.roster.update_score(player_id, points, is_correct, response_time,
                                          question.category, question.difficulty)
        self.scores[player_id] = self.scores.get(player_id, 0) + points

        answer = RoundAnswer(
            player_id=player_id,
            answer=raw_answer,
            is_correct=is_correct,
            response_time=response_time,
            time_remaining=time_remaining,
            points_earned=points,
            submitted_at=time.time(),
        )
        self.answers[player_id] = answer
        logger.debug("Room %s: %s answered %s (%s, +%d)", self.room_code, player.name,
                     raw_answer, "correct" if is_correct else "wrong", points)

        result = self._complete_round() if self._barrier_reached() else None
        return AnswerOutcome(answer, update, result)

    def _barrier_reached(self) -> bool:
        answered = sum(1 for pid in self.answers if pid in self.active_players)
        return answered >= len(self.active_players)

    def remove_player(self, player_id: str) -> Optional[RoundResult]:
        """Drop a player from the active roster; may close the open round."""
        if player_id not in self.active_players:
            return None
        self.active_players.remove(player_id)
        logger.info("Room %s: player %s left the game (%d remain)",
                    self.room_code, player_id, len(self.active_players))
        if self.phase == RoundPhase.AWAITING_ANSWERS and not self.closed and self._barrier_reached():
            return self._complete_round()
        return None

    def expire_round(self) -> RoundResult:
        """Close the open round at its deadline."""
        self._ensure_open()
        if self.phase != RoundPhase.AWAITING_ANSWERS:
            raise StateError("No round is waiting for answers")
        for player_id in self.pending_players():
            self.roster.break_streak(player_id)
        logger.info("Room %s: question %d expired with %d/%d answers", self.room_code,
                    self.question_number, len(self.answers), len(self.active_players))
        return self._complete_round(expired=True)

    def _complete_round(self, expired: bool = False) -> RoundResult:
        question = self.current_question
        answers = [a for pid, a in self.answers.items() if pid in self.active_players]
        ordered = sorted(answers, key=lambda a: (not a.is_correct, -a.points_earned, a.response_time))

        round_ranking = tuple(
            RankedAnswer(
                rank=i + 1,
                player_id=a.player_id,
                is_correct=a.is_correct,
                points_earned=a.points_earned,
                response_time=a.response_time,
                current_total_score=self.scores.get(a.player_id, 0),
            )
            for i, a in enumerate(ordered)
        )

        correct = sum(1 for a in answers if a.is_correct)
        latencies = [a.response_time for a in answers]
        stats = RoundStats(
            total_players=len(self.active_players),
            players_answered=len(answers),
            correct_answers=correct,
            accuracy=accuracy_percent(correct, len(answers)),
            average_response_time=round_half_up(sum(latencies) / len(latencies)) if latencies else 0,
            fastest_response=min(latencies) if latencies else None,
        )

        result = RoundResult(
            question_number=self.question_number,
            question=question,
            correct_answer=question.correct_answer,
            explanation=question.explanation,
            stats=stats,
            round_ranking=round_ranking,
            overall_ranking=tuple(self.roster.rank(self.active_players)),
            expired=expired,
        )
        self.history.append(result)
        self._all_answers.extend(answers)
        self.phase = RoundPhase.ROUND_COMPLETE
        self.cancel("deadline")
        logger.info("Room %s: round %d complete (%d/%d correct)", self.room_code,
                    self.question_number, correct, len(answers))
        return result

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def final_results(self) -> FinalResults:
        if self.phase != RoundPhase.FINISHED:
            raise StateError("Game has not finished yet")

        ranking = tuple(self.roster.rank(self.active_players))
        latencies = [a.response_time for a in self._all_answers]
        correct = sum(1 for a in self._all_answers if a.is_correct)
        game_stats = GameStats(
            total_answers=len(self._all_answers),
            correct_answers=correct,
            overall_accuracy=accuracy_percent(correct, len(self._all_answers)),
            average_response_time=round_half_up(sum(latencies) / len(latencies)) if latencies else 0,
            fastest_response=min(latencies) if latencies else None,
            slowest_response=max(latencies) if latencies else None,
        )
        return FinalResults(
            game_id=self.room_code,
            total_questions=self.total_questions,
            total_players=len(self.active_players),
            final_ranking=ranking,
            winner=ranking[0] if ranking else None,
            game_stats=game_stats,
            game_duration=round_half_up(self._finished_clock - self._started_clock),
            round_history=tuple(self.history),
        )

    # ------------------------------------------------------------------
    # Scheduled transitions
    # ------------------------------------------------------------------

    def schedule(self, delay: float, callback: Callable[[], Awaitable[None]],
                 name: Optional[str] = None) -> asyncio.Task:
        """Run ``callback`` after ``delay`` seconds as a task owned by this session.

        Scheduling under a name that is already pending replaces that task.
        """
        self._ensure_open()
        name = name or f"task-{next(self._task_ids)}"
        self.cancel(name)

        async def run():
            try:
                await asyncio.sleep(delay)
                await callback()
            except Exception:
                logger.exception("Scheduled %s failed in room %s", name, self.room_code)
            finally:
                if self._tasks.get(name) is asyncio.current_task():
                    del self._tasks[name]

        task = asyncio.create_task(run(), name=f"{self.room_code}:{name}")
        self._tasks[name] = task
        return task

    def cancel(self, name: str) -> bool:
        task = self._tasks.pop(name, None)
        if task is None or task.done() or task is _current_task():
            return False
        task.cancel()
        return True

    def pending_tasks(self) -> List[str]:
        return [name for name, task in self._tasks.items() if not task.done()]

    def close(self):
        """Cancel every owned task and stop accepting input."""
        if self.closed:
            return
        self.closed = True
        for name in list(self._tasks):
            self.cancel(name)
        logger.debug("Room %s: session closed", self.room_code)
