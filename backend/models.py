"""Pydantic records shared by the game core and the transport.

Field names are snake_case in Python and camelCase on the wire.
"""
import time
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

import config

Difficulty = Literal["easy", "medium", "hard"]


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self, **kwargs) -> dict:
        return self.model_dump(mode="json", by_alias=True, **kwargs)


class FrozenWireModel(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Questions
# ---------------------------------------------------------------------------

class QuestionBase(FrozenWireModel):
    prompt: str
    options: Tuple[str, ...]
    correct_answer: str
    explanation: str = ""
    difficulty: Difficulty
    sequence_id: Optional[int] = None
    time_limit: Optional[int] = None

    def dedup_key(self) -> Tuple[str, str]:
        return (self.prompt, self.correct_answer)

    def player_view(self) -> dict:
        """Question as sent to players while it is live (no answer key)."""
        return self.to_wire(exclude={"correct_answer", "explanation"})


class ArithmeticQuestion(QuestionBase):
    category: Literal["arithmetic"] = "arithmetic"
    operation: str = "predefined"


class LogicQuestion(QuestionBase):
    category: Literal["logic"] = "logic"


class GeometryQuestion(QuestionBase):
    category: Literal["geometry"] = "geometry"


Question = Annotated[
    Union[ArithmeticQuestion, LogicQuestion, GeometryQuestion],
    Field(discriminator="category"),
]
question_adapter = TypeAdapter(Question)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class GameSettings(WireModel):
    max_players: int = config.DEFAULT_MAX_PLAYERS
    question_time: int = config.DEFAULT_QUESTION_TIME
    total_questions: int = config.DEFAULT_NUM_QUESTIONS
    difficulty_level: str = config.DEFAULT_DIFFICULTY
    categories: List[str] = Field(default_factory=lambda: list(config.VALID_CATEGORIES))

    @field_validator('max_players')
    @classmethod
    def validate_max_players(cls, v: int) -> int:
        if v < config.MIN_PLAYERS_TO_START or v > config.MAX_PLAYERS_PER_ROOM:
            raise ValueError(f'Max players must be {config.MIN_PLAYERS_TO_START}-{config.MAX_PLAYERS_PER_ROOM}')
        return v

    @field_validator('question_time')
    @classmethod
    def validate_question_time(cls, v: int) -> int:
        if v < config.MIN_QUESTION_TIME or v > config.MAX_QUESTION_TIME:
            raise ValueError(f'Question time must be {config.MIN_QUESTION_TIME}-{config.MAX_QUESTION_TIME} seconds')
        return v

    @field_validator('total_questions')
    @classmethod
    def validate_total_questions(cls, v: int) -> int:
        if v < config.MIN_QUESTIONS or v > config.MAX_QUESTIONS:
            raise ValueError(f'Number of questions must be {config.MIN_QUESTIONS}-{config.MAX_QUESTIONS}')
        return v

    @field_validator('difficulty_level')
    @classmethod
    def validate_difficulty(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in config.VALID_DIFFICULTIES:
            raise ValueError(f'Difficulty must be one of: {", ".join(config.VALID_DIFFICULTIES)}')
        return v

    @field_validator('categories')
    @classmethod
    def validate_categories(cls, v: List[str]) -> List[str]:
        cleaned: List[str] = []
        for category in v:
            category = category.lower().strip()
            if category not in config.VALID_CATEGORIES:
                raise ValueError(f'Categories must be among: {", ".join(config.VALID_CATEGORIES)}')
            if category not in cleaned:
                cleaned.append(category)
        if not cleaned:
            raise ValueError('At least one category is required')
        return cleaned


# ---------------------------------------------------------------------------
# Players
# ---------------------------------------------------------------------------

def _category_counters() -> Dict[str, int]:
    return {category: 0 for category in config.VALID_CATEGORIES}


def _difficulty_counters() -> Dict[str, "DifficultyTally"]:
    return {difficulty: DifficultyTally() for difficulty in config.VALID_DIFFICULTIES}


class DifficultyTally(WireModel):
    correct: int = 0
    total: int = 0


class Player(WireModel):
    id: str
    name: str
    is_host: bool = False
    join_seq: int = 0
    joined_at: float = Field(default_factory=time.time)

    score: int = 0
    correct_answers: int = 0
    wrong_answers: int = 0
    streak: int = 0
    best_streak: int = 0
    average_response_time: int = 0  # ms

    correct_by_category: Dict[str, int] = Field(default_factory=_category_counters)
    difficulty_performance: Dict[str, DifficultyTally] = Field(default_factory=_difficulty_counters)
    response_times: List[int] = Field(default_factory=list)

    @property
    def total_answers(self) -> int:
        return self.correct_answers + self.wrong_answers

    def public(self) -> dict:
        return self.to_wire(include={"id", "name", "is_host", "score"})


class ScoreUpdate(WireModel):
    player_id: str
    player_name: str
    points_added: int
    old_score: int
    new_score: int
    is_correct: bool
    current_streak: int
    best_streak: int
    total_questions: int


class RankedPlayer(WireModel):
    rank: int
    player_id: str
    player_name: str
    total_score: int
    correct_answers: int
    total_answers: int
    best_streak: int
    average_response_time: int
    accuracy: int
    performance: str


# ---------------------------------------------------------------------------
# Rounds
# ---------------------------------------------------------------------------

class RoundAnswer(FrozenWireModel):
    player_id: str
    answer: Any
    is_correct: bool
    response_time: int  # ms, measured server-side
    time_remaining: float  # as reported by the client
    points_earned: int
    submitted_at: float


class RankedAnswer(FrozenWireModel):
    rank: int
    player_id: str
    is_correct: bool
    points_earned: int
    response_time: int
    current_total_score: int


class RoundStats(FrozenWireModel):
    total_players: int
    players_answered: int
    correct_answers: int
    accuracy: int
    average_response_time: int
    fastest_response: Optional[int] = None


class RoundResult(FrozenWireModel):
    question_number: int
    question: Question
    correct_answer: str
    explanation: str
    stats: RoundStats
    round_ranking: Tuple[RankedAnswer, ...]
    overall_ranking: Tuple[RankedPlayer, ...]
    expired: bool = False


class GameStats(FrozenWireModel):
    total_answers: int
    correct_answers: int
    overall_accuracy: int
    average_response_time: int
    fastest_response: Optional[int] = None
    slowest_response: Optional[int] = None


class FinalResults(FrozenWireModel):
    game_id: str
    total_questions: int
    total_players: int
    final_ranking: Tuple[RankedPlayer, ...]
    winner: Optional[RankedPlayer] = None
    game_stats: GameStats
    game_duration: int  # seconds
    round_history: Tuple[RoundResult, ...]


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class Outbound(BaseModel):
    """A message addressed to a set of connections."""
    recipients: List[str]
    message: Dict[str, Any]

    @property
    def type(self) -> str:
        return self.message.get("type", "")
