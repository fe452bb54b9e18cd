import logging
import math
import random
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import config
from errors import ValidationError
from models import ArithmeticQuestion, QuestionBase
from question_bank import PREDEFINED_QUESTIONS

logger = logging.getLogger(__name__)

ADDITION_RANGES = {"easy": (1, 50), "medium": (50, 500), "hard": (500, 2000)}
SUBTRACTION_RANGES = ADDITION_RANGES
MULTIPLICATION_RANGES = {"easy": (1, 12), "medium": (10, 25), "hard": (25, 50)}
DIVISION_RANGES = {"easy": (2, 12), "medium": (10, 25), "hard": (25, 50)}

EXPONENT_CONFIGS = {
    "easy": {"bases": [2, 3, 4, 5], "exponents": [2, 3]},
    "medium": {"bases": [2, 3, 4, 5, 6, 7, 8], "exponents": [2, 3]},
    "hard": {"bases": [2, 3, 4, 5, 6, 7, 8, 9, 10], "exponents": [2, 3, 4]},
}

SQUARE_ROOT_POOLS = {
    "easy": [1, 4, 9, 16, 25, 36, 49, 64, 81, 100],
    "medium": [100, 121, 144, 169, 196, 225, 256, 289, 324, 400],
    "hard": [400, 441, 484, 529, 576, 625, 676, 729, 784, 900],
}

ORDER_OF_OPERATIONS_CONFIGS = {
    "easy": {"shapes": ["add_mul", "mul_add", "paren_add_mul"], "max": 8},
    "medium": {"shapes": ["add_mul", "mul_add", "paren_add_mul", "paren_sub_mul", "paren_mul_add"], "max": 12},
    "hard": {"shapes": ["add_mul", "mul_add", "paren_add_mul", "paren_sub_mul", "paren_mul_add", "mixed_four"],
             "max": 15},
}

DIFFICULTY_DISTRIBUTIONS = {
    "easy": {"easy": 0.7, "medium": 0.3, "hard": 0.0},
    "medium": {"easy": 0.2, "medium": 0.6, "hard": 0.2},
    "hard": {"easy": 0.1, "medium": 0.3, "hard": 0.6},
}

MAX_DISTRACTOR_DRAWS = 50


class QuestionGenerator:
    """Produces single questions and de-duplicated question sets.

    Arithmetic questions are either copies of predefined ones or generated on
    the fly; logic and geometry always come from the predefined pool.
    """

    def __init__(self, rng: Optional[random.Random] = None,
                 predefined: Optional[Dict[str, Dict[str, List[QuestionBase]]]] = None):
        self.rng = rng or random.Random()
        self.predefined = predefined if predefined is not None else PREDEFINED_QUESTIONS
        self.operations: Dict[str, Callable[[str], ArithmeticQuestion]] = {
            "addition": self.generate_addition,
            "subtraction": self.generate_subtraction,
            "multiplication": self.generate_multiplication,
            "division": self.generate_division,
            "exponent": self.generate_exponent,
            "square_root": self.generate_square_root,
            "order_of_operations": self.generate_order_of_operations,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def next_question(self, category: Optional[str] = None, difficulty: Optional[str] = None) -> QuestionBase:
        if category is None:
            category = self.rng.choice(config.VALID_CATEGORIES)
        if difficulty is None:
            difficulty = self.rng.choice(config.VALID_DIFFICULTIES)
        if category not in config.VALID_CATEGORIES:
            raise ValidationError(f"Unknown category '{category}'")
        if difficulty not in config.VALID_DIFFICULTIES:
            raise ValidationError(f"Unknown difficulty '{difficulty}'")

        has_pool = bool(self.predefined.get(category, {}).get(difficulty))
        use_predefined = self.rng.random() < config.PREDEFINED_QUESTION_PROBABILITY
        if category != "arithmetic" or (use_predefined and has_pool):
            return self.predefined_question(category, difficulty)
        return self.generate_arithmetic(difficulty)

    def generate_set(self, count: int, base_difficulty: str = config.DEFAULT_DIFFICULTY,
                     categories: Optional[Sequence[str]] = None,
                     time_limit: Optional[int] = None) -> List[QuestionBase]:
        """Build ``count`` questions, cycling through ``categories``.

        Each slot retries a few times to avoid repeating a (prompt, answer)
        pair already in the set; if every attempt collides the duplicate is
        kept so generation never blocks.
        """
        categories = list(categories or config.VALID_CATEGORIES)
        distribution = DIFFICULTY_DISTRIBUTIONS.get(base_difficulty, DIFFICULTY_DISTRIBUTIONS["medium"])
        used = set()
        questions: List[QuestionBase] = []

        for i in range(count):
            category = categories[i % len(categories)]
            difficulty = self.sample_difficulty(distribution)

            for _ in range(config.MAX_UNIQUE_QUESTION_ATTEMPTS):
                question = self.next_question(category, difficulty)
                if question.dedup_key() not in used:
                    break
            else:
                logger.debug("Accepting duplicate question after %d attempts: %s",
                             config.MAX_UNIQUE_QUESTION_ATTEMPTS, question.prompt)

            used.add(question.dedup_key())
            questions.append(question.model_copy(update={"sequence_id": i + 1, "time_limit": time_limit}))

        logger.info("Generated set of %d questions (base difficulty %s, categories %s)",
                    len(questions), base_difficulty, ",".join(categories))
        return questions

    def predefined_question(self, category: str, difficulty: str) -> QuestionBase:
        pool = self.predefined.get(category, {}).get(difficulty)
        if not pool:
            raise ValueError(f"No predefined questions for {category}/{difficulty}")
        # Copy so nothing a session does can leak into the shared pool
        return self.rng.choice(pool).model_copy()

    def sample_difficulty(self, distribution: Dict[str, float]) -> str:
        roll = self.rng.random()
        cumulative = 0.0
        for difficulty, probability in distribution.items():
            cumulative += probability
            if roll < cumulative:
                return difficulty
        return "medium"

    # ------------------------------------------------------------------
    # Arithmetic generators
    # ------------------------------------------------------------------

    def generate_arithmetic(self, difficulty: str) -> ArithmeticQuestion:
        operation = self.rng.choice(list(self.operations))
        return self.operations[operation](difficulty)

    def generate_addition(self, difficulty: str) -> ArithmeticQuestion:
        low, high = ADDITION_RANGES[difficulty]
        a = self.rng.randint(low, high)
        b = self.rng.randint(low, high)
        answer = a + b
        return self._build("addition", difficulty, f"{a} + {b}", answer, self.distractors(answer))

    def generate_subtraction(self, difficulty: str) -> ArithmeticQuestion:
        low, high = SUBTRACTION_RANGES[difficulty]
        a = self.rng.randint(low, high)
        b = self.rng.randint(low, high)
        if b > a:
            a, b = b, a
        answer = a - b
        return self._build("subtraction", difficulty, f"{a} - {b}", answer, self.distractors(answer))

    def generate_multiplication(self, difficulty: str) -> ArithmeticQuestion:
        low, high = MULTIPLICATION_RANGES[difficulty]
        a = self.rng.randint(low, high)
        b = self.rng.randint(low, high)
        answer = a * b
        return self._build("multiplication", difficulty, f"{a} × {b}", answer, self.distractors(answer))

    def generate_division(self, difficulty: str) -> ArithmeticQuestion:
        low, high = DIVISION_RANGES[difficulty]
        divisor = self.rng.randint(low, high)
        quotient = self.rng.randint(low, high)
        dividend = divisor * quotient
        return self._build("division", difficulty, f"{dividend} ÷ {divisor}", quotient,
                           self.distractors(quotient))

    def generate_exponent(self, difficulty: str) -> ArithmeticQuestion:
        cfg = EXPONENT_CONFIGS.get(difficulty, EXPONENT_CONFIGS["medium"])
        base = self.rng.choice(cfg["bases"])
        exponent = self.rng.choice(cfg["exponents"])
        answer = base ** exponent
        return self._build("exponent", difficulty, f"{base}^{exponent}", answer, self.distractors(answer))

    def generate_square_root(self, difficulty: str) -> ArithmeticQuestion:
        pool = SQUARE_ROOT_POOLS.get(difficulty, SQUARE_ROOT_POOLS["easy"])
        radicand = self.rng.choice(pool)
        answer = math.isqrt(radicand)
        return self._build("square_root", difficulty, f"√{radicand}", answer, self.distractors(answer))

    def generate_order_of_operations(self, difficulty: str) -> ArithmeticQuestion:
        cfg = ORDER_OF_OPERATIONS_CONFIGS.get(difficulty, ORDER_OF_OPERATIONS_CONFIGS["medium"])
        shape = self.rng.choice(cfg["shapes"])
        hi = cfg["max"]
        r = self.rng.randint

        if shape == "add_mul":
            a, b, c = r(1, hi), r(2, hi), r(2, hi)
            expression, correct = f"{a} + {b} × {c}", a + b * c
            mistakes = [(a + b) * c, a * b + c, a + b + c]
        elif shape == "mul_add":
            a, b, c = r(2, hi), r(2, hi), r(1, hi)
            expression, correct = f"{a} × {b} + {c}", a * b + c
            mistakes = [a * (b + c), a + b + c, a * b - c]
        elif shape == "paren_add_mul":
            a, b, c = r(1, hi), r(1, hi), r(2, hi)
            expression, correct = f"({a} + {b}) × {c}", (a + b) * c
            mistakes = [a + b * c, a * c + b, a + b + c]
        elif shape == "paren_sub_mul":
            b = r(1, hi - 1)
            a, c = r(b + 1, hi), r(2, hi)
            expression, correct = f"({a} - {b}) × {c}", (a - b) * c
            mistakes = [a - b * c, a * c - b, (a + b) * c]
        elif shape == "paren_mul_add":
            a, b, c = r(2, hi), r(2, hi), r(1, hi)
            expression, correct = f"{a} × ({b} + {c})", a * (b + c)
            mistakes = [a * b + c, a * b * c, (a + b) * c]
        else:  # mixed_four
            a, b, c = r(1, hi), r(2, hi), r(2, hi)
            d = r(1, b * c)
            expression, correct = f"{a} + {b} × {c} - {d}", a + b * c - d
            mistakes = [(a + b) * c - d, a + b * (c - d), a + b + c - d]

        used = {correct}
        wrongs: List[int] = []
        for value in mistakes:
            if value >= 0 and value not in used:
                used.add(value)
                wrongs.append(value)
        wrongs.extend(self._near_values(correct, used, config.DISTRACTOR_COUNT - len(wrongs)))

        return self._build("order_of_operations", difficulty, expression, correct, wrongs,
                           explanation=f"Order of operations: {expression} = {correct}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def distractors(self, correct: int, count: int = config.DISTRACTOR_COUNT) -> List[int]:
        """Distinct, non-negative wrong answers clustered around ``correct``."""
        spread = max(1, int(abs(correct) * config.DISTRACTOR_SPREAD))
        used = {correct}
        wrongs: List[int] = []
        draws = 0
        while len(wrongs) < count and draws < MAX_DISTRACTOR_DRAWS:
            draws += 1
            candidate = max(0, correct + self.rng.randint(-spread, spread))
            if candidate not in used:
                used.add(candidate)
                wrongs.append(candidate)
        # Small answers leave too few values inside the spread
        wrongs.extend(self._near_values(correct, used, count - len(wrongs)))
        return wrongs

    @staticmethod
    def _near_values(correct: int, used: set, count: int) -> List[int]:
        values: List[int] = []
        step = 1
        while len(values) < count:
            for candidate in (correct + step, correct - step):
                if len(values) < count and candidate >= 0 and candidate not in used:
                    used.add(candidate)
                    values.append(candidate)
            step += 1
        return values

    def _build(self, operation: str, difficulty: str, expression: str, correct: int,
               wrongs: Iterable[int], explanation: Optional[str] = None) -> ArithmeticQuestion:
        options = [str(correct)] + [str(w) for w in wrongs]
        self.rng.shuffle(options)
        return ArithmeticQuestion(
            prompt=f"What is {expression}?",
            options=tuple(options),
            correct_answer=str(correct),
            explanation=explanation or f"{expression} = {correct}",
            difficulty=difficulty,
            operation=operation,
        )
