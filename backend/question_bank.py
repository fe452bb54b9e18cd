"""Predefined questions, keyed by category and difficulty."""
from typing import Dict, List

from models import QuestionBase, question_adapter

_RAW_QUESTIONS = {
    "arithmetic": {
        "easy": [
            {
                "prompt": "What is 15 + 23?",
                "options": ["38", "37", "39", "36"],
                "correct_answer": "38",
                "explanation": "15 + 23 = 38. Adding two two-digit numbers.",
            },
            {
                "prompt": "What is 8 × 7?",
                "options": ["54", "56", "58", "52"],
                "correct_answer": "56",
                "explanation": "8 × 7 = 56. From the 8 times table.",
            },
            {
                "prompt": "What is 100 - 37?",
                "options": ["63", "62", "64", "61"],
                "correct_answer": "63",
                "explanation": "100 - 37 = 63. Subtraction with borrowing.",
            },
        ],
        "medium": [
            {
                "prompt": "What is 156 + 289?",
                "options": ["445", "435", "455", "425"],
                "correct_answer": "445",
                "explanation": "156 + 289 = 445. Three-digit addition with carrying.",
            },
            {
                "prompt": "What is 24 × 15?",
                "options": ["360", "350", "370", "340"],
                "correct_answer": "360",
                "explanation": "24 × 15 = 24 × 10 + 24 × 5 = 240 + 120 = 360.",
            },
            {
                "prompt": "What is 432 ÷ 18?",
                "options": ["24", "22", "26", "20"],
                "correct_answer": "24",
                "explanation": "432 ÷ 18 = 24. Exact division.",
            },
        ],
        "hard": [
            {
                "prompt": "What is 1,247 + 3,856 - 2,199?",
                "options": ["2,904", "2,894", "2,914", "2,884"],
                "correct_answer": "2,904",
                "explanation": "1,247 + 3,856 = 5,103; then 5,103 - 2,199 = 2,904.",
            },
            {
                "prompt": "What is 127 × 63?",
                "options": ["8,001", "7,991", "8,011", "7,981"],
                "correct_answer": "8,001",
                "explanation": "127 × 63 = 8,001.",
            },
        ],
    },
    "logic": {
        "easy": [
            {
                "prompt": "What comes next: 2, 4, 6, 8, ...?",
                "options": ["10", "12", "9", "11"],
                "correct_answer": "10",
                "explanation": "Even numbers: add 2 each time.",
            },
            {
                "prompt": "Ana has 5 more sweets than Luis. Luis has 8. How many does Ana have?",
                "options": ["13", "12", "14", "11"],
                "correct_answer": "13",
                "explanation": "Ana = Luis + 5 = 8 + 5 = 13.",
            },
            {
                "prompt": "What comes next: 5, 10, 15, 20, ...?",
                "options": ["25", "30", "24", "21"],
                "correct_answer": "25",
                "explanation": "Multiples of 5: add 5 each time.",
            },
        ],
        "medium": [
            {
                "prompt": "What comes next: 3, 6, 12, 24, ...?",
                "options": ["48", "36", "42", "50"],
                "correct_answer": "48",
                "explanation": "Each term doubles: 24 × 2 = 48.",
            },
            {
                "prompt": "If x + 5 = 12, what is x?",
                "options": ["7", "6", "8", "5"],
                "correct_answer": "7",
                "explanation": "x = 12 - 5 = 7.",
            },
            {
                "prompt": "What comes next: 1, 4, 9, 16, ...?",
                "options": ["25", "20", "24", "32"],
                "correct_answer": "25",
                "explanation": "Perfect squares: 5² = 25.",
            },
        ],
        "hard": [
            {
                "prompt": "What are the next two numbers: 1, 1, 2, 3, 5, 8, ...?",
                "options": ["13, 21", "11, 19", "12, 20", "10, 18"],
                "correct_answer": "13, 21",
                "explanation": "Fibonacci: each number is the sum of the previous two. 5+8=13, 8+13=21.",
            },
            {
                "prompt": "If 3x - 7 = 20, what is x?",
                "options": ["9", "8", "27", "7"],
                "correct_answer": "9",
                "explanation": "3x = 27, so x = 9.",
            },
        ],
    },
    "geometry": {
        "easy": [
            {
                "prompt": "How many sides does a triangle have?",
                "options": ["3", "4", "5", "6"],
                "correct_answer": "3",
                "explanation": "A triangle has exactly 3 sides.",
            },
            {
                "prompt": "What is the perimeter of a square with 5 cm sides?",
                "options": ["20 cm", "15 cm", "25 cm", "10 cm"],
                "correct_answer": "20 cm",
                "explanation": "Perimeter = 4 × side = 4 × 5 = 20 cm.",
            },
        ],
        "medium": [
            {
                "prompt": "What is the area of an 8 cm × 5 cm rectangle?",
                "options": ["40 cm²", "35 cm²", "45 cm²", "30 cm²"],
                "correct_answer": "40 cm²",
                "explanation": "Area = length × width = 8 × 5 = 40 cm².",
            },
            {
                "prompt": "A right triangle has legs 3 and 4. How long is the hypotenuse?",
                "options": ["5", "6", "7", "4"],
                "correct_answer": "5",
                "explanation": "Pythagoras: √(3² + 4²) = √25 = 5.",
            },
        ],
        "hard": [
            {
                "prompt": "What is the area of a circle with radius 6 cm? (π ≈ 3.14)",
                "options": ["113.04 cm²", "108.24 cm²", "118.44 cm²", "103.84 cm²"],
                "correct_answer": "113.04 cm²",
                "explanation": "Area = π × r² = 3.14 × 36 = 113.04 cm².",
            },
            {
                "prompt": "What is the sum of the interior angles of a hexagon?",
                "options": ["720°", "540°", "360°", "900°"],
                "correct_answer": "720°",
                "explanation": "(n - 2) × 180° = 4 × 180° = 720°.",
            },
        ],
    },
}


def _load(raw: dict) -> Dict[str, Dict[str, List[QuestionBase]]]:
    pool: Dict[str, Dict[str, List[QuestionBase]]] = {}
    for category, by_difficulty in raw.items():
        pool[category] = {}
        for difficulty, entries in by_difficulty.items():
            pool[category][difficulty] = [
                question_adapter.validate_python({**entry, "category": category, "difficulty": difficulty})
                for entry in entries
            ]
    return pool


PREDEFINED_QUESTIONS = _load(_RAW_QUESTIONS)


def total_predefined() -> int:
    return sum(len(qs) for by_difficulty in PREDEFINED_QUESTIONS.values() for qs in by_difficulty.values())
