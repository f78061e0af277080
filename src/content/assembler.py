"""
Question Assembler.

Turns a fact and a boundary level into a Question: deterministic text, the
correct answer and one distractor drawn from the level's strategy.

Distractor ladder:
    1. off by one (answer +- 1)
    2. off by ten, or two adjacent digits swapped
    3. adjacent fact: one operand moved by one
    4. operation confusion: the operands combined with another operation
    5. place-value slip: answer x10 or /10

A strategy that yields no usable candidate falls through to the level below;
the final fallback is answer + 1, so a distractor always exists. Candidates
equal to the answer or below zero are never used.
"""

from __future__ import annotations

import random
from collections.abc import Callable, Mapping
from typing import Any

from src.core.models import Fact, Question
from src.mastery.controller import validate_level

OPERATION_SYMBOLS = {"add": "+", "sub": "−", "mult": "×", "div": "÷"}

STRATEGY_NAMES = {
    1: "off_by_one",
    2: "digit_slip",
    3: "adjacent_fact",
    4: "operation_confusion",
    5: "place_value",
}


def _apply(operation: str, operand1: int, operand2: int) -> int | None:
    """Evaluate an operation on whole numbers; None when there is no whole result."""
    if operation == "add":
        return operand1 + operand2
    if operation == "sub":
        return operand1 - operand2
    if operation == "mult":
        return operand1 * operand2
    if operand2 == 0 or operand1 % operand2:
        return None
    return operand1 // operand2


def render_text(fact: Fact, template: str | None = None) -> str:
    """
    Render the question text for a fact.

    Args:
        fact: The fact being asked
        template: Optional format string with {operand1}, {operand2}, {result}

    Returns:
        e.g. "7 × 4", "Double 15", "Half of 56"
    """
    if template:
        return template.format(
            operand1=fact.operand1, operand2=fact.operand2, result=fact.result
        )
    if fact.operation == "mult" and fact.operand2 == 2 and fact.has_tag("doubling"):
        return f"Double {fact.operand1}"
    if fact.operation == "div" and fact.operand2 == 2 and fact.has_tag("halving"):
        return f"Half of {fact.operand1}"
    symbol = OPERATION_SYMBOLS.get(fact.operation, fact.operation)
    return f"{fact.operand1} {symbol} {fact.operand2}"


def _off_by_one(fact: Fact) -> list[int]:
    return [fact.result - 1, fact.result + 1]


def _digit_slip(fact: Fact) -> list[int]:
    candidates = [fact.result - 10, fact.result + 10]
    digits = str(fact.result)
    for i in range(len(digits) - 1):
        if digits[i] == digits[i + 1]:
            continue
        swapped = digits[:i] + digits[i + 1] + digits[i] + digits[i + 2 :]
        if swapped[0] != "0":
            candidates.append(int(swapped))
    return candidates


def _adjacent_fact(fact: Fact) -> list[int]:
    op, a, b = fact.operation, fact.operand1, fact.operand2
    neighbours = [(a - 1, b), (a + 1, b), (a, b - 1), (a, b + 1)]
    if op == "div":
        # Keep the dividend fixed so the neighbour is still a clean division
        neighbours = [(a, b - 1), (a, b + 1), (a - b, b), (a + b, b)]
    results = []
    for x, y in neighbours:
        if x < 0 or y < 0:
            continue
        value = _apply(op, x, y)
        if value is not None:
            results.append(value)
    return results


def _operation_confusion(fact: Fact) -> list[int]:
    a, b = fact.operand1, fact.operand2
    others = {
        "add": ("mult", "sub"),
        "sub": ("add",),
        "mult": ("add",),
        "div": ("sub", "add"),
    }.get(fact.operation, ())
    results = []
    for op in others:
        value = _apply(op, max(a, b), min(a, b)) if op == "sub" else _apply(op, a, b)
        if value is not None:
            results.append(value)
    return results


def _place_value(fact: Fact) -> list[int]:
    candidates = [fact.result * 10]
    if fact.result >= 10:
        candidates.append(fact.result // 10)
    return candidates


STRATEGIES: dict[int, Callable[[Fact], list[int]]] = {
    1: _off_by_one,
    2: _digit_slip,
    3: _adjacent_fact,
    4: _operation_confusion,
    5: _place_value,
}


class QuestionAssembler:
    """Builds questions with level-appropriate distractors."""

    def __init__(self, rng: random.Random | None = None):
        self.rng = rng or random.Random()

    def distractor_for(self, fact: Fact, boundary_level: int) -> tuple[int, str]:
        """
        Pick a distractor value for a fact.

        Returns:
            (value, strategy name) where value != fact.result and value >= 0
        """
        for level in range(validate_level(boundary_level), 0, -1):
            candidates = sorted(
                {
                    value
                    for value in STRATEGIES[level](fact)
                    if value >= 0 and value != fact.result
                }
            )
            if candidates:
                return self.rng.choice(candidates), STRATEGY_NAMES[level]
        return fact.result + 1, STRATEGY_NAMES[1]

    def build_question(
        self,
        fact: Fact,
        boundary_level: int,
        *,
        question_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        template: str | None = None,
    ) -> Question:
        """
        Build one question for a fact at a boundary level.

        Raises:
            InvalidBoundaryLevel: If boundary_level is outside 1..5
        """
        distractor, strategy = self.distractor_for(fact, boundary_level)
        return Question(
            id=question_id or f"q_{fact.id}",
            text=render_text(fact, template),
            correct_answer=str(fact.result),
            distractor=str(distractor),
            fact_id=fact.id,
            boundary_level=boundary_level,
            metadata={
                "operation": fact.operation,
                "distractor_strategy": strategy,
                **(metadata or {}),
            },
        )
