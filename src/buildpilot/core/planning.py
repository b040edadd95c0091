"""Heuristic policy deciding whether an instruction gets a multi-phase plan."""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import TypeAlias

PlanningPolicy: TypeAlias = Callable[[str], bool]

SHORT_PROMPT_CHARS = 80

MODIFICATION_PATTERN = re.compile(
    r"\b(change|update|fix|move|resize|colou?r|font|text|remove|delete|add)\b",
    re.IGNORECASE,
)
COMPLEX_PROJECT_PATTERN = re.compile(
    r"\b(full[\s-]app|platform|clone|dashboard|system|database|auth|social|"
    r"e-?commerce|commerce|store|complex)\b",
    re.IGNORECASE,
)


def is_modification(prompt: str) -> bool:
    return MODIFICATION_PATTERN.search(prompt) is not None


def is_complex_project(prompt: str) -> bool:
    return COMPLEX_PROJECT_PATTERN.search(prompt) is not None


def should_plan_phases(prompt: str) -> bool:
    """Return True when the instruction warrants pre-planning phases.

    Modification requests and short, simple requests run as a single flat
    build.
    """
    text = prompt.strip()
    if is_modification(text):
        return False
    if len(text) < SHORT_PROMPT_CHARS and not is_complex_project(text):
        return False
    return True
