from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, Mapping, Tuple

from .extract_v6 import V6
from .extract_v7 import V7
from .extract_v9 import V9

logger = logging.getLogger(__name__)

# Oldest first: (minimum server version, generation name, extraction table).
GENERATIONS: Tuple[Tuple[Tuple[int, ...], str, Mapping[str, Callable[..., Any]]], ...] = (
    ((0,), "v6", V6),
    ((7,), "v7", V7),
    ((9,), "v9", V9),
)


def parse_version(version: str) -> Tuple[int, ...]:
    parts = re.findall(r"\d+", version or "")
    return tuple(int(p) for p in parts) or (0,)


class Interpreter:
    """One frontend generation's extraction table, exposed as methods.

    interp = interpreter_for("7.4.0")
    interp.extract_resources(html)
    """

    def __init__(self, generation: str, table: Mapping[str, Callable[..., Any]]):
        self.generation = generation
        self._table: Dict[str, Callable[..., Any]] = dict(table)

    def __getattr__(self, name: str) -> Callable[..., Any]:
        try:
            return self.__dict__["_table"][name]
        except KeyError:
            raise AttributeError(f"{self.generation} interpreter has no operation {name}") from None

    def operations(self) -> list[str]:
        return sorted(self._table)

    def __repr__(self) -> str:
        return f"Interpreter({self.generation})"


def generation_for(version: str) -> str:
    wanted = parse_version(version)
    chosen = GENERATIONS[0][1]
    for minimum, name, _ in GENERATIONS:
        if wanted >= minimum:
            chosen = name
    return chosen


def interpreter_for(version: str) -> Interpreter:
    name = generation_for(version)
    table = next(t for _, n, t in GENERATIONS if n == name)
    logger.info("Server version %s -> extractor %s", version or "?", name)
    return Interpreter(name, table)


def interpreter_named(name: str) -> Interpreter:
    for _, n, table in GENERATIONS:
        if n == name:
            return Interpreter(n, table)
    raise KeyError(name)
