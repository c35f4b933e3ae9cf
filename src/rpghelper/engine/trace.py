from __future__ import annotations
from typing import List

class TraceSession:
    """Human readable lines explaining how a value was reached."""

    def __init__(self) -> None:
        self.lines: List[str] = []
        self._depth = 0

    def add(self, line: str) -> None:
        self.lines.append("  " * self._depth + line)

    def extend(self, many: List[str]) -> None:
        for line in many:
            self.add(line)

    def indent(self) -> "TraceSession":
        self._depth += 1
        return self

    def dedent(self) -> None:
        self._depth = max(0, self._depth - 1)

    def dump(self) -> List[str]:
        return list(self.lines)
