from __future__ import annotations

from collections import deque
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Selection:
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"invalid selection [{self.start}, {self.end}]")

    @classmethod
    def caret(cls, offset: int) -> "Selection":
        return cls(offset, offset)

    @property
    def collapsed(self) -> bool:
        return self.start == self.end

    def clamp(self, length: int) -> "Selection":
        start = min(max(self.start, 0), length)
        end = min(max(self.end, start), length)
        return Selection(start, end)


@dataclass(frozen=True, slots=True)
class Buffer:
    """Source text plus the current selection.

    Buffers are values: every edit returns a new instance, so the previous one
    can be kept as an undo snapshot.
    """

    text: str = ""
    selection: Selection = Selection(0, 0)

    def __post_init__(self) -> None:
        if self.selection.end > len(self.text):
            object.__setattr__(self, "selection", self.selection.clamp(len(self.text)))

    @property
    def selected_text(self) -> str:
        return self.text[self.selection.start : self.selection.end]

    def replace_range(
        self,
        start: int,
        end: int,
        text: str,
        selection: Selection | None = None,
    ) -> "Buffer":
        """Replace ``[start, end)`` with ``text``.

        Without an explicit ``selection`` the caret lands after the inserted text.
        """
        if not 0 <= start <= end <= len(self.text):
            raise ValueError(f"range [{start}, {end}) outside buffer of length {len(self.text)}")
        new_text = self.text[:start] + text + self.text[end:]
        if selection is None:
            selection = Selection.caret(start + len(text))
        return Buffer(new_text, selection.clamp(len(new_text)))

    def with_selection(self, selection: Selection) -> "Buffer":
        return Buffer(self.text, selection.clamp(len(self.text)))


def line_count(text: str) -> int:
    return 1 + text.count("\n")


def gutter(text: str) -> str:
    """Line numbers for the gutter beside the text view."""
    return "\n".join(str(n) for n in range(1, line_count(text) + 1))


def line_start(text: str, offset: int) -> int:
    return text.rfind("\n", 0, offset) + 1


def line_end(text: str, offset: int) -> int:
    idx = text.find("\n", offset)
    return len(text) if idx == -1 else idx


def leading_whitespace(line: str) -> str:
    return line[: len(line) - len(line.lstrip(" \t"))]


class EditHistory:
    """Undo/redo stacks of buffer snapshots."""

    def __init__(self, limit: int = 200) -> None:
        self._undo: deque[Buffer] = deque(maxlen=max(limit, 1))
        self._redo: list[Buffer] = []

    def record(self, previous: Buffer) -> None:
        self._undo.append(previous)
        self._redo.clear()

    def undo(self, current: Buffer) -> Buffer | None:
        if not self._undo:
            return None
        self._redo.append(current)
        return self._undo.pop()

    def redo(self, current: Buffer) -> Buffer | None:
        if not self._redo:
            return None
        self._undo.append(current)
        return self._redo.pop()

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)
