"""Keystroke handling for the code editor.

Each key press is classified into one intent, checked in priority order.
Anything no rule claims goes to the default branch, which performs plain
text-area insertion so that every key has a defined effect on the buffer.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, Optional

from exam_compiler.editor.buffer import (
    Buffer,
    Selection,
    leading_whitespace,
    line_end,
    line_start,
)

INDENT_UNIT = "    "

OPENING_PAIRS: dict[str, str] = {
    "(": ")",
    "{": "}",
    "[": "]",
    '"': '"',
    "'": "'",
}
CLOSING_BRACKETS = frozenset(")]}")
INDENT_TRIGGERS = ("{", "(", "[", ":")


class Intent(str, enum.Enum):
    UNDO = "undo"
    REDO = "redo"
    WRAP = "wrap"
    TOGGLE_COMMENT = "toggle_comment"
    INDENT = "indent"
    OUTDENT = "outdent"
    EXPAND_BRACES = "expand_braces"
    NEWLINE = "newline"
    OUTDENT_CLOSE = "outdent_close"
    SKIP_CLOSE = "skip_close"
    AUTO_CLOSE = "auto_close"
    CLIPBOARD = "clipboard"
    DEFAULT = "default"
    IGNORED = "ignored"


@dataclass(frozen=True, slots=True)
class KeyEvent:
    key: str
    ctrl: bool = False
    meta: bool = False
    shift: bool = False
    alt: bool = False

    @property
    def command(self) -> bool:
        # Ctrl on Linux/Windows, Cmd on macOS
        return self.ctrl or self.meta


@dataclass(frozen=True, slots=True)
class KeyOutcome:
    intent: Intent
    buffer: Buffer


Rule = Callable[[Buffer, KeyEvent], Optional[KeyOutcome]]


def _line_span(text: str, selection: Selection) -> tuple[int, int]:
    """Offsets from the start of the first touched line to the end of the last.

    A non-empty selection ending at column 0 does not touch that last line.
    """
    last = selection.end
    if not selection.collapsed and last > 0 and text[last - 1] == "\n":
        last -= 1
    return line_start(text, selection.start), line_end(text, last)


class KeyInterpreter:
    def __init__(self, comment_marker: str = "//") -> None:
        self.comment_marker = comment_marker
        self._rules: tuple[Rule, ...] = (
            self._history,
            self._wrap_selection,
            self._toggle_comment,
            self._indent,
            self._expand_braces,
            self._newline,
            self._closing_bracket,
            self._auto_close,
        )

    def interpret(self, buffer: Buffer, event: KeyEvent) -> KeyOutcome:
        for rule in self._rules:
            outcome = rule(buffer, event)
            if outcome is not None:
                return outcome
        return self._default(buffer, event)

    # 1. undo/redo is applied by the session's history, the buffer is untouched here
    def _history(self, buffer: Buffer, event: KeyEvent) -> Optional[KeyOutcome]:
        if not event.command:
            return None
        key = event.key.lower()
        if key == "z":
            return KeyOutcome(Intent.REDO if event.shift else Intent.UNDO, buffer)
        if key == "y":
            return KeyOutcome(Intent.REDO, buffer)
        return None

    # 2
    def _wrap_selection(self, buffer: Buffer, event: KeyEvent) -> Optional[KeyOutcome]:
        sel = buffer.selection
        if event.command or sel.collapsed or event.key not in OPENING_PAIRS:
            return None
        inner = buffer.selected_text
        wrapped = buffer.replace_range(
            sel.start,
            sel.end,
            event.key + inner + OPENING_PAIRS[event.key],
            Selection(sel.start + 1, sel.end + 1),
        )
        return KeyOutcome(Intent.WRAP, wrapped)

    # 3
    def _toggle_comment(self, buffer: Buffer, event: KeyEvent) -> Optional[KeyOutcome]:
        if not (event.command and event.key == "/"):
            return None
        text = buffer.text
        start, end = _line_span(text, buffer.selection)
        lines = text[start:end].split("\n")
        marker = self.comment_marker

        code_lines = [line for line in lines if line.strip()]
        if not code_lines:
            return KeyOutcome(Intent.TOGGLE_COMMENT, buffer)
        uncomment = all(line.lstrip(" \t").startswith(marker) for line in code_lines)

        toggled: list[str] = []
        for line in lines:
            if not line.strip():
                toggled.append(line)
                continue
            indent = leading_whitespace(line)
            body = line[len(indent):]
            if uncomment:
                body = body[len(marker):]
                if body.startswith(" "):
                    body = body[1:]
            else:
                body = f"{marker} {body}"
            toggled.append(indent + body)

        replacement = "\n".join(toggled)
        updated = buffer.replace_range(
            start, end, replacement, Selection(start, start + len(replacement))
        )
        return KeyOutcome(Intent.TOGGLE_COMMENT, updated)

    # 4
    def _indent(self, buffer: Buffer, event: KeyEvent) -> Optional[KeyOutcome]:
        if event.key != "Tab" or event.command or event.alt:
            return None
        text = buffer.text
        sel = buffer.selection
        span_start, span_end = _line_span(text, sel)
        lines = text[span_start:span_end].split("\n")

        if not event.shift:
            replacement = "\n".join(INDENT_UNIT + line for line in lines)
            width = len(INDENT_UNIT)
            new_start = sel.start + width if sel.start > span_start else sel.start
            new_end = sel.end + width * len(lines)
            if sel.collapsed:
                new_start = new_end = sel.start + width
            updated = buffer.replace_range(
                span_start, span_end, replacement, Selection(new_start, new_end)
            )
            return KeyOutcome(Intent.INDENT, updated)

        removed: list[int] = []
        for line in lines:
            if line.startswith(INDENT_UNIT):
                removed.append(len(INDENT_UNIT))
            elif line.startswith("  "):
                removed.append(2)
            elif line.startswith(" "):
                removed.append(1)
            else:
                removed.append(0)
        replacement = "\n".join(line[n:] for line, n in zip(lines, removed))

        def shift(offset: int) -> int:
            # walk the lines to find the one holding offset
            line_offset = span_start
            before = 0
            for line, n in zip(lines, removed):
                if offset <= line_offset + len(line):
                    return offset - before - min(n, offset - line_offset)
                before += n
                line_offset += len(line) + 1
            return offset - before

        new_start = shift(sel.start)
        new_end = max(new_start, shift(sel.end))
        updated = buffer.replace_range(
            span_start, span_end, replacement, Selection(new_start, new_end)
        )
        return KeyOutcome(Intent.OUTDENT, updated)

    # 5
    def _expand_braces(self, buffer: Buffer, event: KeyEvent) -> Optional[KeyOutcome]:
        if event.key != "Enter" or event.command:
            return None
        text = buffer.text
        sel = buffer.selection
        if sel.start == 0 or text[sel.start - 1] != "{" or text[sel.end : sel.end + 1] != "}":
            return None
        indent = leading_whitespace(text[line_start(text, sel.start) : sel.start])
        first = "\n" + indent + INDENT_UNIT
        updated = buffer.replace_range(
            sel.start,
            sel.end,
            first + "\n" + indent,
            Selection.caret(sel.start + len(first)),
        )
        return KeyOutcome(Intent.EXPAND_BRACES, updated)

    # 6
    def _newline(self, buffer: Buffer, event: KeyEvent) -> Optional[KeyOutcome]:
        if event.key != "Enter" or event.command:
            return None
        text = buffer.text
        sel = buffer.selection
        current = text[line_start(text, sel.start) : sel.start]
        indent = leading_whitespace(current)
        if current.strip().endswith(INDENT_TRIGGERS):
            indent += INDENT_UNIT
        return KeyOutcome(Intent.NEWLINE, buffer.replace_range(sel.start, sel.end, "\n" + indent))

    # 7
    def _closing_bracket(self, buffer: Buffer, event: KeyEvent) -> Optional[KeyOutcome]:
        sel = buffer.selection
        if event.command or event.key not in CLOSING_BRACKETS or not sel.collapsed:
            return None
        text = buffer.text
        pos = sel.start
        before = text[line_start(text, pos) : pos]
        after = text[pos : line_end(text, pos)]
        if (
            len(before) >= len(INDENT_UNIT)
            and not before.strip()
            and not after.strip()
            and before.endswith(INDENT_UNIT)
        ):
            updated = buffer.replace_range(pos - len(INDENT_UNIT), pos, event.key)
            return KeyOutcome(Intent.OUTDENT_CLOSE, updated)
        if text[pos : pos + 1] == event.key:
            return KeyOutcome(Intent.SKIP_CLOSE, buffer.with_selection(Selection.caret(pos + 1)))
        return None

    # 8
    def _auto_close(self, buffer: Buffer, event: KeyEvent) -> Optional[KeyOutcome]:
        sel = buffer.selection
        if event.command or event.key not in OPENING_PAIRS or not sel.collapsed:
            return None
        updated = buffer.replace_range(
            sel.start,
            sel.end,
            event.key + OPENING_PAIRS[event.key],
            Selection.caret(sel.start + 1),
        )
        return KeyOutcome(Intent.AUTO_CLOSE, updated)

    def _default(self, buffer: Buffer, event: KeyEvent) -> KeyOutcome:
        """Plain text-area behaviour for keys no rule claims."""
        sel = buffer.selection
        if event.command:
            if event.key.lower() == "x" and not sel.collapsed:
                # cut; the session drops it when the clipboard is disabled
                return KeyOutcome(Intent.CLIPBOARD, buffer.replace_range(sel.start, sel.end, ""))
            if event.key.lower() in ("c", "v", "x"):
                return KeyOutcome(Intent.CLIPBOARD, buffer)
            return KeyOutcome(Intent.IGNORED, buffer)
        if len(event.key) == 1:
            return KeyOutcome(Intent.DEFAULT, buffer.replace_range(sel.start, sel.end, event.key))
        if event.key == "Backspace":
            if sel.collapsed and sel.start == 0:
                return KeyOutcome(Intent.IGNORED, buffer)
            start = sel.start if not sel.collapsed else sel.start - 1
            return KeyOutcome(Intent.DEFAULT, buffer.replace_range(start, sel.end, ""))
        if event.key == "Delete":
            if sel.collapsed and sel.end == len(buffer.text):
                return KeyOutcome(Intent.IGNORED, buffer)
            end = sel.end if not sel.collapsed else sel.end + 1
            return KeyOutcome(Intent.DEFAULT, buffer.replace_range(sel.start, end, ""))
        return KeyOutcome(Intent.IGNORED, buffer)
