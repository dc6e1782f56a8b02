from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Union

from exam_compiler.core.languages import Language, resolve_language
from exam_compiler.editor.buffer import Buffer, EditHistory, Selection
from exam_compiler.editor.keys import Intent, KeyEvent, KeyInterpreter
from exam_compiler.services.execution import ExecutionClient, RunReport
from exam_compiler.services.harness import HarnessReport, TestCase, TestHarness, TestResult
from exam_compiler.services.storage import LANGUAGE_KEY, KeyValueStore, code_key

logger = logging.getLogger(__name__)

DEFAULT_CODE = "// Write your code here..."


@dataclass(frozen=True, slots=True)
class StatusEvent:
    code: str
    passed: bool | int | None


@dataclass(frozen=True, slots=True)
class RunEvent:
    code: str


SessionEvent = Union[StatusEvent, RunEvent]
Listener = Callable[[SessionEvent], None]


class ClipboardBlocked(Exception):
    pass


@dataclass(slots=True)
class SessionOptions:
    question_id: str
    initial_code: str = DEFAULT_CODE
    language: str = "javascript"
    test_cases: list[TestCase] = field(default_factory=list)
    initial_passed: bool | int | None = None
    allow_copy_paste: bool = True


class EditorSession:
    """State of one exam coding widget.

    The session owns the buffer and the selected language, mirrors every
    change into the key-value store, and notifies subscribers with a
    StatusEvent after each edit and each run.
    """

    def __init__(
        self,
        options: SessionOptions,
        client: ExecutionClient,
        store: KeyValueStore,
        *,
        history_limit: int = 200,
    ) -> None:
        self.options = options
        self.client = client
        self.store = store
        self.harness = TestHarness(client)
        self.history = EditHistory(history_limit)
        self.test_results: dict[int, TestResult] = {}
        self.output = ""
        self.scroll_top = 0
        self.last_status: StatusEvent | None = None
        self._listeners: list[Listener] = []
        self._passed: bool | int | None = None
        # held by request handlers; sessions are served from a thread pool
        self.lock = threading.RLock()

        self.language: Language = resolve_language(options.language)
        self.buffer = Buffer()
        self.interpreter = KeyInterpreter(self.language.comment_marker)
        self._mount()

    # -- observers --------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: SessionEvent) -> None:
        if isinstance(event, StatusEvent):
            self.last_status = event
        for listener in list(self._listeners):
            listener(event)

    def _emit_status(self) -> None:
        passed = self._passed
        if self.options.initial_passed is not None and self.text == self.options.initial_code:
            passed = self.options.initial_passed
        self._emit(StatusEvent(code=self.text, passed=passed))

    # -- persistence ------------------------------------------------------

    def _fallback_code(self, language: Language) -> str:
        if language.template is not None:
            return language.template
        return self.options.initial_code

    def _load_code(self, language: Language) -> str:
        saved = self.store.get(code_key(self.options.question_id, language.key))
        return saved if saved is not None else self._fallback_code(language)

    def _save(self) -> None:
        self.store.set(code_key(self.options.question_id, self.language.key), self.text)
        self.store.set(LANGUAGE_KEY, self.language.key)

    def _mount(self) -> None:
        stored = self.store.get(LANGUAGE_KEY)
        language = resolve_language(self.options.language)
        if stored:
            try:
                language = resolve_language(stored)
            except ValueError:
                logger.warning(f"Ignoring unknown saved language {stored!r}")
        self._set_language(language)
        self.history.clear()
        self.test_results = {}
        self._passed = None
        self.buffer = Buffer(self._load_code(language))
        self._save()
        self._emit_status()
        logger.debug(f"Mounted question {self.options.question_id} in {language.key}")

    def _set_language(self, language: Language) -> None:
        self.language = language
        self.interpreter = KeyInterpreter(language.comment_marker)

    # -- editing ----------------------------------------------------------

    @property
    def text(self) -> str:
        return self.buffer.text

    @property
    def selection(self) -> Selection:
        return self.buffer.selection

    def _replace(self, buffer: Buffer, *, record: bool = True) -> None:
        if buffer.text == self.buffer.text:
            self.buffer = buffer
            return
        if record:
            self.history.record(self.buffer)
        self.buffer = buffer
        self._passed = None
        self._save()
        self._emit_status()

    def press(self, event: KeyEvent) -> Intent:
        outcome = self.interpreter.interpret(self.buffer, event)
        if outcome.intent is Intent.UNDO:
            previous = self.history.undo(self.buffer)
            if previous is not None:
                self._replace(previous, record=False)
        elif outcome.intent is Intent.REDO:
            following = self.history.redo(self.buffer)
            if following is not None:
                self._replace(following, record=False)
        elif outcome.intent is Intent.CLIPBOARD and not self.options.allow_copy_paste:
            return Intent.IGNORED
        else:
            self._replace(outcome.buffer)
        return outcome.intent

    def set_text(self, text: str, selection: Selection | None = None) -> None:
        """Native text input: the whole buffer replaced by the view."""
        if selection is None:
            selection = Selection.caret(len(text))
        self._replace(Buffer(text, selection))

    def paste(self, text: str) -> None:
        if not self.options.allow_copy_paste:
            raise ClipboardBlocked("Copy and paste are disabled for this question")
        sel = self.selection
        self._replace(self.buffer.replace_range(sel.start, sel.end, text))

    def copy(self) -> str:
        if not self.options.allow_copy_paste:
            raise ClipboardBlocked("Copy and paste are disabled for this question")
        return self.buffer.selected_text

    def select(self, start: int, end: int) -> None:
        if not 0 <= start <= end <= len(self.text):
            raise ValueError(f"selection [{start}, {end}] outside buffer of length {len(self.text)}")
        self.buffer = self.buffer.with_selection(Selection(start, end))

    def scroll_to(self, offset: int) -> None:
        # text view and gutter share one offset
        self.scroll_top = max(offset, 0)

    def switch_language(self, name: str) -> None:
        language = resolve_language(name)
        if language.key == self.language.key:
            return
        self._save()
        self._set_language(language)
        self.history.clear()
        self._passed = None
        self.buffer = Buffer(self._load_code(language))
        self._save()
        self._emit_status()

    def change_question(self, question_id: str) -> None:
        if question_id == self.options.question_id:
            return
        self._save()
        self.options.question_id = question_id
        self._mount()

    def reset(self) -> None:
        self._replace(Buffer(self._fallback_code(self.language)))

    # -- running ----------------------------------------------------------

    def run(self, stdin: str | None = None) -> RunReport:
        report = self.client.run(self.text, stdin, self.language)
        self.output = report.output
        self._emit(RunEvent(code=self.text))
        self._emit_status()
        return report

    def run_tests(self) -> HarnessReport | None:
        report = self.harness.run(self.text, self.language, self.options.test_cases)
        if report is None:
            return None
        if report.rejection is not None:
            self.output = report.rejection
            return report
        self.test_results = dict(report.results)
        self.output = report.transcript
        self._passed = report.passed
        self._emit_status()
        return report
