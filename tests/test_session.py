from __future__ import annotations

import threading
from pathlib import Path

import pytest

from exam_compiler.core.config import Settings
from exam_compiler.core.languages import resolve_language
from exam_compiler.editor.buffer import Selection
from exam_compiler.editor.keys import Intent, KeyEvent
from exam_compiler.editor.session import (
    ClipboardBlocked,
    EditorSession,
    RunEvent,
    SessionEvent,
    SessionOptions,
    StatusEvent,
)
from exam_compiler.services.execution import ExecutionClient, RunKind
from exam_compiler.services.harness import TestCase
from exam_compiler.services.storage import (
    LANGUAGE_KEY,
    JsonFileStore,
    MemoryStore,
    code_key,
)

from tests.fakes import FakeClock, FakePiston, output, sum_program


def _session(
    store: MemoryStore | JsonFileStore | None = None,
    piston: FakePiston | None = None,
    **options: object,
) -> EditorSession:
    piston = piston or FakePiston(lambda body: output("ok"))
    client = ExecutionClient(Settings(), transport=piston.transport, clock=FakeClock())
    opts = SessionOptions(**{"question_id": "q1", **options})  # type: ignore[arg-type]
    return EditorSession(opts, client, store if store is not None else MemoryStore())


def test_saved_code_survives_remount() -> None:
    store = MemoryStore()
    first = _session(store, language="python")
    first.set_text("X")
    assert store.get(code_key("q1", "python")) == "X"
    assert store.get(LANGUAGE_KEY) == "python"

    # configured language differs, the last used one wins
    second = _session(store, language="javascript")
    assert second.language.key == "python"
    assert second.text == "X"


def test_mount_falls_back_to_template_then_initial_code() -> None:
    python = _session(language="python")
    assert python.text == resolve_language("python").template

    c = _session(language="c", initial_code="int main() {}")
    assert c.text == "int main() {}"


def test_unknown_saved_language_is_ignored() -> None:
    store = MemoryStore({LANGUAGE_KEY: "cobol"})
    session = _session(store, language="java")
    assert session.language.key == "java"


def test_language_switch_keeps_each_buffer() -> None:
    store = MemoryStore()
    session = _session(store, language="python")
    session.set_text("print(1)")

    session.switch_language("Java")
    assert session.language.key == "java"
    assert session.text == resolve_language("java").template
    assert store.get(code_key("q1", "python")) == "print(1)"
    assert store.get(LANGUAGE_KEY) == "java"

    session.switch_language("python3")
    assert session.text == "print(1)"


def test_comment_marker_follows_language() -> None:
    session = _session(language="python")
    session.set_text("x = 1", Selection(0, 0))
    session.press(KeyEvent("/", ctrl=True))
    assert session.text == "# x = 1"

    session.switch_language("javascript")
    session.set_text("x = 1", Selection(0, 0))
    session.press(KeyEvent("/", ctrl=True))
    assert session.text == "// x = 1"


def test_status_events_on_edit() -> None:
    events: list[SessionEvent] = []
    session = _session(language="c", initial_code="int x;", initial_passed=True)
    assert session.last_status == StatusEvent(code="int x;", passed=True)
    session.subscribe(events.append)

    session.set_text("int x;!")
    session.set_text("int x;")

    assert events == [
        StatusEvent(code="int x;!", passed=None),
        StatusEvent(code="int x;", passed=True),
    ]


def test_unsubscribe() -> None:
    events: list[SessionEvent] = []
    session = _session()
    unsubscribe = session.subscribe(events.append)
    unsubscribe()
    session.set_text("changed")
    assert events == []


def test_run_notifies_host() -> None:
    events: list[SessionEvent] = []
    session = _session(language="python")
    session.subscribe(events.append)

    report = session.run("input")

    assert report.kind is RunKind.OUTPUT
    assert session.output == "ok"
    assert events == [RunEvent(code=session.text), StatusEvent(code=session.text, passed=None)]


def test_run_tests_reports_pass_count() -> None:
    events: list[SessionEvent] = []
    session = _session(
        piston=FakePiston(sum_program),
        language="python",
        test_cases=[TestCase("10 20", "30"), TestCase("5 5", "10")],
    )
    session.set_text("a, b = map(int, input().split())\nprint(a + b)")
    session.subscribe(events.append)

    report = session.run_tests()

    assert report is not None and report.all_passed
    assert set(session.test_results) == {0, 1}
    assert events == [StatusEvent(code=session.text, passed=2)]
    assert session.output.endswith("Result: ALL TESTS PASSED")

    # editing invalidates the signal
    session.set_text(session.text + "\n")
    assert session.last_status == StatusEvent(code=session.text, passed=None)


def test_run_tests_without_cases_changes_nothing() -> None:
    events: list[SessionEvent] = []
    session = _session()
    session.subscribe(events.append)
    assert session.run_tests() is None
    assert events == []
    assert session.output == ""


def test_undo_and_redo() -> None:
    session = _session(language="python")
    session.set_text("", Selection(0, 0))
    session.press(KeyEvent("a"))
    session.press(KeyEvent("("))
    assert session.text == "a()"

    assert session.press(KeyEvent("z", ctrl=True)) is Intent.UNDO
    assert session.text == "a"
    session.press(KeyEvent("z", ctrl=True))
    assert session.text == ""
    session.press(KeyEvent("y", ctrl=True))
    assert session.text == "a"


def test_selection_only_moves_do_not_record_history() -> None:
    session = _session()
    session.set_text("f()", Selection(2, 2))
    session.press(KeyEvent(")"))
    assert session.selection == Selection(3, 3)
    session.press(KeyEvent("z", ctrl=True))
    assert session.text != "f()"


def test_clipboard_can_be_disabled() -> None:
    session = _session(allow_copy_paste=False)
    with pytest.raises(ClipboardBlocked):
        session.paste("copied")
    with pytest.raises(ClipboardBlocked):
        session.copy()
    assert session.press(KeyEvent("v", ctrl=True)) is Intent.IGNORED


def test_cut_deletes_selection_and_can_be_undone() -> None:
    session = _session()
    session.set_text("hello world", Selection(5, 11))
    assert session.press(KeyEvent("x", ctrl=True)) is Intent.CLIPBOARD
    assert session.text == "hello"
    session.press(KeyEvent("z", ctrl=True))
    assert session.text == "hello world"


def test_cut_is_blocked_when_clipboard_disabled() -> None:
    session = _session(allow_copy_paste=False)
    session.set_text("hello world", Selection(5, 11))
    assert session.press(KeyEvent("x", ctrl=True)) is Intent.IGNORED
    assert session.text == "hello world"


def test_paste_replaces_selection() -> None:
    session = _session()
    session.set_text("hello world", Selection(6, 11))
    assert session.copy() == "world"
    session.paste("there")
    assert session.text == "hello there"
    assert session.selection == Selection(11, 11)


def test_select_rejects_out_of_range() -> None:
    session = _session()
    session.set_text("abc")
    with pytest.raises(ValueError):
        session.select(0, 4)


def test_reset_restores_template() -> None:
    session = _session(language="python")
    session.set_text("junk")
    session.reset()
    assert session.text == resolve_language("python").template


def test_change_question_loads_other_code() -> None:
    store = MemoryStore({code_key("q2", "python"): "second"})
    session = _session(store, language="python")
    session.set_text("first")

    session.change_question("q2")
    assert session.text == "second"
    assert store.get(code_key("q1", "python")) == "first"


def test_json_store_is_durable(tmp_path: Path) -> None:
    path = tmp_path / "store" / "editor.json"
    session = _session(JsonFileStore(path), language="python")
    session.set_text("saved on disk")

    reopened = _session(JsonFileStore(path), language="c")
    assert reopened.language.key == "python"
    assert reopened.text == "saved on disk"


def test_json_store_ignores_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "editor.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileStore(path)
    assert store.get(LANGUAGE_KEY) is None
    store.set(LANGUAGE_KEY, "java")
    assert JsonFileStore(path).get(LANGUAGE_KEY) == "java"


def test_json_store_survives_concurrent_writers(tmp_path: Path) -> None:
    path = tmp_path / "editor.json"
    store = JsonFileStore(path)
    errors: list[Exception] = []

    def write(worker: int) -> None:
        try:
            for i in range(50):
                store.set(code_key(f"q{worker}", str(i)), f"code {worker}-{i}")
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=write, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    reopened = JsonFileStore(path)
    for worker in range(4):
        for i in range(50):
            assert reopened.get(code_key(f"q{worker}", str(i))) == f"code {worker}-{i}"
