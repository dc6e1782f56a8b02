from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Callable

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, status

from exam_compiler.core.config import Settings
from exam_compiler.core.languages import UnknownLanguage
from exam_compiler.editor.buffer import Selection, gutter, line_count
from exam_compiler.editor.keys import KeyEvent
from exam_compiler.editor.session import ClipboardBlocked, EditorSession, SessionOptions
from exam_compiler.models.schemas import (
    CopyResponse,
    CreateSessionRequest,
    KeyRequest,
    KeyResponse,
    LanguageRequest,
    PasteRequest,
    QuestionRequest,
    RunRequest,
    RunResponse,
    RunTestsResponse,
    ScrollRequest,
    SelectionModel,
    SessionState,
    StatusModel,
    TestResultModel,
    TextRequest,
)
from exam_compiler.services.execution import ExecutionClient
from exam_compiler.services.harness import TestCase
from exam_compiler.services.storage import KeyValueStore

logger = logging.getLogger(__name__)

router = APIRouter()


class SessionRegistry:
    """Open editor sessions, one per mounted widget."""

    def __init__(
        self,
        settings: Settings,
        store: KeyValueStore,
        *,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.store = store
        self._transport = transport
        self._clock = clock
        self._sessions: dict[str, EditorSession] = {}
        self._lock = threading.Lock()

    def open(self, options: SessionOptions) -> tuple[str, EditorSession]:
        client = ExecutionClient(self.settings, transport=self._transport, clock=self._clock)
        try:
            session = EditorSession(
                options, client, self.store, history_limit=self.settings.history_limit
            )
        except Exception:
            client.close()
            raise
        session_id = uuid.uuid4().hex
        with self._lock:
            self._sessions[session_id] = session
        logger.info(f"Opened session {session_id} for question {options.question_id}")
        return session_id, session

    def get(self, session_id: str) -> EditorSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def close(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        with session.lock:
            session.client.close()
        return True

    def close_all(self) -> None:
        with self._lock:
            session_ids = list(self._sessions)
        for session_id in session_ids:
            self.close(session_id)


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def _lookup(session_id: str, registry: SessionRegistry) -> EditorSession:
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="session not found")
    return session


def _state(session_id: str, session: EditorSession) -> SessionState:
    last = session.last_status
    return SessionState(
        session_id=session_id,
        question_id=session.options.question_id,
        language=session.language.key,
        text=session.text,
        selection=SelectionModel(start=session.selection.start, end=session.selection.end),
        line_count=line_count(session.text),
        gutter=gutter(session.text),
        scroll_top=session.scroll_top,
        output=session.output,
        status=StatusModel(code=last.code, passed=last.passed) if last else None,
        test_results=[
            TestResultModel(index=i, success=r.success, actual=r.actual, error=r.error)
            for i, r in sorted(session.test_results.items())
        ],
        can_undo=session.history.can_undo,
        can_redo=session.history.can_redo,
    )


def _unprocessable(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


@router.post("/sessions", response_model=SessionState, status_code=status.HTTP_201_CREATED)
def create_session(
    req: CreateSessionRequest, registry: SessionRegistry = Depends(get_registry)
) -> SessionState:
    """Mount an editor: restore saved code for the question or load a template."""
    options = SessionOptions(
        question_id=req.question_id,
        initial_code=req.initial_code,
        language=req.language,
        test_cases=[TestCase(input=tc.input, expected=tc.expected) for tc in req.test_cases],
        initial_passed=req.initial_passed,
        allow_copy_paste=req.allow_copy_paste,
    )
    try:
        session_id, session = registry.open(options)
    except UnknownLanguage as exc:
        raise _unprocessable(exc) from exc
    with session.lock:
        return _state(session_id, session)


@router.get("/sessions/{session_id}", response_model=SessionState)
def get_session(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> SessionState:
    session = _lookup(session_id, registry)
    with session.lock:
        return _state(session_id, session)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def close_session(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> None:
    if not registry.close(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="session not found")


@router.post("/sessions/{session_id}/keys", response_model=KeyResponse)
def press_key(
    session_id: str, req: KeyRequest, registry: SessionRegistry = Depends(get_registry)
) -> KeyResponse:
    session = _lookup(session_id, registry)
    with session.lock:
        intent = session.press(
            KeyEvent(key=req.key, ctrl=req.ctrl, meta=req.meta, shift=req.shift, alt=req.alt)
        )
        return KeyResponse(intent=intent.value, state=_state(session_id, session))


@router.put("/sessions/{session_id}/text", response_model=SessionState)
def set_text(
    session_id: str, req: TextRequest, registry: SessionRegistry = Depends(get_registry)
) -> SessionState:
    session = _lookup(session_id, registry)
    selection = None
    if req.selection is not None:
        if not req.selection.start <= req.selection.end <= len(req.text):
            raise _unprocessable(ValueError("selection outside text"))
        selection = Selection(req.selection.start, req.selection.end)
    with session.lock:
        session.set_text(req.text, selection)
        return _state(session_id, session)


@router.post("/sessions/{session_id}/paste", response_model=SessionState)
def paste(
    session_id: str, req: PasteRequest, registry: SessionRegistry = Depends(get_registry)
) -> SessionState:
    session = _lookup(session_id, registry)
    with session.lock:
        try:
            session.paste(req.text)
        except ClipboardBlocked as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
        return _state(session_id, session)


@router.post("/sessions/{session_id}/copy", response_model=CopyResponse)
def copy(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> CopyResponse:
    session = _lookup(session_id, registry)
    with session.lock:
        try:
            text = session.copy()
        except ClipboardBlocked as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
        return CopyResponse(text=text, state=_state(session_id, session))


@router.post("/sessions/{session_id}/selection", response_model=SessionState)
def select(
    session_id: str, req: SelectionModel, registry: SessionRegistry = Depends(get_registry)
) -> SessionState:
    session = _lookup(session_id, registry)
    with session.lock:
        try:
            session.select(req.start, req.end)
        except ValueError as exc:
            raise _unprocessable(exc) from exc
        return _state(session_id, session)


@router.post("/sessions/{session_id}/scroll", response_model=SessionState)
def scroll(
    session_id: str, req: ScrollRequest, registry: SessionRegistry = Depends(get_registry)
) -> SessionState:
    session = _lookup(session_id, registry)
    with session.lock:
        session.scroll_to(req.offset)
        return _state(session_id, session)


@router.post("/sessions/{session_id}/language", response_model=SessionState)
def switch_language(
    session_id: str, req: LanguageRequest, registry: SessionRegistry = Depends(get_registry)
) -> SessionState:
    session = _lookup(session_id, registry)
    with session.lock:
        try:
            session.switch_language(req.language)
        except UnknownLanguage as exc:
            raise _unprocessable(exc) from exc
        return _state(session_id, session)


@router.post("/sessions/{session_id}/question", response_model=SessionState)
def change_question(
    session_id: str, req: QuestionRequest, registry: SessionRegistry = Depends(get_registry)
) -> SessionState:
    session = _lookup(session_id, registry)
    with session.lock:
        session.change_question(req.question_id)
        return _state(session_id, session)


@router.post("/sessions/{session_id}/reset", response_model=SessionState)
def reset(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> SessionState:
    session = _lookup(session_id, registry)
    with session.lock:
        session.reset()
        return _state(session_id, session)


@router.post("/sessions/{session_id}/run", response_model=RunResponse)
def run(
    session_id: str, req: RunRequest, registry: SessionRegistry = Depends(get_registry)
) -> RunResponse:
    """Run the code once against the remote execution service.

    Local rejections (size, unsafe patterns, cooldown) and network failures are
    reported in ``output``; this endpoint does not fail for them.
    """
    session = _lookup(session_id, registry)
    with session.lock:
        report = session.run(req.stdin)
        return RunResponse(
            kind=report.kind.value, output=report.output, state=_state(session_id, session)
        )


@router.post("/sessions/{session_id}/run-tests", response_model=RunTestsResponse)
def run_tests(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> RunTestsResponse:
    session = _lookup(session_id, registry)
    with session.lock:
        report = session.run_tests()
        if report is None:
            return RunTestsResponse(ran=False, state=_state(session_id, session))
        return RunTestsResponse(
            ran=report.rejection is None,
            passed=report.passed,
            total=report.total,
            all_passed=report.all_passed,
            summary=report.summary,
            log=report.log,
            state=_state(session_id, session),
        )
