from __future__ import annotations

from pydantic import BaseModel, Field, StrictBool, StrictInt, StrictStr


class TestCaseModel(BaseModel):
    input: StrictStr = Field("", description="stdin fed to the program.")
    expected: StrictStr = Field("", description="Expected stdout, compared after trimming.")


class CreateSessionRequest(BaseModel):
    question_id: StrictStr = Field(..., min_length=1, description="Groups saved code per exercise.")
    initial_code: StrictStr = Field(
        "// Write your code here...",
        description="Code shown when nothing is saved and the language has no template.",
    )
    language: StrictStr = Field("javascript", description="Initial language key or alias.")
    test_cases: list[TestCaseModel] = Field(default_factory=list)
    initial_passed: StrictBool | StrictInt | None = Field(
        None, description="Echoed in status updates while the code equals initial_code."
    )
    allow_copy_paste: StrictBool = True


class SelectionModel(BaseModel):
    start: StrictInt = Field(..., ge=0)
    end: StrictInt = Field(..., ge=0)


class KeyRequest(BaseModel):
    key: StrictStr = Field(..., min_length=1, description="KeyboardEvent.key value.")
    ctrl: StrictBool = False
    meta: StrictBool = False
    shift: StrictBool = False
    alt: StrictBool = False


class TextRequest(BaseModel):
    text: StrictStr
    selection: SelectionModel | None = None


class PasteRequest(BaseModel):
    text: StrictStr


class ScrollRequest(BaseModel):
    offset: StrictInt = Field(..., ge=0)


class LanguageRequest(BaseModel):
    language: StrictStr


class QuestionRequest(BaseModel):
    question_id: StrictStr = Field(..., min_length=1)


class RunRequest(BaseModel):
    stdin: StrictStr | None = Field(None, description="Optional stdin passed to the program.")


class StatusModel(BaseModel):
    code: StrictStr
    passed: StrictBool | StrictInt | None


class TestResultModel(BaseModel):
    index: StrictInt
    success: StrictBool
    actual: StrictStr | None = None
    error: StrictStr | None = None


class SessionState(BaseModel):
    session_id: StrictStr
    question_id: StrictStr
    language: StrictStr
    text: StrictStr
    selection: SelectionModel
    line_count: StrictInt
    gutter: StrictStr
    scroll_top: StrictInt
    output: StrictStr
    status: StatusModel | None
    test_results: list[TestResultModel]
    can_undo: StrictBool
    can_redo: StrictBool


class KeyResponse(BaseModel):
    intent: StrictStr
    state: SessionState


class CopyResponse(BaseModel):
    text: StrictStr
    state: SessionState


class RunResponse(BaseModel):
    kind: StrictStr
    output: StrictStr
    state: SessionState


class RunTestsResponse(BaseModel):
    ran: StrictBool
    passed: StrictInt = 0
    total: StrictInt = 0
    all_passed: StrictBool = False
    summary: StrictStr = ""
    log: list[StrictStr] = Field(default_factory=list)
    state: SessionState
