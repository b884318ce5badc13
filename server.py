from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Header, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import Field

from command_center.backend import Backend
from command_center.drafts import CamelModel, DraftActionResponse, SmartInputResponse
from command_center.errors import CommandCenterError

app = FastAPI(title="Command Center")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for dev
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class AttachmentInput(CamelModel):
    name: str = "attachment"
    mime_type: Optional[str] = None
    data: Optional[str] = None  # base64
    size_bytes: Optional[int] = None
    extracted_text: Optional[str] = None


class SmartInputRequest(CamelModel):
    text: Optional[str] = None
    voice_transcript: Optional[str] = None
    attachments: List[AttachmentInput] = Field(default_factory=list)


class ClarificationAnswer(CamelModel):
    question_id: str
    answer: Any = None


class ClarificationAnswersRequest(CamelModel):
    session_id: str
    answers: List[ClarificationAnswer] = Field(default_factory=list)


class DraftActionRequest(CamelModel):
    action: str  # APPROVE | MODIFY | REJECT, any case
    modified_draft: Optional[Dict[str, Any]] = None


@lru_cache(maxsize=1)
def get_backend() -> Backend:
    return Backend()


def current_user(x_user_id: Optional[str] = Header(None)) -> str:
    # set by the identity layer in front of this service
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


@app.exception_handler(CommandCenterError)
async def command_center_error_handler(request, exc: CommandCenterError):
    return JSONResponse(status_code=exc.http_status, content=exc.to_payload())


router = APIRouter(prefix="/api/v1/command-center")


@router.post("/smart-input", response_model=SmartInputResponse)
def smart_input(
    request: SmartInputRequest,
    user_id: str = Depends(current_user),
    backend: Backend = Depends(get_backend),
):
    return backend.submit(
        user_id,
        text=request.text,
        attachments=[a.model_dump() for a in request.attachments],
        voice_transcript=request.voice_transcript,
    )


@router.post("/process", response_model=SmartInputResponse)
def process_upload(
    text: Optional[str] = Form(None),
    attachments: Optional[List[UploadFile]] = File(None),
    user_id: str = Depends(current_user),
    backend: Backend = Depends(get_backend),
):
    summaries = []
    for upload in attachments or []:
        try:
            data = upload.file.read()
        finally:
            upload.file.close()
        summaries.append(backend.summarize_upload(upload.filename, upload.content_type, data))
    return backend.submit(user_id, text=text, attachments=summaries)


@router.post("/smart-input/clarify", response_model=SmartInputResponse)
def clarify(
    request: ClarificationAnswersRequest,
    user_id: str = Depends(current_user),
    backend: Backend = Depends(get_backend),
):
    return backend.answer_clarification(
        user_id,
        request.session_id,
        [(a.question_id, a.answer) for a in request.answers],
    )


@router.post("/smart-input/{session_id}/confirm-alternative", response_model=SmartInputResponse)
def confirm_alternative(
    session_id: str,
    accepted: bool = Query(...),
    user_id: str = Depends(current_user),
    backend: Backend = Depends(get_backend),
):
    return backend.confirm_alternative(session_id, accepted, user_id=user_id)


@router.post("/drafts/{draft_id}/action", response_model=DraftActionResponse)
def draft_action(
    draft_id: str,
    request: DraftActionRequest,
    user_id: str = Depends(current_user),
    backend: Backend = Depends(get_backend),
):
    return backend.decide_draft(user_id, draft_id, request.action, request.modified_draft)


@router.get("/drafts/pending", response_model=List[SmartInputResponse])
def pending_drafts(
    user_id: str = Depends(current_user),
    backend: Backend = Depends(get_backend),
):
    return backend.list_pending_drafts(user_id)


@router.get("/drafts/{draft_id}", response_model=SmartInputResponse)
def get_draft(
    draft_id: str,
    user_id: str = Depends(current_user),
    backend: Backend = Depends(get_backend),
):
    return backend.get_draft(user_id, draft_id)


app.include_router(router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
