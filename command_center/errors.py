# command_center/errors.py


class CommandCenterError(Exception):
    """Base for request-scoped failures. None of these are fatal to the process."""
    code = "COMMAND_CENTER_ERROR"
    http_status = 400

    def to_payload(self) -> dict:
        return {"status": "error", "code": self.code, "message": str(self)}


class DraftNotFoundError(CommandCenterError):
    code = "DRAFT_NOT_FOUND"
    http_status = 404

    def __init__(self, draft_id: str):
        super().__init__(f"Draft not found: {draft_id}")
        self.draft_id = draft_id


class SessionNotFoundError(CommandCenterError):
    code = "SESSION_NOT_FOUND"
    http_status = 404

    def __init__(self, session_id: str):
        super().__init__(f"Clarification session not found: {session_id}")
        self.session_id = session_id


class DraftAlreadyProcessedError(CommandCenterError):
    code = "DRAFT_ALREADY_PROCESSED"
    http_status = 409

    def __init__(self, draft_id: str, current_status: str):
        super().__init__(f"Draft has already been processed with status: {current_status}")
        self.draft_id = draft_id
        self.current_status = current_status

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["draftId"] = self.draft_id
        payload["currentStatus"] = self.current_status
        return payload


class DraftExpiredError(CommandCenterError):
    code = "DRAFT_EXPIRED"
    http_status = 410

    def __init__(self, draft_id: str):
        super().__init__("Draft has expired")
        self.draft_id = draft_id


class SessionExpiredError(CommandCenterError):
    code = "SESSION_EXPIRED"
    http_status = 410

    def __init__(self, session_id: str):
        super().__init__("Clarification session has expired")
        self.session_id = session_id


class DraftValidationError(CommandCenterError):
    code = "VALIDATION_ERROR"
    http_status = 400


class AIProcessingError(CommandCenterError):
    """Model or OCR call failed. Caught at the call boundary during intake."""
    code = "AI_PROCESSING_ERROR"
    http_status = 502


class SessionConflictError(CommandCenterError):
    """Another request updated the clarification session first."""
    code = "SESSION_CONFLICT"
    http_status = 409

    def __init__(self, session_id: str):
        super().__init__("Clarification session was updated concurrently, reload and retry")
        self.session_id = session_id
