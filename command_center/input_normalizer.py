# command_center/input_normalizer.py
"""
Merges free text, a voice transcript and attachment summaries into the single
user prompt sent to the model.
"""
import base64
import binascii
import logging
from datetime import date
from typing import Callable, List, Literal, Optional

from pydantic import BaseModel

logger = logging.getLogger("command_center")

AttachmentKind = Literal["image", "voice", "file"]


class AttachmentSummary(BaseModel):
    name: str
    kind: AttachmentKind = "file"
    mime_type: Optional[str] = None
    size_bytes: int = 0
    extracted_text: Optional[str] = None


def attachment_kind(mime_type: str | None) -> str:
    if not mime_type:
        return "file"
    mime_type = mime_type.lower()
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("audio/"):
        return "voice"
    return "file"


def format_context_date(today: date) -> str:
    # e.g. "Monday, October 19, 2026" (day without zero padding)
    return f"{today.strftime('%A')}, {today.strftime('%B')} {today.day}, {today.year}"


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def build_user_prompt(
    text: str | None,
    attachments: List[AttachmentSummary] | None,
    voice_transcript: str | None,
    today: date,
) -> str:
    parts: List[str] = []

    if not _is_blank(voice_transcript):
        parts.append(f"[VOICE INPUT]: {voice_transcript}\n\n")

    if not _is_blank(text):
        parts.append(f"[TEXT INPUT]: {text}\n\n")

    if attachments:
        parts.append("[ATTACHMENTS]:\n")
        for att in attachments:
            line = f"- Type: {att.kind}, Name: {att.name}"
            if not _is_blank(att.extracted_text):
                line += f"\n  Extracted content: {att.extracted_text}"
            parts.append(line + "\n")

    # the model never receives a blank prompt
    if not parts:
        parts.append("[EMPTY INPUT]: User sent empty message")

    parts.append(f"\n[CONTEXT]: Today is {format_context_date(today)}")
    return "".join(parts)


def summarize_attachment(
    name: str,
    mime_type: str | None,
    data_b64: str | None = None,
    size_bytes: int | None = None,
    extracted_text: str | None = None,
    ocr: Callable[[bytes, str], Optional[str]] | None = None,
    data: bytes | None = None,
) -> AttachmentSummary:
    """
    Builds the summary for one uploaded attachment, given either base64 `data_b64` or raw
    `data` bytes from a multipart upload. Images with a payload go through `ocr`;
    any OCR failure leaves extracted_text as None and the attachment is still listed.
    """
    kind = attachment_kind(mime_type)
    raw: bytes | None = data
    if raw is None and data_b64:
        try:
            raw = base64.b64decode(data_b64, validate=False)
        except (binascii.Error, ValueError) as e:
            logger.warning(f"[Intake] Attachment {name} has undecodable data: {e}")
            raw = None

    if size_bytes is None:
        size_bytes = len(raw) if raw is not None else 0

    if extracted_text is None and kind == "image" and raw and ocr is not None:
        try:
            extracted_text = ocr(raw, mime_type or "")
            logger.info(
                f"[OCR] Extracted {len(extracted_text) if extracted_text else 0} chars from {name}"
            )
        except Exception as e:
            logger.warning(f"[OCR] Failed to extract text from {name}: {e}")
            extracted_text = None

    return AttachmentSummary(
        name=name,
        kind=kind,
        mime_type=mime_type,
        size_bytes=size_bytes,
        extracted_text=extracted_text,
    )
