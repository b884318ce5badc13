# command_center/llm_client.py
import asyncio
import base64
import logging
import threading
import random
import time
import traceback
from typing import Callable, TypeVar, Any, Dict, List, Optional

from openai import OpenAI
from langchain_google_vertexai import ChatVertexAI
from langchain_core.messages import HumanMessage, AIMessage, SystemMessage

from command_center.model_props import parse_model_name, is_openai_model, estimate_cost_usd

T = TypeVar("T")

logger = logging.getLogger("command_center")

# image MIME types the vision call accepts; anything else is not sent
SUPPORTED_IMAGE_MIME_TYPES = {
    "image/jpeg": "image/jpeg",
    "image/jpg": "image/jpeg",
    "image/png": "image/png",
    "image/gif": "image/gif",
    "image/webp": "image/webp",
}


class MaxRetryErrorsException(Exception):
    pass


# Global backoff state (shared across all clients)
_global_backoff_lock = threading.Lock()
_global_wait_until = 0.0
_global_backoff_seconds = 30.0
_GLOBAL_BACKOFF_MAX = 600.0


def call_with_retries_sync(
    fn: Callable[[], T],
    *,
    retries: int = 3,
    log: Callable[[str], None] | None = None,
) -> T:
    """
    Run a sync LLM call with global 429/timeout backoff + retries.
    """
    last_exception: Exception | None = None

    def _is_timeout_error(e: Exception) -> bool:
        if isinstance(e, (asyncio.TimeoutError, TimeoutError)):
            return True
        msg = repr(e)
        return "TimeoutError" in msg or "timed out" in msg.lower()

    def _is_resource_exhausted_error(e: Exception) -> bool:
        msg = str(e)
        return (
            "429" in msg
            and (
                "RESOURCE_EXHAUSTED" in msg
                or "Resource has been exhausted" in msg
                or "Too Many Requests" in msg
            )
        )

    def _respect_global_backoff() -> None:
        while True:
            with _global_backoff_lock:
                now = time.monotonic()
                wait = _global_wait_until - now
            if wait <= 0:
                return
            time.sleep(min(wait, 1.0))

    def _register_429_and_get_delay() -> float:
        global _global_wait_until, _global_backoff_seconds

        with _global_backoff_lock:
            now = time.monotonic()
            base = _global_backoff_seconds
            delay = random.uniform(base * 0.95, base * 1.35)
            _global_backoff_seconds = min(_global_backoff_seconds * 2, _GLOBAL_BACKOFF_MAX)
            _global_wait_until = max(_global_wait_until, now + delay)
            return delay

    def _reset_backoff_on_success() -> None:
        global _global_backoff_seconds
        _global_backoff_seconds = max(1.0, _global_backoff_seconds * 0.5)

    for attempt in range(retries):
        _respect_global_backoff()
        start_time = time.time()
        try:
            result = fn()
            _reset_backoff_on_success()
            return result
        except Exception as e:
            elapsed = time.time() - start_time
            last_exception = e

            if _is_resource_exhausted_error(e) or _is_timeout_error(e):
                delay = _register_429_and_get_delay()
                msg = f"Attempt {attempt+1} got 429/timeout, backing off ~{delay:.1f}s."
            else:
                msg = f"Attempt {attempt+1} failed."

            if log:
                log(f"{msg} (elapsed={elapsed:.2f}s): {e}\n{traceback.format_exc()}")

    raise MaxRetryErrorsException(f"All {retries} retry attempts failed.") from last_exception


class BaseLlmClient:
    """
    Common usage accounting for OpenAI and Vertex responses.
    """

    last_usage: Optional[Dict[str, float]]

    def _add_usage(self, inc: Dict[str, float]) -> None:
        model_name = getattr(self, "model_name", None)
        if model_name is not None:
            inc["accrued_cost"] = estimate_cost_usd(
                llm_model_name=model_name,
                prompt_tokens=int(inc["prompt_token_count"]),
                completion_tokens=int(inc["candidates_token_count"]),
                service_tier=(getattr(self, "_openai_params", None) or {}).get("service_tier"),
            )
        if self.last_usage is None:
            self.last_usage = inc
            return
        for k, v in inc.items():
            self.last_usage[k] = (self.last_usage.get(k, 0) or 0) + (v or 0)

    def _merge_usage(self, resp: Any) -> None:
        if resp is None:
            return
        usage = getattr(resp, "usage", None)
        if usage is None:
            return
        details = getattr(usage, "input_tokens_details", None)
        self._add_usage({
            "prompt_token_count": getattr(usage, "input_tokens", 0) or 0,
            "candidates_token_count": getattr(usage, "output_tokens", 0) or 0,
            "total_token_count": getattr(usage, "total_tokens", 0) or 0,
            "cached_content_token_count": getattr(details, "cached_tokens", 0) if details else 0,
        })

    def _merge_vertex_usage(self, resp: Any) -> None:
        # Try to pull usage_metadata from the response if available
        usage_metadata = getattr(resp, "usage_metadata", None)
        if usage_metadata is None:
            rm = getattr(resp, "response_metadata", None)
            if isinstance(rm, dict):
                usage_metadata = rm.get("usage_metadata")
            elif rm is not None:
                usage_metadata = getattr(rm, "usage_metadata", None)
        if not usage_metadata:
            return

        def get(*keys: str) -> int:
            for k in keys:
                if isinstance(usage_metadata, dict):
                    v = usage_metadata.get(k)
                else:
                    v = getattr(usage_metadata, k, None)
                if v:
                    return int(v)
            return 0

        self._add_usage({
            "prompt_token_count": get("prompt_token_count", "input_tokens"),
            "candidates_token_count": get("candidates_token_count", "output_tokens"),
            "total_token_count": get("total_token_count", "total_tokens"),
            "cached_content_token_count": get("cached_content_token_count"),
        })

    def get_accrued_cost(self) -> float:
        if not self.last_usage:
            return 0.0
        return float(self.last_usage.get("accrued_cost", 0.0))


class ChatLlmClient(BaseLlmClient):
    """
    Chat wrapper used by the command center:

        text = chat_llm.invoke(system_prompt, user_prompt)
        text = chat_llm.extract_text_from_image(image_bytes, "image/png", ocr_prompt)

    Under the hood:
    - Vertex: ChatVertexAI.invoke(messages)
    - OpenAI: Responses API with input=[{role, content}, ...]
    """

    def __init__(
        self,
        model_name: str,
        *,
        vertex_project: str,
        vertex_region: str,
        timeout: float | None = None,
        retries: int = 3,
    ):
        self.provider = "openai" if is_openai_model(model_name) else "vertex"
        self.model_name = model_name
        self._timeout = timeout
        self._retries = retries
        self.last_usage: Optional[Dict[str, float]] = None
        self._openai_params: Dict[str, Any] = {}

        if self.provider == "vertex":
            self._vertex = ChatVertexAI(
                project=vertex_project,
                location=vertex_region,
                model_name=model_name,
                timeout=timeout,
            )
            self._client = None
        else:
            self._vertex = None
            self.model_name, self._openai_params = parse_model_name(self.model_name)
            client_kwargs: Dict[str, Any] = {"max_retries": 0}
            if timeout is not None:
                client_kwargs["timeout"] = timeout

            self._client = OpenAI(**client_kwargs)

    def _to_openai_messages(self, messages: List[SystemMessage | HumanMessage | AIMessage]) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for m in messages:
            if isinstance(m, SystemMessage):
                role = "developer"
            elif isinstance(m, AIMessage):
                role = "assistant"
            else:
                role = "user"
            content = m.content
            if isinstance(content, list):
                # multimodal parts -> Responses API parts
                parts = []
                for part in content:
                    if part.get("type") == "image_url":
                        parts.append({"type": "input_image", "image_url": part["image_url"]["url"]})
                    else:
                        parts.append({"type": "input_text", "text": str(part.get("text", ""))})
                out.append({"role": role, "content": parts})
            else:
                out.append({"role": role, "content": str(content)})
        return out

    def _invoke_once(self, messages: List[SystemMessage | HumanMessage | AIMessage]) -> str:
        """
        Single HTTP call without retries/backoff.
        """
        if self.provider == "vertex":
            resp = self._vertex.invoke(messages)
            self._merge_vertex_usage(resp)

            if isinstance(resp, str):
                return resp.strip()
            content = getattr(resp, "content", str(resp))
            if isinstance(content, list):
                content = "".join(
                    p.get("text", "") if isinstance(p, dict) else str(p) for p in content
                )
            return (content or "").strip()

        resp = self._client.responses.create(
            model=self.model_name,
            input=self._to_openai_messages(messages),
            **self._openai_params,
        )
        self._merge_usage(resp)

        text = getattr(resp, "output_text", "") or ""
        return text.strip()

    def invoke_messages(self, messages: List[SystemMessage | HumanMessage | AIMessage]) -> str:
        """
        Synchronous chat call with global 429/timeout backoff + retries.
        """
        return call_with_retries_sync(
            lambda: self._invoke_once(messages),
            retries=self._retries,
            log=lambda msg: logger.warning(f"[CHAT-LLM-RETRY] {msg}"),
        )

    def invoke(self, system_prompt: str, user_prompt: str) -> str:
        return self.invoke_messages([
            SystemMessage(content=system_prompt),
            HumanMessage(content=user_prompt),
        ])

    def extract_text_from_image(self, image_bytes: bytes, mime_type: str, prompt: str) -> str | None:
        """
        Image-to-text through the same chat model. Returns None for unsupported image types.
        Transport failures propagate; callers decide whether extraction is optional.
        """
        normalized = SUPPORTED_IMAGE_MIME_TYPES.get((mime_type or "").lower())
        if normalized is None:
            logger.warning(f"[OCR] Unsupported image type: {mime_type}")
            return None

        data_url = f"data:{normalized};base64,{base64.b64encode(image_bytes).decode('ascii')}"
        message = HumanMessage(content=[
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": data_url}},
        ])
        text = self.invoke_messages([message])
        return text or None
