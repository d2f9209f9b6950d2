# artifactflow/llm_client.py
import logging
import random
import threading
import time
import traceback
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from langchain_core.messages import AIMessage, BaseMessage, SystemMessage
from langchain_google_vertexai import ChatVertexAI
from openai import OpenAI

from artifactflow.config import LLM_TIMEOUT, PROJECT_ID, REGION

logger = logging.getLogger("artifactflow")

T = TypeVar("T")


class MaxRetryErrorsException(Exception):
    pass


# Global backoff state (shared across all clients)
_global_backoff_lock = threading.Lock()
_global_wait_until = 0.0
_global_backoff_seconds = 30.0
_GLOBAL_BACKOFF_MAX = 600.0


def _is_timeout_error(e: Exception) -> bool:
    if isinstance(e, TimeoutError):
        return True
    msg = repr(e)
    return "TimeoutError" in msg or "timed out" in msg.lower()


def _is_resource_exhausted_error(e: Exception) -> bool:
    msg = str(e)
    return "429" in msg and (
        "RESOURCE_EXHAUSTED" in msg
        or "Resource has been exhausted" in msg
        or "Too Many Requests" in msg
    )


def _respect_global_backoff() -> None:
    while True:
        with _global_backoff_lock:
            wait = _global_wait_until - time.monotonic()
        if wait <= 0:
            return
        time.sleep(min(wait, 1.0))


def _register_429_and_get_delay() -> float:
    global _global_wait_until, _global_backoff_seconds

    with _global_backoff_lock:
        base = _global_backoff_seconds
        delay = random.uniform(base * 0.95, base * 1.35)
        _global_backoff_seconds = min(_global_backoff_seconds * 2, _GLOBAL_BACKOFF_MAX)
        _global_wait_until = max(_global_wait_until, time.monotonic() + delay)
        return delay


def _reset_backoff_on_success() -> None:
    global _global_backoff_seconds
    with _global_backoff_lock:
        _global_backoff_seconds = max(1.0, _global_backoff_seconds * 0.5)


def call_with_retries_sync(
    fn: Callable[[], T],
    *,
    retries: int = 3,
    log: Callable[[str], None] | None = None,
) -> T:
    """
    Run a sync LLM call with global 429/timeout backoff + retries.
    A 429 from any client pushes every client back, not just the caller.
    """
    last_exception: Exception | None = None

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


# -----------------------
# Model names
# -----------------------

def is_openai_model(model_name: str) -> bool:
    prefixes = ("gpt-", "gpt4", "o1", "o3", "o4")
    return any((model_name or "").startswith(p) for p in prefixes)


def parse_model_name(raw: str) -> Tuple[str, Dict[str, Any]]:
    """
    'gpt-5.1_low'  -> ('gpt-5.1', {'reasoning': {'effort': 'low'}})
    'gpt-5.1_flex' -> ('gpt-5.1', {'service_tier': 'flex'})
    """
    raw = (raw or "").strip()
    if not raw:
        raise ValueError("parse_model_name: No Model Name passed.")

    base, *suffixes = raw.split("_")
    params: Dict[str, Any] = {}
    for token in suffixes:
        if token in {"none", "minimal", "low", "medium", "high", "xhigh"}:
            params["reasoning"] = {"effort": token}
        elif token in {"auto", "default", "flex", "priority"}:
            params["service_tier"] = token
        else:
            raise ValueError(f"parse_model_name: unknown option '{token}' in '{raw}'")
    return base, params


# -----------------------
# Chat client
# -----------------------

class ChatLlmClient:
    """
    Chat-style wrapper:

        text = chat_llm.invoke([SystemMessage(...), HumanMessage(...), AIMessage(...), ...])
        text = chat_llm.stream(messages, on_chunk=lambda piece: ...)

    Under the hood:
    - Vertex: ChatVertexAI.invoke / .stream
    - OpenAI: Responses API with input=[{role, content}, ...]
    """

    def __init__(
        self,
        model_name: str,
        *,
        vertex_project: str,
        vertex_region: str,
        timeout: float | None = None,
    ):
        self.provider = "openai" if is_openai_model(model_name) else "vertex"
        self.model_name = model_name
        self._timeout = timeout
        self.last_usage: Optional[Dict[str, int]] = None
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

    # usage accounting

    def _add_usage(self, inc: Dict[str, int]) -> None:
        if self.last_usage is None:
            self.last_usage = dict(inc)
            return
        for k, v in inc.items():
            self.last_usage[k] = (self.last_usage.get(k, 0) or 0) + (v or 0)

    def _merge_openai_usage(self, resp: Any) -> None:
        usage = getattr(resp, "usage", None)
        if usage is None:
            return
        self._add_usage({
            "prompt_token_count": getattr(usage, "input_tokens", 0) or 0,
            "candidates_token_count": getattr(usage, "output_tokens", 0) or 0,
            "total_token_count": getattr(usage, "total_tokens", 0) or 0,
        })

    def _merge_vertex_usage(self, resp: Any) -> None:
        usage_md = getattr(resp, "usage_metadata", None)
        if usage_md is None:
            rm = getattr(resp, "response_metadata", None)
            if isinstance(rm, dict):
                usage_md = rm.get("usage_metadata")
        if not usage_md:
            return

        def get(*keys: str) -> int:
            for k in keys:
                v = usage_md.get(k) if isinstance(usage_md, dict) else getattr(usage_md, k, None)
                if v:
                    return int(v)
            return 0

        self._add_usage({
            "prompt_token_count": get("input_tokens", "prompt_token_count"),
            "candidates_token_count": get("output_tokens", "candidates_token_count"),
            "total_token_count": get("total_tokens", "total_token_count"),
        })

    def _to_openai_messages(self, messages: List[BaseMessage]) -> List[Dict[str, str]]:
        out: List[Dict[str, str]] = []
        for m in messages:
            if isinstance(m, SystemMessage):
                role = "developer"
            elif isinstance(m, AIMessage):
                role = "assistant"
            else:
                role = "user"
            out.append({"role": role, "content": str(m.content)})
        return out

    # calls

    def _invoke_once(self, messages: List[BaseMessage]) -> str:
        if self.provider == "vertex":
            resp = self._vertex.invoke(messages)
            self._merge_vertex_usage(resp)
            if isinstance(resp, str):
                return resp
            return str(getattr(resp, "content", resp))

        resp = self._client.responses.create(
            model=self.model_name,
            input=self._to_openai_messages(messages),
            **self._openai_params,
        )
        self._merge_openai_usage(resp)
        return (getattr(resp, "output_text", "") or "").strip()

    def _stream_once(self, messages: List[BaseMessage], on_chunk: Callable[[str], None]) -> str:
        parts: List[str] = []

        if self.provider == "vertex":
            for chunk in self._vertex.stream(messages):
                piece = str(getattr(chunk, "content", "") or "")
                self._merge_vertex_usage(chunk)
                if piece:
                    parts.append(piece)
                    on_chunk(piece)
            return "".join(parts)

        events = self._client.responses.create(
            model=self.model_name,
            input=self._to_openai_messages(messages),
            stream=True,
            **self._openai_params,
        )
        for event in events:
            event_type = getattr(event, "type", "")
            if event_type == "response.output_text.delta":
                piece = getattr(event, "delta", "") or ""
                if piece:
                    parts.append(piece)
                    on_chunk(piece)
            elif event_type == "response.completed":
                self._merge_openai_usage(getattr(event, "response", None))
        return "".join(parts).strip()

    def invoke(self, messages: List[BaseMessage], *, retries: int = 3) -> str:
        """Synchronous chat call with global 429/timeout backoff + retries."""
        return call_with_retries_sync(
            lambda: self._invoke_once(messages),
            retries=retries,
            log=lambda msg: logger.warning(f"[CHAT-LLM-RETRY] {msg}"),
        )

    def stream(self, messages: List[BaseMessage], on_chunk: Callable[[str], None], *, retries: int = 1) -> str:
        """
        Streams text pieces to on_chunk and returns the full text.
        Not retried by default: chunks already delivered cannot be taken back.
        """
        return call_with_retries_sync(
            lambda: self._stream_once(messages, on_chunk),
            retries=retries,
            log=lambda msg: logger.warning(f"[CHAT-LLM-STREAM] {msg}"),
        )


def build_chat_llm(model_name: str, timeout: float | None = None) -> ChatLlmClient:
    return ChatLlmClient(
        model_name=model_name,
        vertex_project=PROJECT_ID,
        vertex_region=REGION,
        timeout=timeout or LLM_TIMEOUT,
    )
