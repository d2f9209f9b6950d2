# artifactflow/artifact_generator.py
import json
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from artifactflow.artifact_prompts import (
    ARTIFACT_SYSTEM_PROMPT,
    DEPENDENCY_SECTION,
    KICKOFF_PROMPT,
    NO_DEPENDENCIES,
    UPDATE_PROMPT,
)
from artifactflow.base_utils import BaseUtils
from artifactflow.config import AI_LOG_DIR, DEFAULT_LLM_MODEL
from artifactflow.errors import GenerationError
from artifactflow.llm_client import ChatLlmClient, build_chat_llm
from artifactflow.response_parser import extract_content_and_commentary, validate_and_format_response

logger = logging.getLogger("artifactflow")

# keys every context carries; everything else is a resolved dependency
_CONTEXT_BASE_KEYS = {"project", "artifact", "is_update", "user_message"}


@dataclass
class GenerationResult:
    artifact_content: str = ""
    commentary: str = ""


class ArtifactGenerator(BaseUtils):
    """
    Renders prompts from a context object (see ContextManager), calls the
    chat model and parses the tagged reply.
    """

    def __init__(
        self,
        type_cache,
        llm_factory: Callable[[str], ChatLlmClient] = build_chat_llm,
        default_model: str = DEFAULT_LLM_MODEL,
        ai_log_dir: str | None = AI_LOG_DIR,
    ):
        self.type_cache = type_cache
        self.llm_factory = llm_factory
        self.default_model = default_model
        self.ai_log_dir = ai_log_dir
        self._clients: Dict[str, ChatLlmClient] = {}
        self._clients_lock = threading.Lock()

    # -----------------------
    # Plumbing
    # -----------------------

    def _chat_llm(self, model: str | None) -> ChatLlmClient:
        name = model or self.default_model
        with self._clients_lock:
            client = self._clients.get(name)
            if client is None:
                client = self._clients[name] = self.llm_factory(name)
            return client

    def _artifact_format(self, context: Dict[str, Any]) -> Dict[str, str]:
        type_name = (context.get("artifact") or {}).get("artifact_type_name")
        info = self.type_cache.get_artifact_type_info(type_name) if type_name else None
        return self.type_cache.get_artifact_format(info.slug if info else "")

    def _dependency_sections(self, context: Dict[str, Any]) -> str:
        sections = []
        for key, value in context.items():
            if key in _CONTEXT_BASE_KEYS:
                continue
            if isinstance(value, list):
                value = "\n\n---\n\n".join(str(v) for v in value)
            sections.append(self.unsafe_string_format(
                DEPENDENCY_SECTION,
                DEPENDENCY_TITLE=key.replace("_", " ").title(),
                DEPENDENCY_CONTENT=value,
            ))
        return "\n".join(sections) if sections else NO_DEPENDENCIES

    def _system_message(self, context: Dict[str, Any], artifact_format: Dict[str, str]) -> SystemMessage:
        project = context.get("project") or {}
        artifact = context.get("artifact") or {}
        prompt = self.unsafe_string_format(
            ARTIFACT_SYSTEM_PROMPT,
            PROJECT_TYPE_NAME=project.get("project_type_name") or "project",
            PROJECT_NAME=project.get("name"),
            ARTIFACT_TYPE_NAME=artifact.get("artifact_type_name"),
            ARTIFACT_PHASE=artifact.get("artifact_phase"),
            SYNTAX=artifact_format["syntax"],
            DEPENDENCY_SECTIONS=self._dependency_sections(context),
        )
        return SystemMessage(content=prompt)

    def _history_messages(self, previous_interactions) -> List[BaseMessage]:
        out: List[BaseMessage] = []
        for interaction in previous_interactions or []:
            if interaction.role == "assistant":
                out.append(AIMessage(content=interaction.content))
            else:
                out.append(HumanMessage(content=interaction.content))
        return out

    def _update_messages(self, context, user_message, previous_interactions, artifact_format) -> List[BaseMessage]:
        artifact = context.get("artifact") or {}
        prompt = self.unsafe_string_format(
            UPDATE_PROMPT,
            ARTIFACT_NAME=artifact.get("name") or artifact.get("artifact_type_name"),
            CURRENT_CONTENT=artifact.get("content") or "(empty)",
            USER_MESSAGE=user_message,
            SYNTAX=artifact_format["syntax"],
            START_TAG=artifact_format["start_tag"],
            END_TAG=artifact_format["end_tag"],
            COMMENTARY_START_TAG=artifact_format["commentary_start_tag"],
            COMMENTARY_END_TAG=artifact_format["commentary_end_tag"],
        )
        return [
            self._system_message(context, artifact_format),
            *self._history_messages(previous_interactions),
            HumanMessage(content=prompt),
        ]

    def _parse(self, raw: str, artifact_format: Dict[str, str], is_update: bool) -> GenerationResult:
        raw = raw or ""
        if raw.lstrip().startswith("```"):
            raw = self.clean_triple_backticks(raw)
        try:
            parsed = validate_and_format_response(
                extract_content_and_commentary(raw, artifact_format),
                is_update,
            )
        except ValueError as e:
            raise GenerationError(str(e)) from e
        return GenerationResult(artifact_content=parsed.artifact_content, commentary=parsed.commentary)

    def _log_exchange(self, kind: str, context: Dict[str, Any], messages: List[BaseMessage], raw: str) -> None:
        logger.debug(f"[{kind}] response\n{raw}")
        if not self.ai_log_dir:
            return
        os.makedirs(self.ai_log_dir, exist_ok=True)
        artifact_id = (context.get("artifact") or {}).get("artifact_id")
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
        path = os.path.join(self.ai_log_dir, f"{timestamp}_{kind}_{artifact_id}.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(
                {
                    "kind": kind,
                    "context": context,
                    "messages": [{"type": m.type, "content": str(m.content)} for m in messages],
                    "response": raw,
                },
                f,
                indent=2,
                default=str,
            )

    # -----------------------
    # Generation
    # -----------------------

    def kickoff_artifact_interaction(self, context: Dict[str, Any], model: str | None = None) -> GenerationResult:
        """First turn for a new artifact: usually commentary/questions only."""
        artifact_format = self._artifact_format(context)
        artifact = context.get("artifact") or {}
        prompt = self.unsafe_string_format(
            KICKOFF_PROMPT,
            ARTIFACT_TYPE_NAME=artifact.get("artifact_type_name"),
            ARTIFACT_NAME=artifact.get("name") or f"New {artifact.get('artifact_type_name')}",
            COMMENTARY_START_TAG=artifact_format["commentary_start_tag"],
            COMMENTARY_END_TAG=artifact_format["commentary_end_tag"],
        )
        messages = [self._system_message(context, artifact_format), HumanMessage(content=prompt)]

        raw = self._chat_llm(model).invoke(messages)
        self._log_exchange("kickoff", context, messages, raw)
        return self._parse(raw, artifact_format, is_update=False)

    def update_artifact(
        self,
        context: Dict[str, Any],
        user_message: str,
        model: str | None = None,
        previous_interactions: Optional[list] = None,
    ) -> GenerationResult:
        artifact_format = self._artifact_format(context)
        messages = self._update_messages(context, user_message, previous_interactions, artifact_format)

        raw = self._chat_llm(model).invoke(messages)
        self._log_exchange("update", context, messages, raw)
        return self._parse(raw, artifact_format, is_update=True)

    def stream_update_artifact(
        self,
        context: Dict[str, Any],
        user_message: str,
        on_chunk: Callable[[str], None],
        model: str | None = None,
        previous_interactions: Optional[list] = None,
    ) -> GenerationResult:
        artifact_format = self._artifact_format(context)
        messages = self._update_messages(context, user_message, previous_interactions, artifact_format)

        raw = self._chat_llm(model).stream(messages, on_chunk)
        self._log_exchange("stream_update", context, messages, raw)
        return self._parse(raw, artifact_format, is_update=True)
