# artifactflow/type_cache.py
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session, selectinload

from artifactflow.config import TYPE_CACHE_TTL_SECONDS
from artifactflow.entities import ArtifactState, ArtifactType, LifecyclePhase, ProjectType, StateTransition

logger = logging.getLogger("artifactflow")

COMMENTARY_START_TAG = "[COMMENTARY]"
COMMENTARY_END_TAG = "[/COMMENTARY]"


@dataclass(frozen=True)
class ArtifactTypeInfo:
    type_id: int
    name: str
    slug: str
    syntax: str
    lifecycle_phase_id: int


@dataclass(frozen=True)
class ProjectTypeInfo:
    id: int
    name: str
    description: Optional[str] = None
    phase_ids: List[int] = field(default_factory=list)


class TypeLookupCache:
    """
    Process-wide lookup of the methodology catalog (artifact types, states,
    transitions, project types and their ordered phases).

    - loaded lazily on first read
    - the whole snapshot expires ttl_seconds after it was loaded; next read reloads
    - invalidate() drops the snapshot immediately (call after catalog edits)
    - thread-safe; readers never see a half-built snapshot
    """

    def __init__(self, session_factory: Callable[[], Session], ttl_seconds: int = TYPE_CACHE_TTL_SECONDS):
        self.SessionFactory = session_factory
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        # {"artifact_types": ..., "states": ..., ..., "expires_at": float}
        self._items: dict[str, object] | None = None

    # -----------------------
    # Loading
    # -----------------------

    def _load_unlocked(self) -> dict[str, object]:
        session = self.SessionFactory()
        try:
            artifact_types: Dict[str, ArtifactTypeInfo] = {}
            for t in session.query(ArtifactType).order_by(ArtifactType.id).all():
                artifact_types[t.name] = ArtifactTypeInfo(
                    type_id=t.id,
                    name=t.name,
                    slug=t.slug,
                    syntax=t.syntax,
                    lifecycle_phase_id=t.lifecycle_phase_id,
                )

            states = {s.name: s.id for s in session.query(ArtifactState).all()}
            transitions = {
                (tr.from_state_id, tr.to_state_id): tr.id
                for tr in session.query(StateTransition).all()
            }
            phases = {p.name: p.id for p in session.query(LifecyclePhase).all()}

            project_types: Dict[int, ProjectTypeInfo] = {}
            default_project_type = None
            rows = (
                session.query(ProjectType)
                .options(selectinload(ProjectType.lifecycle_phases))
                .filter(ProjectType.is_active.is_(True))
                .order_by(ProjectType.id)
                .all()
            )
            for pt in rows:
                info = ProjectTypeInfo(
                    id=pt.id,
                    name=pt.name,
                    description=pt.description,
                    phase_ids=[p.id for p in pt.lifecycle_phases],
                )
                project_types[pt.id] = info
                if default_project_type is None:
                    default_project_type = info
        finally:
            session.close()

        logger.debug(
            f"[TypeCache] loaded {len(artifact_types)} artifact types, {len(states)} states, "
            f"{len(project_types)} project types"
        )
        return {
            "artifact_types": artifact_types,
            "states": states,
            "transitions": transitions,
            "phases": phases,
            "project_types": project_types,
            "default_project_type": default_project_type,
            "expires_at": time.time() + self.ttl_seconds,
        }

    def _snapshot(self) -> dict[str, object]:
        with self._lock:
            item = self._items
            if item is None or float(item["expires_at"]) <= time.time():
                self._items = item = self._load_unlocked()
            return item

    def invalidate(self) -> None:
        with self._lock:
            self._items = None

    def is_loaded(self) -> bool:
        with self._lock:
            return self._items is not None and float(self._items["expires_at"]) > time.time()

    # -----------------------
    # Lookups
    # -----------------------

    def get_artifact_type_info(self, name: str) -> ArtifactTypeInfo | None:
        return self._snapshot()["artifact_types"].get(name)

    def get_artifact_type_info_by_id(self, type_id: int) -> ArtifactTypeInfo | None:
        for info in self._snapshot()["artifact_types"].values():
            if info.type_id == type_id:
                return info
        return None

    def get_lifecycle_phase_id_by_name(self, name: str) -> int | None:
        return self._snapshot()["phases"].get(name)

    def get_artifact_state_id_by_name(self, name: str) -> int | None:
        return self._snapshot()["states"].get(name)

    def get_state_transition_id(self, from_state: str, to_state: str) -> int | None:
        snap = self._snapshot()
        from_id = snap["states"].get(from_state)
        to_id = snap["states"].get(to_state)
        if from_id is None or to_id is None:
            return None
        return snap["transitions"].get((from_id, to_id))

    def get_project_type_by_id(self, project_type_id: int) -> ProjectTypeInfo | None:
        return self._snapshot()["project_types"].get(project_type_id)

    def get_default_project_type(self) -> ProjectTypeInfo | None:
        return self._snapshot()["default_project_type"]

    def get_project_type_phases(self, project_type_id: int) -> List[int]:
        info = self.get_project_type_by_id(project_type_id)
        return list(info.phase_ids) if info else []

    def get_artifact_format(self, slug: str) -> dict:
        """Tags the model must wrap artifact content and commentary in."""
        for info in self._snapshot()["artifact_types"].values():
            if info.slug == slug:
                tag = info.slug.upper()
                return {
                    "start_tag": f"[{tag}]",
                    "end_tag": f"[/{tag}]",
                    "syntax": info.syntax,
                    "commentary_start_tag": COMMENTARY_START_TAG,
                    "commentary_end_tag": COMMENTARY_END_TAG,
                }
        return {
            "start_tag": "[ARTIFACT]",
            "end_tag": "[/ARTIFACT]",
            "syntax": "markdown",
            "commentary_start_tag": COMMENTARY_START_TAG,
            "commentary_end_tag": COMMENTARY_END_TAG,
        }
