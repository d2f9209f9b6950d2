# artifactflow/project_type_repository.py
import logging
from collections import deque
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session, selectinload

from artifactflow.base_utils import slugify
from artifactflow.entities import (
    ArtifactState,
    ArtifactType,
    LifecyclePhase,
    ProjectType,
    StateTransition,
    TypeDependency,
)
from artifactflow.errors import BadRequestError, DependencyCycleError, NotFoundError

logger = logging.getLogger("artifactflow")

ARTIFACT_STATES = ["To Do", "In Progress", "Approved"]
STATE_TRANSITIONS = [
    ("To Do", "In Progress"),
    ("In Progress", "Approved"),
    ("Approved", "In Progress"),
]


def declare_type_dependency(
    session: Session,
    dependent: ArtifactType,
    dependency: ArtifactType,
    is_required: bool = True,
) -> TypeDependency:
    """
    Add the edge `dependent -> dependency` unless it would make the type
    graph cyclic. Re-declaring an existing edge updates is_required only.
    Flushes but does not commit.
    """
    if dependent.id == dependency.id:
        raise DependencyCycleError(f"{dependent.name} cannot depend on itself")

    existing = (
        session.query(TypeDependency)
        .filter(
            TypeDependency.dependent_type_id == dependent.id,
            TypeDependency.dependency_type_id == dependency.id,
        )
        .one_or_none()
    )
    if existing is not None:
        existing.is_required = is_required
        session.flush()
        return existing

    # walk everything `dependency` already depends on; reaching `dependent` closes a loop
    edges: Dict[int, List[int]] = {}
    for src, dst in session.query(TypeDependency.dependent_type_id, TypeDependency.dependency_type_id):
        edges.setdefault(src, []).append(dst)

    seen = {dependency.id}
    queue = deque([dependency.id])
    while queue:
        node = queue.popleft()
        for nxt in edges.get(node, []):
            if nxt == dependent.id:
                raise DependencyCycleError(
                    f"{dependent.name} -> {dependency.name} would create a dependency cycle"
                )
            if nxt not in seen:
                seen.add(nxt)
                queue.append(nxt)

    link = TypeDependency(
        dependent_type_id=dependent.id,
        dependency_type_id=dependency.id,
        is_required=is_required,
    )
    session.add(link)
    session.flush()
    return link


class ProjectTypeRepository:

    def __init__(self, session_factory: Callable[[], Session], type_cache=None):
        self.SessionFactory = session_factory
        self.type_cache = type_cache

    # -----------------------
    # Reads
    # -----------------------

    def find_by_id(self, project_type_id: int) -> Optional[ProjectType]:
        session = self.SessionFactory()
        try:
            return (
                session.query(ProjectType)
                .options(selectinload(ProjectType.lifecycle_phases))
                .filter(ProjectType.id == project_type_id)
                .one_or_none()
            )
        finally:
            session.close()

    def find_all(self) -> List[ProjectType]:
        session = self.SessionFactory()
        try:
            return (
                session.query(ProjectType)
                .options(selectinload(ProjectType.lifecycle_phases))
                .filter(ProjectType.is_active.is_(True))
                .order_by(ProjectType.id)
                .all()
            )
        finally:
            session.close()

    def get_default_project_type(self) -> ProjectType:
        project_types = self.find_all()
        if not project_types:
            raise NotFoundError("No project types found. Please ensure database is properly seeded.")
        return project_types[0]

    def get_lifecycle_phases(self, project_type_id: int) -> List[LifecyclePhase]:
        session = self.SessionFactory()
        try:
            return (
                session.query(LifecyclePhase)
                .filter(LifecyclePhase.project_type_id == project_type_id)
                .order_by(LifecyclePhase.order)
                .all()
            )
        finally:
            session.close()

    # -----------------------
    # Catalog writes
    # -----------------------

    def add_type_dependency(self, dependent_name: str, dependency_name: str, is_required: bool = True) -> TypeDependency:
        session = self.SessionFactory()
        try:
            types = {
                t.name: t
                for t in session.query(ArtifactType)
                .filter(ArtifactType.name.in_([dependent_name, dependency_name]))
                .all()
            }
            for name in (dependent_name, dependency_name):
                if name not in types:
                    raise BadRequestError(f"Invalid artifact type: {name}")
            link = declare_type_dependency(session, types[dependent_name], types[dependency_name], is_required)
            session.commit()
        finally:
            session.close()

        if self.type_cache is not None:
            self.type_cache.invalidate()
        return link

    def _seed_states(self, session: Session) -> None:
        states: Dict[str, ArtifactState] = {s.name: s for s in session.query(ArtifactState).all()}
        for name in ARTIFACT_STATES:
            if name not in states:
                states[name] = ArtifactState(name=name)
                session.add(states[name])
        session.flush()

        existing = {(t.from_state_id, t.to_state_id) for t in session.query(StateTransition).all()}
        for from_name, to_name in STATE_TRANSITIONS:
            key = (states[from_name].id, states[to_name].id)
            if key not in existing:
                session.add(StateTransition(from_state_id=key[0], to_state_id=key[1]))
        session.flush()

    def _seed_project_type(self, session: Session, definition: Dict[str, Any]) -> ProjectType:
        name = definition["name"]
        project_type = session.query(ProjectType).filter(ProjectType.name == name).one_or_none()
        if project_type is None:
            project_type = ProjectType(
                name=name,
                description=definition.get("description"),
                is_active=definition.get("is_active", True),
            )
            session.add(project_type)
            session.flush()
            logger.info(f"[Seed] Created project type '{name}' (id={project_type.id})")

        for idx, phase_def in enumerate(definition.get("phases", []), start=1):
            phase = (
                session.query(LifecyclePhase)
                .filter(
                    LifecyclePhase.project_type_id == project_type.id,
                    LifecyclePhase.name == phase_def["name"],
                )
                .one_or_none()
            )
            if phase is None:
                phase = LifecyclePhase(
                    name=phase_def["name"],
                    order=phase_def.get("order", idx),
                    project_type_id=project_type.id,
                )
                session.add(phase)
                session.flush()

            for type_def in phase_def.get("artifact_types", []):
                artifact_type = (
                    session.query(ArtifactType)
                    .filter(ArtifactType.name == type_def["name"])
                    .one_or_none()
                )
                if artifact_type is None:
                    session.add(ArtifactType(
                        name=type_def["name"],
                        slug=type_def.get("slug") or slugify(type_def["name"]),
                        syntax=type_def.get("syntax", "markdown"),
                        lifecycle_phase_id=phase.id,
                    ))
            session.flush()

        for dep_def in definition.get("dependencies", []):
            dependent = session.query(ArtifactType).filter(ArtifactType.name == dep_def["dependent"]).one_or_none()
            dependency = session.query(ArtifactType).filter(ArtifactType.name == dep_def["dependency"]).one_or_none()
            if dependent is None or dependency is None:
                raise BadRequestError(
                    f"Dependency {dep_def['dependent']} -> {dep_def['dependency']} names an unknown artifact type"
                )
            declare_type_dependency(session, dependent, dependency, dep_def.get("is_required", True))

        return project_type

    def seed_project_type(self, definition: Dict[str, Any]) -> ProjectType:
        """Idempotently insert one project type with its phases, artifact types and dependencies."""
        session = self.SessionFactory()
        try:
            self._seed_states(session)
            project_type = self._seed_project_type(session, definition)
            session.commit()
            project_type_id = project_type.id
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        if self.type_cache is not None:
            self.type_cache.invalidate()
        return self.find_by_id(project_type_id)

    def seed_catalog(self, catalog: Dict[str, Any]) -> List[ProjectType]:
        """Seed shared states/transitions and every project type in the catalog, in one transaction."""
        session = self.SessionFactory()
        try:
            self._seed_states(session)
            ids = [self._seed_project_type(session, d).id for d in catalog.get("project_types", [])]
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        if self.type_cache is not None:
            self.type_cache.invalidate()
        logger.info(f"[Seed] Catalog seeded with {len(ids)} project types")
        return [self.find_by_id(i) for i in ids]
