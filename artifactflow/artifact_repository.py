# artifactflow/artifact_repository.py
import logging
from typing import Callable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from artifactflow.entities import (
    Artifact,
    ArtifactInteraction,
    ArtifactState,
    ArtifactType,
    ArtifactVersion,
    Project,
    StateTransition,
    TypeDependency,
)
from artifactflow.errors import BadRequestError, NotFoundError
from artifactflow.type_cache import TypeLookupCache

logger = logging.getLogger("artifactflow")


def _artifact_load_options():
    return (
        joinedload(Artifact.project).joinedload(Project.project_type),
        joinedload(Artifact.artifact_type).joinedload(ArtifactType.lifecycle_phase),
        joinedload(Artifact.state),
        joinedload(Artifact.current_version),
    )


class ArtifactRepository:
    """
    Artifact store. Every method runs in its own session and commits its own
    writes; returned objects are detached with the relations listed in
    _artifact_load_options() already loaded.
    """

    def __init__(self, session_factory: Callable[[], Session], type_cache: TypeLookupCache):
        self.SessionFactory = session_factory
        self.type_cache = type_cache

    # -----------------------
    # Artifacts
    # -----------------------

    def find_by_id(self, artifact_id: int) -> Optional[Artifact]:
        session = self.SessionFactory()
        try:
            return (
                session.query(Artifact)
                .options(*_artifact_load_options())
                .filter(Artifact.id == artifact_id)
                .one_or_none()
            )
        finally:
            session.close()

    def get_artifacts_by_project_id(self, project_id: int) -> List[Artifact]:
        session = self.SessionFactory()
        try:
            return (
                session.query(Artifact)
                .options(*_artifact_load_options())
                .filter(Artifact.project_id == project_id)
                .order_by(Artifact.id)
                .all()
            )
        finally:
            session.close()

    def create(self, project_id: int, artifact_type_id: int, name: str, content: str | None = None) -> Artifact:
        """New artifacts start "In Progress"; initial content (if any) becomes version 1."""
        in_progress_id = self.type_cache.get_artifact_state_id_by_name("In Progress")
        if in_progress_id is None:
            raise BadRequestError("Invalid state: In Progress")

        session = self.SessionFactory()
        try:
            if session.get(ArtifactType, artifact_type_id) is None:
                raise BadRequestError(f"Invalid artifact type ID: {artifact_type_id}")

            artifact = Artifact(
                project_id=project_id,
                artifact_type_id=artifact_type_id,
                name=name,
                state_id=in_progress_id,
            )
            session.add(artifact)
            session.flush()

            if content:
                artifact.current_version = ArtifactVersion(
                    artifact_id=artifact.id,
                    version_number=1,
                    content=content,
                )
            session.commit()
            artifact_id = artifact.id
        finally:
            session.close()

        return self.find_by_id(artifact_id)

    def update(self, artifact_id: int, name: str | None = None, content: str | None = None) -> Optional[Artifact]:
        """Rename and/or edit content. A content change appends a version."""
        session = self.SessionFactory()
        try:
            artifact = (
                session.query(Artifact)
                .options(joinedload(Artifact.current_version))
                .filter(Artifact.id == artifact_id)
                .one_or_none()
            )
            if artifact is None:
                return None

            changed = False
            if name is not None and artifact.name != name:
                artifact.name = name
                changed = True

            current = artifact.current_version
            if content is not None and (current is None or current.content != content):
                artifact.current_version = ArtifactVersion(
                    artifact_id=artifact.id,
                    version_number=self._next_version_number(session, artifact.id),
                    content=content,
                )
                changed = True

            if changed:
                session.commit()
        finally:
            session.close()

        return self.find_by_id(artifact_id)

    def get_artifacts_by_type(self, artifact: Artifact, artifact_type_name: str) -> List[Artifact]:
        """
        Artifacts of the named type in the same project as `artifact`, created
        before it (lower id), oldest first, with current_version loaded.
        """
        info = self.type_cache.get_artifact_type_info(artifact_type_name)
        if info is None:
            raise BadRequestError(f"{artifact_type_name} artifact type not found in cache")

        session = self.SessionFactory()
        try:
            q = (
                session.query(Artifact)
                .options(joinedload(Artifact.current_version))
                .filter(
                    Artifact.project_id == artifact.project_id,
                    Artifact.artifact_type_id == info.type_id,
                )
            )
            if artifact.id is not None:
                q = q.filter(Artifact.id < artifact.id)
            return q.order_by(Artifact.id).all()
        finally:
            session.close()

    # -----------------------
    # Versions
    # -----------------------

    def _next_version_number(self, session: Session, artifact_id: int) -> int:
        latest = (
            session.query(func.max(ArtifactVersion.version_number))
            .filter(ArtifactVersion.artifact_id == artifact_id)
            .scalar()
        )
        return (latest or 0) + 1

    def create_artifact_version(self, artifact_id: int, content: str) -> ArtifactVersion:
        """Append a version and make it current."""
        session = self.SessionFactory()
        try:
            artifact = session.get(Artifact, artifact_id)
            if artifact is None:
                raise NotFoundError(f"Artifact not found: {artifact_id}")

            version = ArtifactVersion(
                artifact_id=artifact_id,
                version_number=self._next_version_number(session, artifact_id),
                content=content,
            )
            artifact.current_version = version
            session.commit()
            return version
        finally:
            session.close()

    def get_artifact_versions(self, artifact_id: int) -> List[ArtifactVersion]:
        session = self.SessionFactory()
        try:
            return (
                session.query(ArtifactVersion)
                .filter(ArtifactVersion.artifact_id == artifact_id)
                .order_by(ArtifactVersion.version_number)
                .all()
            )
        finally:
            session.close()

    # -----------------------
    # Types
    # -----------------------

    def get_artifact_type(self, type_id: int) -> Optional[ArtifactType]:
        session = self.SessionFactory()
        try:
            return (
                session.query(ArtifactType)
                .options(joinedload(ArtifactType.lifecycle_phase))
                .filter(ArtifactType.id == type_id)
                .one_or_none()
            )
        finally:
            session.close()

    def get_artifact_type_by_name(self, name: str) -> Optional[ArtifactType]:
        info = self.type_cache.get_artifact_type_info(name)
        if info is None:
            return None
        return self.get_artifact_type(info.type_id)

    def get_artifact_types_by_phase_id(self, phase_id: int) -> List[ArtifactType]:
        session = self.SessionFactory()
        try:
            return (
                session.query(ArtifactType)
                .filter(ArtifactType.lifecycle_phase_id == phase_id)
                .order_by(ArtifactType.id)
                .all()
            )
        finally:
            session.close()

    def get_artifact_type_dependencies(self, artifact_type_name: str) -> List[ArtifactType]:
        """
        Declared dependency types of the named type, in declaration order.
        Each returned type carries `is_required` from its relationship row.
        """
        session = self.SessionFactory()
        try:
            artifact_type = (
                session.query(ArtifactType)
                .filter(ArtifactType.name == artifact_type_name)
                .one_or_none()
            )
            if artifact_type is None:
                raise BadRequestError(f"Invalid artifact type: {artifact_type_name}")

            links = (
                session.query(TypeDependency)
                .options(joinedload(TypeDependency.dependency_type))
                .filter(TypeDependency.dependent_type_id == artifact_type.id)
                .order_by(TypeDependency.id)
                .all()
            )
            out: List[ArtifactType] = []
            for link in links:
                dep = link.dependency_type
                dep.is_required = bool(link.is_required)
                out.append(dep)
            return out
        finally:
            session.close()

    # -----------------------
    # States
    # -----------------------

    def get_artifact_state(self, state_id: int) -> Optional[ArtifactState]:
        session = self.SessionFactory()
        try:
            return session.get(ArtifactState, state_id)
        finally:
            session.close()

    def get_artifact_state_by_name(self, name: str) -> Optional[ArtifactState]:
        state_id = self.type_cache.get_artifact_state_id_by_name(name)
        if state_id is None:
            return None
        return self.get_artifact_state(state_id)

    def get_available_transitions(self, artifact: Artifact) -> List[ArtifactState]:
        if not artifact.state_id:
            return []
        return self.get_transitions_from_state(artifact.state_id)

    def get_transitions_from_state(self, state_id: int) -> List[ArtifactState]:
        session = self.SessionFactory()
        try:
            transitions = (
                session.query(StateTransition)
                .options(joinedload(StateTransition.to_state))
                .filter(StateTransition.from_state_id == state_id)
                .order_by(StateTransition.id)
                .all()
            )
            return [t.to_state for t in transitions]
        finally:
            session.close()

    def is_valid_state_transition(self, from_state: str, to_state: str) -> bool:
        return self.type_cache.get_state_transition_id(from_state, to_state) is not None

    def update_artifact_state(self, artifact_id: int, new_state: str) -> Optional[Artifact]:
        state_id = self.type_cache.get_artifact_state_id_by_name(new_state)
        if state_id is None:
            raise BadRequestError(f"State not found: {new_state}")
        return self.update_artifact_state_with_id(artifact_id, state_id)

    def update_artifact_state_with_id(self, artifact_id: int, new_state_id: int) -> Optional[Artifact]:
        """None when the artifact does not exist; BadRequestError for an unknown state or illegal move."""
        artifact = self.find_by_id(artifact_id)
        if artifact is None:
            return None

        current_state = self.get_artifact_state(artifact.state_id)
        new_state = self.get_artifact_state(new_state_id)
        if current_state is None or new_state is None:
            raise BadRequestError("Current or new state not found")

        if not self.is_valid_state_transition(current_state.name, new_state.name):
            raise BadRequestError(
                f"Invalid state transition from {current_state.name} to {new_state.name}"
            )

        session = self.SessionFactory()
        try:
            row = session.get(Artifact, artifact_id)
            row.state_id = new_state_id
            session.commit()
        finally:
            session.close()

        return self.find_by_id(artifact_id)

    # -----------------------
    # Interactions
    # -----------------------

    def create_interaction(
        self,
        artifact_id: int,
        role: str,
        content: str,
        sequence_number: int,
        version_id: int | None = None,
    ) -> ArtifactInteraction:
        session = self.SessionFactory()
        try:
            if session.get(Artifact, artifact_id) is None:
                raise NotFoundError(f"Artifact with id {artifact_id} not found")

            if version_id is not None:
                version = (
                    session.query(ArtifactVersion)
                    .filter(
                        ArtifactVersion.id == version_id,
                        ArtifactVersion.artifact_id == artifact_id,
                    )
                    .one_or_none()
                )
                if version is None:
                    raise BadRequestError(
                        f"Version with id {version_id} not found for artifact {artifact_id}"
                    )

            interaction = ArtifactInteraction(
                artifact_id=artifact_id,
                version_id=version_id,
                role=role,
                content=content,
                sequence_number=sequence_number,
            )
            session.add(interaction)
            session.commit()
            return interaction
        finally:
            session.close()

    def get_last_interactions(self, artifact_id: int, limit: int = 3) -> Tuple[List[ArtifactInteraction], int]:
        """
        Last `limit` user/assistant pairs, newest first, plus the next free
        sequence number.
        """
        session = self.SessionFactory()
        try:
            if session.get(Artifact, artifact_id) is None:
                raise NotFoundError(f"Artifact with id {artifact_id} not found")

            interactions = (
                session.query(ArtifactInteraction)
                .filter(ArtifactInteraction.artifact_id == artifact_id)
                .order_by(ArtifactInteraction.sequence_number.desc(), ArtifactInteraction.id.desc())
                .limit(limit * 2)
                .all()
            )
            next_sequence = interactions[0].sequence_number + 1 if interactions else 1
            return interactions, next_sequence
        finally:
            session.close()
