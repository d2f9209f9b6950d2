# artifactflow/workflow_orchestrator.py
import logging
from typing import Any, Callable, Dict, List, Optional

from artifactflow.artifact_repository import ArtifactRepository
from artifactflow.config import ARTIFACT_DETAILS_HISTORY, INTERACTION_WINDOW, MULTI_INSTANCE_ARTIFACT_TYPES
from artifactflow.context_manager import ContextManager
from artifactflow.entities import Artifact, ArtifactState, Project
from artifactflow.errors import BadRequestError, NotFoundError
from artifactflow.project_repository import ProjectRepository
from artifactflow.project_type_repository import ProjectTypeRepository
from artifactflow.type_cache import TypeLookupCache

logger = logging.getLogger("artifactflow")

IN_PROGRESS = "In Progress"
TO_DO = "To Do"


def _str_or_none(value) -> Optional[str]:
    return None if value is None else str(value)


class WorkflowOrchestrator:
    """
    Project/artifact operations behind the HTTP surface.

    Writes are not wrapped in one transaction: a version or interaction
    saved before a later step fails stays saved.
    """

    def __init__(
        self,
        project_repository: ProjectRepository,
        project_type_repository: ProjectTypeRepository,
        artifact_repository: ArtifactRepository,
        context_manager: ContextManager,
        generator,
        type_cache: TypeLookupCache,
        multi_instance_types=None,
    ):
        self.project_repository = project_repository
        self.project_type_repository = project_type_repository
        self.artifact_repository = artifact_repository
        self.context_manager = context_manager
        self.generator = generator
        self.type_cache = type_cache
        self.multi_instance_types = set(
            MULTI_INSTANCE_ARTIFACT_TYPES if multi_instance_types is None else multi_instance_types
        )

    # -----------------------
    # Shaping
    # -----------------------

    def _project_metadata(self, project: Project) -> Dict[str, Any]:
        project_type = project.project_type
        return {
            "project_id": str(project.id),
            "name": project.name,
            "created_at": project.created_at,
            "updated_at": project.updated_at,
            "project_type_id": _str_or_none(project.project_type_id),
            "project_type_name": project_type.name if project_type else None,
        }

    def _transitions(self, states: List[ArtifactState]) -> List[Dict[str, str]]:
        return [{"state_id": str(s.id), "state_name": s.name} for s in states]

    def _dependent_type_id(self, artifact_type_name: str) -> Optional[str]:
        deps = self.artifact_repository.get_artifact_type_dependencies(artifact_type_name)
        return str(deps[0].id) if deps else None

    def _artifact_details(self, artifact: Artifact, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        version = artifact.current_version
        artifact_type = artifact.artifact_type
        project = artifact.project
        project_type = project.project_type if project else None
        return {
            "artifact": {
                "artifact_id": str(artifact.id),
                "artifact_type_id": str(artifact.artifact_type_id),
                "artifact_type_name": artifact_type.name if artifact_type else "Unknown",
                "artifact_version_number": _str_or_none(version.version_number if version else None),
                "artifact_version_content": version.content if version else None,
                "name": artifact.name,
                "state_id": str(artifact.state_id),
                "state_name": artifact.state.name if artifact.state else "Unknown",
                "available_transitions": self._transitions(
                    self.artifact_repository.get_available_transitions(artifact)
                ),
                "dependent_type_id": self._dependent_type_id(artifact_type.name) if artifact_type else None,
                "project_type_id": _str_or_none(project.project_type_id if project else None),
                "project_type_name": project_type.name if project_type else None,
            },
            "chat_completion": {
                "messages": messages,
            },
        }

    def _load_artifact(self, artifact_id: int) -> Artifact:
        artifact = self.artifact_repository.find_by_id(artifact_id)
        if artifact is None:
            raise NotFoundError(f"Artifact with id {artifact_id} not found")
        return artifact

    # -----------------------
    # Projects
    # -----------------------

    def create_project(self, name: str, user_id: int | None = None, project_type_id: int | None = None) -> Dict[str, Any]:
        if project_type_id is not None:
            project_type = self.type_cache.get_project_type_by_id(project_type_id)
            if project_type is None:
                raise NotFoundError(f"Project type with id {project_type_id} not found")
        else:
            project_type = self.type_cache.get_default_project_type()
            if project_type is None:
                raise NotFoundError("No project types found. Please ensure database is properly seeded.")

        project = self.project_repository.create(name=name, project_type_id=project_type.id, user_id=user_id)
        logger.info(f"[Project] Created project {project.id} '{name}' ({project_type.name})")
        return self._project_metadata(project)

    def list_projects(self) -> List[Dict[str, Any]]:
        return [self._project_metadata(p) for p in self.project_repository.find_all()]

    def list_projects_by_user(self, user_id: int) -> List[Dict[str, Any]]:
        return [self._project_metadata(p) for p in self.project_repository.find_by_user_id(user_id)]

    def view_project(self, project_id: int, user_id: int | None = None) -> Dict[str, Any]:
        """
        Artifacts grouped by the project type's phases (in phase order).
        Every artifact type without an artifact shows up as a "New <Type>"
        placeholder in state "To Do".
        """
        if user_id is not None:
            project = self.project_repository.find_by_id_and_user_id(project_id, user_id)
        else:
            project = self.project_repository.find_by_id(project_id)
        if project is None:
            raise NotFoundError(f"Project with id {project_id} not found")
        if project.project_type is None:
            raise NotFoundError(f"Project type for project {project_id} not found")

        todo_state = self.artifact_repository.get_artifact_state_by_name(TO_DO)
        todo_transitions = (
            self._transitions(self.artifact_repository.get_transitions_from_state(todo_state.id))
            if todo_state else []
        )

        by_type: Dict[int, List[Artifact]] = {}
        for artifact in self.artifact_repository.get_artifacts_by_project_id(project_id):
            by_type.setdefault(artifact.artifact_type_id, []).append(artifact)

        artifacts: Dict[str, List[Dict[str, Any]]] = {}
        for phase in self.project_type_repository.get_lifecycle_phases(project.project_type_id):
            items: List[Dict[str, Any]] = []
            for artifact_type in self.artifact_repository.get_artifact_types_by_phase_id(phase.id):
                dependent_type_id = self._dependent_type_id(artifact_type.name)
                existing = by_type.get(artifact_type.id, [])

                for artifact in existing:
                    version = artifact.current_version
                    items.append({
                        "id": str(artifact.id),
                        "name": artifact.name,
                        "type": artifact_type.name,
                        "type_id": str(artifact_type.id),
                        "content": version.content if version else None,
                        "version_number": _str_or_none(version.version_number if version else None),
                        "state_id": str(artifact.state_id),
                        "state_name": artifact.state.name if artifact.state else None,
                        "available_transitions": self._transitions(
                            self.artifact_repository.get_available_transitions(artifact)
                        ),
                        "dependent_type_id": dependent_type_id,
                    })

                if not existing:
                    items.append({
                        "id": None,
                        "name": f"New {artifact_type.name}",
                        "type": artifact_type.name,
                        "type_id": str(artifact_type.id),
                        "content": None,
                        "version_number": None,
                        "state_id": _str_or_none(todo_state.id if todo_state else None),
                        "state_name": todo_state.name if todo_state else None,
                        "available_transitions": todo_transitions,
                        "dependent_type_id": dependent_type_id,
                    })
            artifacts[phase.name] = items

        details = self._project_metadata(project)
        details["artifacts"] = artifacts
        return details

    def rename_project(self, project_id: int, name: str, user_id: int | None = None) -> Dict[str, Any]:
        """With user_id given, only the owner may rename (ForbiddenError otherwise)."""
        project = self.project_repository.update(project_id, name, user_id=user_id)
        if project is None:
            raise NotFoundError(f"Project with id {project_id} not found")
        logger.info(f"[Project] Renamed project {project_id} to '{name}'")
        return self._project_metadata(project)

    def delete_project(self, project_id: int, user_id: int | None = None) -> None:
        if not self.project_repository.delete(project_id, user_id=user_id):
            raise NotFoundError(f"Project with id {project_id} not found")
        logger.info(f"[Project] Deleted project {project_id}")

    # -----------------------
    # Artifacts
    # -----------------------

    def get_artifact_details(self, artifact_id: int) -> Dict[str, Any]:
        artifact = self._load_artifact(artifact_id)
        interactions, _ = self.artifact_repository.get_last_interactions(artifact_id, ARTIFACT_DETAILS_HISTORY)
        messages = [{"role": i.role, "content": i.content} for i in reversed(interactions)]
        return self._artifact_details(artifact, messages)

    def list_artifact_versions(self, artifact_id: int) -> List[Dict[str, Any]]:
        self._load_artifact(artifact_id)
        return [
            {
                "version_id": str(v.id),
                "version_number": str(v.version_number),
                "content": v.content,
                "created_at": v.created_at,
            }
            for v in self.artifact_repository.get_artifact_versions(artifact_id)
        ]

    def create_artifact(self, project_id: int, artifact_type_name: str, model: str | None = None) -> Dict[str, Any]:
        project = self.project_repository.find_by_id(project_id)
        if project is None:
            raise NotFoundError(f"Project with id {project_id} not found")

        type_info = self.type_cache.get_artifact_type_info(artifact_type_name)
        if type_info is None:
            raise BadRequestError(f"Invalid artifact type: {artifact_type_name}")

        if type_info.lifecycle_phase_id not in self.type_cache.get_project_type_phases(project.project_type_id):
            project_type_name = project.project_type.name if project.project_type else project.project_type_id
            raise BadRequestError(
                f"Artifact type '{artifact_type_name}' is not allowed in this project type ({project_type_name})"
            )

        if artifact_type_name not in self.multi_instance_types:
            existing = [
                a for a in self.artifact_repository.get_artifacts_by_project_id(project_id)
                if a.artifact_type_id == type_info.type_id
            ]
            if existing:
                raise BadRequestError(f"Project already has an artifact of type '{artifact_type_name}'")

        artifact = self.artifact_repository.create(
            project_id=project_id,
            artifact_type_id=type_info.type_id,
            name=f"New {artifact_type_name}",
        )
        logger.info(f"[Artifact] Created artifact {artifact.id} ({artifact_type_name}) in project {project_id}")

        context = self.context_manager.get_context(artifact, False, None)
        output = self.generator.kickoff_artifact_interaction(context, model=model)

        messages: List[Dict[str, str]] = []
        if output.commentary and output.commentary.strip():
            self.artifact_repository.create_interaction(
                artifact_id=artifact.id,
                version_id=artifact.current_version_id,
                role="assistant",
                content=output.commentary,
                sequence_number=1,
            )
            messages.append({"role": "assistant", "content": output.commentary})

        if output.artifact_content and output.artifact_content.strip():
            self.artifact_repository.create_artifact_version(artifact.id, output.artifact_content)

        return self._artifact_details(self._load_artifact(artifact.id), messages)

    def _prepare_interaction(self, artifact_id: int, user_message: str):
        artifact = self._load_artifact(artifact_id)
        last_interactions, next_sequence = self.artifact_repository.get_last_interactions(
            artifact_id, INTERACTION_WINDOW
        )
        self.artifact_repository.create_interaction(
            artifact_id=artifact_id,
            version_id=artifact.current_version_id,
            role="user",
            content=user_message,
            sequence_number=next_sequence,
        )
        context = self.context_manager.get_context(artifact, True, user_message)
        return artifact, list(reversed(last_interactions)), next_sequence, context

    def _apply_generation(self, artifact: Artifact, output, next_sequence: int) -> List[Dict[str, str]]:
        version_id = artifact.current_version_id
        if output.artifact_content and output.artifact_content.strip():
            version_id = self.artifact_repository.create_artifact_version(artifact.id, output.artifact_content).id

        messages: List[Dict[str, str]] = []
        if output.commentary and output.commentary.strip():
            self.artifact_repository.create_interaction(
                artifact_id=artifact.id,
                version_id=version_id,
                role="assistant",
                content=output.commentary,
                sequence_number=next_sequence + 1,
            )
            messages.append({"role": "assistant", "content": output.commentary})

        if artifact.state is None or artifact.state.name != IN_PROGRESS:
            self.artifact_repository.update_artifact_state(artifact.id, IN_PROGRESS)
        return messages

    def interact_artifact(self, artifact_id: int, user_message: str, model: str | None = None) -> Dict[str, Any]:
        artifact, history, next_sequence, context = self._prepare_interaction(artifact_id, user_message)
        output = self.generator.update_artifact(
            context,
            user_message,
            model=model,
            previous_interactions=history,
        )
        messages = self._apply_generation(artifact, output, next_sequence)
        return self._artifact_details(self._load_artifact(artifact_id), messages)

    def stream_interact_artifact(
        self,
        artifact_id: int,
        user_message: str,
        on_chunk: Callable[[str], None],
        model: str | None = None,
    ) -> Dict[str, str]:
        artifact, history, next_sequence, context = self._prepare_interaction(artifact_id, user_message)
        output = self.generator.stream_update_artifact(
            context,
            user_message,
            on_chunk,
            model=model,
            previous_interactions=history,
        )
        self._apply_generation(artifact, output, next_sequence)
        return {"artifact_content": output.artifact_content, "commentary": output.commentary}

    def update_artifact(self, artifact_id: int, name: str | None = None, content: str | None = None) -> Dict[str, Any]:
        """Manual edit from the editor; a content change appends a version."""
        updated = self.artifact_repository.update(artifact_id, name=name or None, content=content or None)
        if updated is None:
            raise NotFoundError(f"Artifact with id {artifact_id} not found")
        return self.get_artifact_details(artifact_id)

    def transition_artifact(self, artifact_id: int, new_state_id: int) -> Dict[str, Any]:
        self._load_artifact(artifact_id)

        updated = self.artifact_repository.update_artifact_state_with_id(artifact_id, new_state_id)
        if updated is None:
            raise BadRequestError(f"Failed to update artifact state to state id: {new_state_id}")

        logger.debug(f"[Artifact] {artifact_id} -> state {new_state_id}")
        return self._artifact_details(updated, [])
