# artifactflow/context_manager.py
import logging
from typing import Any, Dict

from artifactflow.base_utils import loaded_attr
from artifactflow.dependency_resolver import DependencyResolver
from artifactflow.entities import Artifact

logger = logging.getLogger("artifactflow")


class ContextManager:
    """
    Builds the context object handed to the generator:

        {
          "project":  {name, project_type_id, project_type_name},
          "artifact": {artifact_id, artifact_type_id, artifact_type_name, artifact_phase[, name, content]},
          "is_update": bool,
          "user_message": str | None,
          "<dependency slug>": content | [content, ...],
          ...
        }

    Dependencies sit at the top level so prompts can say {vision} rather
    than {dependencies.vision}.
    """

    def __init__(self, artifact_repository, type_cache, dependency_resolver: DependencyResolver | None = None):
        self.artifact_repository = artifact_repository
        self.type_cache = type_cache
        self.dependency_resolver = dependency_resolver or DependencyResolver(artifact_repository, type_cache)

    def get_context(self, artifact: Artifact, is_update: bool, user_message: str | None = None) -> Dict[str, Any]:
        project = loaded_attr(artifact, "project")
        project_type = loaded_attr(project, "project_type")
        artifact_type = loaded_attr(artifact, "artifact_type")
        phase = loaded_attr(artifact_type, "lifecycle_phase")

        context: Dict[str, Any] = {
            "project": {
                "name": loaded_attr(project, "name") or "Unknown Project",
                "project_type_id": loaded_attr(project, "project_type_id"),
                "project_type_name": loaded_attr(project_type, "name"),
            },
            "artifact": {
                "artifact_id": loaded_attr(artifact, "id"),
                "artifact_type_id": loaded_attr(artifact_type, "id") or loaded_attr(artifact, "artifact_type_id"),
                "artifact_type_name": loaded_attr(artifact_type, "name") or "Unknown Type",
                "artifact_phase": loaded_attr(phase, "name") or "Unknown Phase",
            },
            "is_update": is_update,
            "user_message": user_message or None,
        }

        if is_update:
            current_version = loaded_attr(artifact, "current_version")
            context["artifact"]["name"] = loaded_attr(artifact, "name")
            context["artifact"]["content"] = loaded_attr(current_version, "content") or None

        try:
            dependencies = self.dependency_resolver.resolve_dependencies(artifact)
        except Exception as e:
            logger.error(f"Error building context: {e}")
            raise

        for key, value in dependencies.items():
            context[key] = value

        return context
