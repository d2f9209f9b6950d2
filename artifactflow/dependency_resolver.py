# artifactflow/dependency_resolver.py
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Union

from artifactflow.base_utils import loaded_attr, slugify
from artifactflow.config import MULTI_INSTANCE_ARTIFACT_TYPES
from artifactflow.entities import Artifact
from artifactflow.errors import MissingRequiredDependencyError

logger = logging.getLogger("artifactflow")

CONTENT_NOT_LOADED = "[Content not loaded]"

ResolvedDependencies = Dict[str, Union[str, List[str]]]


@dataclass
class ArtifactTypeDependency:
    type_id: int
    name: str
    slug: str
    is_required: bool
    is_multiple: bool


class DependencyResolver:
    """
    Turns an artifact's declared type dependencies into {slug: content}
    (or {slug: [content, ...]} for multi-instance types), reading the
    current version of prior artifacts in the same project.

    Queries run one dependency at a time, in the order the store lists
    them, and stop at the first required type with no artifact.
    """

    def __init__(self, artifact_repository, type_cache, multi_instance_types: Iterable[str] | None = None):
        self.artifact_repository = artifact_repository
        self.type_cache = type_cache
        self.multi_instance_types = set(
            MULTI_INSTANCE_ARTIFACT_TYPES if multi_instance_types is None else multi_instance_types
        )

    def resolve_dependencies(self, artifact: Artifact) -> ResolvedDependencies:
        dependencies: ResolvedDependencies = {}

        project = loaded_attr(artifact, "project")
        artifact_type = loaded_attr(artifact, "artifact_type")
        project_type_id = loaded_attr(project, "project_type_id")
        artifact_type_id = loaded_attr(artifact_type, "id")
        artifact_type_name = loaded_attr(artifact_type, "name")

        if not project_type_id or not artifact_type_id or not artifact_type_name:
            logger.warning(f"Missing project type or artifact type for artifact {getattr(artifact, 'id', None)}")
            return dependencies

        try:
            for dep_type in self.get_dependency_types(artifact_type_name):
                self._resolve_dependency(artifact, dep_type, dependencies)
        except Exception as e:
            logger.error(f"Error resolving dependencies for artifact {artifact.id}: {e}")
            raise

        return dependencies

    def get_dependency_types(self, artifact_type_name: str) -> List[ArtifactTypeDependency]:
        out: List[ArtifactTypeDependency] = []
        for dep in self.artifact_repository.get_artifact_type_dependencies(artifact_type_name):
            info = self.type_cache.get_artifact_type_info(dep.name)
            out.append(ArtifactTypeDependency(
                type_id=dep.id,
                name=dep.name,
                slug=info.slug if info is not None else slugify(dep.name),
                is_required=bool(getattr(dep, "is_required", True)),
                is_multiple=dep.name in self.multi_instance_types,
            ))
        return out

    def _resolve_dependency(
        self,
        artifact: Artifact,
        dep_type: ArtifactTypeDependency,
        dependencies: ResolvedDependencies,
    ) -> None:
        matches = self.artifact_repository.get_artifacts_by_type(artifact, dep_type.name) or []

        if not matches:
            if dep_type.is_required:
                raise MissingRequiredDependencyError(dep_type.name)
            return

        usable = [a for a in matches if self._has_valid_version(a)]

        if dep_type.is_multiple:
            if usable:
                dependencies[dep_type.slug] = [self._version_content(a) for a in usable]
        elif usable:
            dependencies[dep_type.slug] = self._version_content(usable[0])

    def _has_valid_version(self, artifact: Artifact) -> bool:
        return bool(loaded_attr(artifact, "current_version") or loaded_attr(artifact, "current_version_id"))

    def _version_content(self, artifact: Artifact) -> str:
        version = loaded_attr(artifact, "current_version")
        content = loaded_attr(version, "content")
        if content:
            return content
        logger.warning(f"Version not preloaded for artifact {getattr(artifact, 'id', None)}, returning placeholder")
        return CONTENT_NOT_LOADED
