"""
Tests for DependencyResolver.

Unit tests drive it with a mocked artifact store; the integration tests run
against the seeded in-memory catalog.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from artifactflow.dependency_resolver import CONTENT_NOT_LOADED, DependencyResolver
from artifactflow.errors import MissingRequiredDependencyError
from artifactflow.type_cache import ArtifactTypeInfo
from conftest import type_id


def _dep(type_id: int, name: str, is_required: bool = True):
    return SimpleNamespace(id=type_id, name=name, is_required=is_required)


def _artifact(content=None, artifact_id=10):
    version = SimpleNamespace(content=content) if content is not None else None
    return SimpleNamespace(
        id=artifact_id,
        project_id=1,
        project=SimpleNamespace(project_type_id=1),
        artifact_type=SimpleNamespace(id=5, name="C4 Context Diagram"),
        current_version=version,
        current_version_id=99 if version else None,
    )


@pytest.fixture
def store() -> MagicMock:
    return MagicMock()


@pytest.fixture
def cache() -> MagicMock:
    cache = MagicMock()
    cache.get_artifact_type_info.side_effect = lambda name: ArtifactTypeInfo(
        type_id=1, name=name, slug=name.lower().replace(" ", "_"), syntax="markdown", lifecycle_phase_id=1
    )
    return cache


def _resolver(store, cache):
    return DependencyResolver(store, cache, multi_instance_types=["Use Cases"])


class TestResolveWithMockedStore:

    def test_single_instance_takes_first_usable_match(self, store, cache) -> None:
        store.get_artifact_type_dependencies.return_value = [_dep(2, "Vision Document")]
        store.get_artifacts_by_type.return_value = [_artifact(), _artifact("v1"), _artifact("v2")]

        result = _resolver(store, cache).resolve_dependencies(_artifact())

        assert result == {"vision_document": "v1"}

    def test_multi_instance_keeps_store_order(self, store, cache) -> None:
        store.get_artifact_type_dependencies.return_value = [_dep(3, "Use Cases")]
        store.get_artifacts_by_type.return_value = [_artifact("Login"), _artifact("Registration")]

        result = _resolver(store, cache).resolve_dependencies(_artifact())

        assert result == {"use_cases": ["Login", "Registration"]}

    def test_matches_without_versions_are_omitted(self, store, cache) -> None:
        store.get_artifact_type_dependencies.return_value = [_dep(3, "Use Cases"), _dep(2, "Vision Document")]
        store.get_artifacts_by_type.return_value = [_artifact()]

        assert _resolver(store, cache).resolve_dependencies(_artifact()) == {}

    def test_required_dependency_fails_fast(self, store, cache) -> None:
        store.get_artifact_type_dependencies.return_value = [
            _dep(2, "Vision Document"),
            _dep(3, "Use Cases"),
        ]
        store.get_artifacts_by_type.return_value = []

        with pytest.raises(MissingRequiredDependencyError) as exc:
            _resolver(store, cache).resolve_dependencies(_artifact())

        assert "Vision Document missing" in str(exc.value)
        assert exc.value.dependency_type_name == "Vision Document"
        # stopped at the first dependency
        assert store.get_artifacts_by_type.call_count == 1

    def test_optional_dependency_without_matches_is_skipped(self, store, cache) -> None:
        store.get_artifact_type_dependencies.return_value = [_dep(2, "Vision Document", is_required=False)]
        store.get_artifacts_by_type.return_value = []

        assert _resolver(store, cache).resolve_dependencies(_artifact()) == {}

    def test_version_without_content_yields_placeholder(self, store, cache) -> None:
        match = SimpleNamespace(current_version=None, current_version_id=42)
        store.get_artifact_type_dependencies.return_value = [_dep(2, "Vision Document")]
        store.get_artifacts_by_type.return_value = [match]

        result = _resolver(store, cache).resolve_dependencies(_artifact())

        assert result == {"vision_document": CONTENT_NOT_LOADED}

    @pytest.mark.parametrize("missing", ["project", "artifact_type"])
    def test_missing_relations_yield_empty_result(self, store, cache, missing) -> None:
        artifact = _artifact()
        setattr(artifact, missing, None)

        assert _resolver(store, cache).resolve_dependencies(artifact) == {}
        store.get_artifact_type_dependencies.assert_not_called()

    def test_slug_falls_back_to_name(self, store, cache) -> None:
        cache.get_artifact_type_info.side_effect = lambda name: None
        store.get_artifact_type_dependencies.return_value = [_dep(7, "Non-Functional Requirements")]

        (dep_type,) = _resolver(store, cache).get_dependency_types("Use Cases")

        assert dep_type.slug == "non-functional_requirements"
        assert dep_type.is_required is True
        assert dep_type.is_multiple is False


class TestResolveAgainstCatalog:

    def test_missing_required_dependency(self, backend, software_project, artifact_repository, type_cache) -> None:
        artifact = artifact_repository.create(
            project_id=int(software_project["project_id"]),
            artifact_type_id=type_id(type_cache, "Functional Requirements"),
            name="FR",
        )

        with pytest.raises(MissingRequiredDependencyError, match="Vision Document missing"):
            backend.dependency_resolver.resolve_dependencies(artifact)

    def test_use_cases_resolve_as_list(self, backend, software_project, artifact_repository, type_cache) -> None:
        project_id = int(software_project["project_id"])
        use_cases = type_id(type_cache, "Use Cases")
        artifact_repository.create(project_id, use_cases, "UC 1", content="Login")
        artifact_repository.create(project_id, use_cases, "UC 2", content="Registration")
        context_diagram = artifact_repository.create(
            project_id, type_id(type_cache, "C4 Context Diagram"), "Context"
        )

        result = backend.dependency_resolver.resolve_dependencies(context_diagram)

        assert result == {"use_cases": ["Login", "Registration"]}

    def test_only_earlier_artifacts_in_same_project_count(
        self, backend, orchestrator, artifact_repository, type_cache
    ) -> None:
        first = int(orchestrator.create_project("One")["project_id"])
        second = int(orchestrator.create_project("Two")["project_id"])
        vision = type_id(type_cache, "Vision Document")
        fr = type_id(type_cache, "Functional Requirements")

        artifact_repository.create(second, vision, "Other project's vision", content="elsewhere")
        requirements = artifact_repository.create(first, fr, "FR")
        artifact_repository.create(first, vision, "Later vision", content="too late")

        with pytest.raises(MissingRequiredDependencyError):
            backend.dependency_resolver.resolve_dependencies(requirements)

    def test_vision_resolves_under_its_catalog_slug(
        self, backend, software_project, artifact_repository, type_cache
    ) -> None:
        project_id = int(software_project["project_id"])
        artifact_repository.create(project_id, type_id(type_cache, "Vision Document"), "Vision", content="V1 content")
        requirements = artifact_repository.create(
            project_id, type_id(type_cache, "Functional Requirements"), "FR"
        )

        result = backend.dependency_resolver.resolve_dependencies(requirements)

        assert result == {"vision": "V1 content"}

    def test_only_the_current_version_is_used(
        self, backend, software_project, artifact_repository, type_cache
    ) -> None:
        project_id = int(software_project["project_id"])
        vision = artifact_repository.create(
            project_id, type_id(type_cache, "Vision Document"), "Vision", content="old"
        )
        artifact_repository.create_artifact_version(vision.id, "new")
        requirements = artifact_repository.create(
            project_id, type_id(type_cache, "Functional Requirements"), "FR"
        )

        result = backend.dependency_resolver.resolve_dependencies(requirements)

        assert result == {"vision": "new"}
