"""Tests for catalog seeding and type-dependency declaration."""

import pytest

from artifactflow.entities import ArtifactType, TypeDependency
from artifactflow.errors import BadRequestError, DependencyCycleError


def _count(session_factory, model) -> int:
    session = session_factory()
    try:
        return session.query(model).count()
    finally:
        session.close()


class TestSeeding:

    def test_catalog_is_seeded(self, backend) -> None:
        names = [pt.name for pt in backend.project_type_repository.find_all()]
        assert names == ["Software Engineering", "Product Design", "Business Plan"]

    def test_phases_are_ordered(self, backend) -> None:
        repo = backend.project_type_repository
        business_plan = next(pt for pt in repo.find_all() if pt.name == "Business Plan")

        phases = repo.get_lifecycle_phases(business_plan.id)

        assert [p.name for p in phases] == ["Strategy", "Planning", "Financial", "Legal", "Summary"]
        assert [p.name for p in business_plan.lifecycle_phases] == [p.name for p in phases]

    def test_reseeding_is_idempotent(self, backend, session_factory, catalog) -> None:
        types_before = _count(session_factory, ArtifactType)
        edges_before = _count(session_factory, TypeDependency)

        backend.project_type_repository.seed_catalog(catalog)

        assert _count(session_factory, ArtifactType) == types_before
        assert _count(session_factory, TypeDependency) == edges_before
        assert len(backend.project_type_repository.find_all()) == 3

    def test_seed_single_project_type(self, backend) -> None:
        project_type = backend.project_type_repository.seed_project_type({
            "name": "Research Paper",
            "phases": [
                {"name": "Drafting", "artifact_types": [{"name": "Abstract"}, {"name": "Literature Review"}]},
            ],
            "dependencies": [{"dependent": "Abstract", "dependency": "Literature Review", "is_required": False}],
        })

        assert [p.name for p in project_type.lifecycle_phases] == ["Drafting"]
        info = backend.type_cache.get_artifact_type_info("Literature Review")
        assert info.slug == "literature_review"
        assert info.lifecycle_phase_id == project_type.lifecycle_phases[0].id
        deps = backend.artifact_repository.get_artifact_type_dependencies("Abstract")
        assert [(d.name, d.is_required) for d in deps] == [("Literature Review", False)]

    def test_seed_with_unknown_dependency_rolls_back(self, backend) -> None:
        with pytest.raises(BadRequestError):
            backend.project_type_repository.seed_project_type({
                "name": "Broken",
                "phases": [{"name": "Only", "artifact_types": [{"name": "Lonely"}]}],
                "dependencies": [{"dependent": "Lonely", "dependency": "Ghost"}],
            })

        assert all(pt.name != "Broken" for pt in backend.project_type_repository.find_all())
        assert backend.type_cache.get_artifact_type_info("Lonely") is None


class TestTypeDependencies:

    def test_cycle_is_rejected(self, backend) -> None:
        # Vision Document <- ... <- C4 Component Diagram already exists as a chain
        with pytest.raises(DependencyCycleError):
            backend.project_type_repository.add_type_dependency("Vision Document", "C4 Component Diagram")

    def test_self_dependency_is_rejected(self, backend) -> None:
        with pytest.raises(DependencyCycleError):
            backend.project_type_repository.add_type_dependency("Mockups", "Mockups")

    def test_cycle_error_is_a_bad_request(self) -> None:
        assert issubclass(DependencyCycleError, BadRequestError)

    def test_unknown_type(self, backend) -> None:
        with pytest.raises(BadRequestError):
            backend.project_type_repository.add_type_dependency("Mockups", "Ghost")

    def test_new_edge_and_redeclaration(self, backend) -> None:
        repo = backend.project_type_repository

        repo.add_type_dependency("C4 Container Diagram", "Use Cases")
        repo.add_type_dependency("Functional Requirements", "Vision Document", is_required=False)

        container_deps = backend.artifact_repository.get_artifact_type_dependencies("C4 Container Diagram")
        assert [d.name for d in container_deps] == ["C4 Context Diagram", "Use Cases"]
        fr_deps = backend.artifact_repository.get_artifact_type_dependencies("Functional Requirements")
        assert [(d.name, d.is_required) for d in fr_deps] == [("Vision Document", False)]
