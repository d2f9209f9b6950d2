"""Shared fixtures: an in-memory database seeded with the shipped catalog."""

from typing import Any, Dict, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from artifactflow.artifact_generator import GenerationResult
from artifactflow.config import load_project_type_catalog
from artifactflow.db_helpers import create_session_factory
from artifactflow.entities import Base
from backend import build_backend


class FakeGenerator:
    """Stands in for ArtifactGenerator; records every context it is handed."""

    def __init__(self):
        self.kickoff_result = GenerationResult(commentary="What should this cover?")
        self.update_result = GenerationResult(artifact_content="# Draft", commentary="Drafted it.")
        self.stream_error: Exception | None = None
        self.contexts: List[Dict[str, Any]] = []
        self.histories: List[list] = []

    def kickoff_artifact_interaction(self, context, model=None):
        self.contexts.append(context)
        return self.kickoff_result

    def update_artifact(self, context, user_message, model=None, previous_interactions=None):
        self.contexts.append(context)
        self.histories.append(list(previous_interactions or []))
        return self.update_result

    def stream_update_artifact(self, context, user_message, on_chunk, model=None, previous_interactions=None):
        self.contexts.append(context)
        for piece in ("# Dr", "aft"):
            on_chunk(piece)
        if self.stream_error is not None:
            raise self.stream_error
        return self.update_result


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def catalog() -> Dict[str, Any]:
    return load_project_type_catalog()


@pytest.fixture
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def backend(session_factory, catalog, fake_generator):
    backend = build_backend(session_factory, generator=fake_generator)
    backend.project_type_repository.seed_catalog(catalog)
    return backend


@pytest.fixture
def type_cache(backend):
    return backend.type_cache


@pytest.fixture
def artifact_repository(backend):
    return backend.artifact_repository


@pytest.fixture
def orchestrator(backend):
    return backend.orchestrator


@pytest.fixture
def software_project(backend):
    """A 'Software Engineering' project (the default project type)."""
    return backend.orchestrator.create_project("Todo App")


def type_id(type_cache, name: str) -> int:
    return type_cache.get_artifact_type_info(name).type_id


def project_type_id(backend, name: str) -> int:
    for pt in backend.project_type_repository.find_all():
        if pt.name == name:
            return pt.id
    raise LookupError(name)
