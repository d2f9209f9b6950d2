# backend.py
import logging
import sys
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from artifactflow.artifact_generator import ArtifactGenerator
from artifactflow.artifact_repository import ArtifactRepository
from artifactflow.config import load_project_type_catalog
from artifactflow.context_manager import ContextManager
from artifactflow.db_helpers import create_session_factory, get_db_engine
from artifactflow.dependency_resolver import DependencyResolver
from artifactflow.entities import Base
from artifactflow.project_repository import ProjectRepository
from artifactflow.project_type_repository import ProjectTypeRepository
from artifactflow.type_cache import TypeLookupCache
from artifactflow.workflow_orchestrator import WorkflowOrchestrator

logger = logging.getLogger("artifactflow")


@dataclass
class Backend:
    SessionFactory: Callable[[], Session]
    type_cache: TypeLookupCache
    project_repository: ProjectRepository
    project_type_repository: ProjectTypeRepository
    artifact_repository: ArtifactRepository
    dependency_resolver: DependencyResolver
    context_manager: ContextManager
    generator: object
    orchestrator: WorkflowOrchestrator


def build_backend(session_factory: Callable[[], Session] | None = None, generator=None) -> Backend:
    """Wire the cache, repositories, context assembly, generator and orchestrator."""
    session_factory = session_factory or create_session_factory()

    type_cache = TypeLookupCache(session_factory)
    project_repository = ProjectRepository(session_factory)
    project_type_repository = ProjectTypeRepository(session_factory, type_cache)
    artifact_repository = ArtifactRepository(session_factory, type_cache)
    dependency_resolver = DependencyResolver(artifact_repository, type_cache)
    context_manager = ContextManager(artifact_repository, type_cache, dependency_resolver)
    generator = generator or ArtifactGenerator(type_cache)

    orchestrator = WorkflowOrchestrator(
        project_repository=project_repository,
        project_type_repository=project_type_repository,
        artifact_repository=artifact_repository,
        context_manager=context_manager,
        generator=generator,
        type_cache=type_cache,
    )
    return Backend(
        SessionFactory=session_factory,
        type_cache=type_cache,
        project_repository=project_repository,
        project_type_repository=project_type_repository,
        artifact_repository=artifact_repository,
        dependency_resolver=dependency_resolver,
        context_manager=context_manager,
        generator=generator,
        orchestrator=orchestrator,
    )


def init_db(engine: Engine | None = None, catalog_path: str | None = None) -> Backend:
    """Create tables and seed the project-type catalog (safe to re-run)."""
    engine = engine or get_db_engine()
    Base.metadata.create_all(engine)

    backend = build_backend(create_session_factory(engine))
    catalog = load_project_type_catalog(catalog_path)
    seeded = backend.project_type_repository.seed_catalog(catalog)
    backend.type_cache.invalidate()

    for project_type in seeded:
        logger.info(f"[Seed] {project_type.name}: {[p.name for p in project_type.lifecycle_phases]}")
    return backend


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n"
    )
    argv = sys.argv[1:] if argv is None else argv

    if not argv or argv[0] != "init-db":
        print("usage: python backend.py init-db [catalog.jsonc]")
        return 2

    init_db(catalog_path=argv[1] if len(argv) > 1 else None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
