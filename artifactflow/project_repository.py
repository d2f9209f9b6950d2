# artifactflow/project_repository.py
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from artifactflow.entities import Artifact, ArtifactInteraction, ArtifactVersion, Project
from artifactflow.errors import ForbiddenError


class ProjectRepository:

    def __init__(self, session_factory: Callable[[], Session]):
        self.SessionFactory = session_factory

    def create(self, name: str, project_type_id: int, user_id: int | None = None) -> Project:
        session = self.SessionFactory()
        try:
            project = Project(name=name, user_id=user_id, project_type_id=project_type_id)
            session.add(project)
            session.commit()
            project_id = project.id
        finally:
            session.close()
        return self.find_by_id(project_id)

    def find_by_id(self, project_id: int) -> Optional[Project]:
        session = self.SessionFactory()
        try:
            return (
                session.query(Project)
                .options(joinedload(Project.project_type))
                .filter(Project.id == project_id)
                .one_or_none()
            )
        finally:
            session.close()

    def find_by_id_and_user_id(self, project_id: int, user_id: int) -> Optional[Project]:
        session = self.SessionFactory()
        try:
            return (
                session.query(Project)
                .options(joinedload(Project.project_type))
                .filter(Project.id == project_id, Project.user_id == user_id)
                .one_or_none()
            )
        finally:
            session.close()

    def find_all(self) -> List[Project]:
        session = self.SessionFactory()
        try:
            return (
                session.query(Project)
                .options(joinedload(Project.project_type))
                .order_by(Project.id)
                .all()
            )
        finally:
            session.close()

    def find_by_user_id(self, user_id: int) -> List[Project]:
        session = self.SessionFactory()
        try:
            return (
                session.query(Project)
                .options(joinedload(Project.project_type))
                .filter(Project.user_id == user_id)
                .order_by(Project.id)
                .all()
            )
        finally:
            session.close()

    def is_project_owner(self, project_id: int, user_id: int) -> bool:
        return self.find_by_id_and_user_id(project_id, user_id) is not None

    def update(self, project_id: int, name: str, user_id: int | None = None) -> Optional[Project]:
        """Rename. With user_id given, only the owner may do it."""
        if user_id is not None and self.find_by_id(project_id) is not None:
            if not self.is_project_owner(project_id, user_id):
                raise ForbiddenError("You do not have permission to update this project")

        session = self.SessionFactory()
        try:
            project = session.get(Project, project_id)
            if project is None:
                return None
            project.name = name
            session.commit()
        finally:
            session.close()
        return self.find_by_id(project_id)

    def delete(self, project_id: int, user_id: int | None = None) -> bool:
        """Delete a project with its artifacts, versions and interactions."""
        if user_id is not None and self.find_by_id(project_id) is not None:
            if not self.is_project_owner(project_id, user_id):
                raise ForbiddenError("You do not have permission to delete this project")

        session = self.SessionFactory()
        try:
            project = session.get(Project, project_id)
            if project is None:
                return False

            artifact_ids = select(Artifact.id).where(Artifact.project_id == project_id)
            # break the artifact <-> current version cycle first
            session.query(Artifact).filter(Artifact.project_id == project_id).update(
                {Artifact.current_version_id: None}, synchronize_session=False
            )
            session.query(ArtifactInteraction).filter(ArtifactInteraction.artifact_id.in_(artifact_ids)).delete(
                synchronize_session=False
            )
            session.query(ArtifactVersion).filter(ArtifactVersion.artifact_id.in_(artifact_ids)).delete(
                synchronize_session=False
            )
            session.query(Artifact).filter(Artifact.project_id == project_id).delete(synchronize_session=False)
            session.delete(project)
            session.commit()
            return True
        finally:
            session.close()
