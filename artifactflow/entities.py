# artifactflow/entities.py
from datetime import datetime, timezone
from typing import List, TypeAlias

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()

Timestamp: TypeAlias = datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at: Mapped[Timestamp] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[Timestamp] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


class User(Base, TimestampMixin):
    __tablename__ = "user"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String, unique=True, nullable=False)


# -----------------------
# Methodology catalog
# -----------------------

class ProjectType(Base, TimestampMixin):
    __tablename__ = "project_type"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    lifecycle_phases: Mapped[List["LifecyclePhase"]] = relationship(
        back_populates="project_type",
        order_by="LifecyclePhase.order",
    )


class LifecyclePhase(Base):
    __tablename__ = "lifecycle_phase"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    project_type_id: Mapped[int] = mapped_column(
        ForeignKey("project_type.id", ondelete="CASCADE"),
        nullable=False,
    )

    project_type: Mapped["ProjectType"] = relationship(back_populates="lifecycle_phases")
    artifact_types: Mapped[List["ArtifactType"]] = relationship(
        back_populates="lifecycle_phase",
        order_by="ArtifactType.id",
    )

    __table_args__ = (
        UniqueConstraint("project_type_id", "name", name="uq_lifecycle_phase_project_type_name"),
    )


class ArtifactType(Base):
    __tablename__ = "artifact_type"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # name is the system-wide lookup key
    name: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    slug: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    syntax: Mapped[str] = mapped_column(String, nullable=False, default="markdown")
    lifecycle_phase_id: Mapped[int] = mapped_column(
        ForeignKey("lifecycle_phase.id", ondelete="CASCADE"),
        nullable=False,
    )

    lifecycle_phase: Mapped["LifecyclePhase"] = relationship(back_populates="artifact_types")


class TypeDependency(Base):
    """
    Directed edge of the artifact-type graph: `dependent_type` needs the
    content of `dependency_type` as context. Edges are kept acyclic by
    project_type_repository.declare_type_dependency.
    """
    __tablename__ = "type_dependency"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    dependent_type_id: Mapped[int] = mapped_column(
        ForeignKey("artifact_type.id", ondelete="CASCADE"),
        nullable=False,
    )
    dependency_type_id: Mapped[int] = mapped_column(
        ForeignKey("artifact_type.id", ondelete="CASCADE"),
        nullable=False,
    )
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    dependent_type: Mapped["ArtifactType"] = relationship(foreign_keys=[dependent_type_id])
    dependency_type: Mapped["ArtifactType"] = relationship(foreign_keys=[dependency_type_id])

    __table_args__ = (
        UniqueConstraint("dependent_type_id", "dependency_type_id", name="uq_type_dependency_pair"),
    )


class ArtifactState(Base):
    __tablename__ = "artifact_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String, unique=True, nullable=False)


class StateTransition(Base):
    __tablename__ = "state_transition"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    from_state_id: Mapped[int] = mapped_column(ForeignKey("artifact_state.id"), nullable=False)
    to_state_id: Mapped[int] = mapped_column(ForeignKey("artifact_state.id"), nullable=False)

    from_state: Mapped["ArtifactState"] = relationship(foreign_keys=[from_state_id])
    to_state: Mapped["ArtifactState"] = relationship(foreign_keys=[to_state_id])

    __table_args__ = (
        UniqueConstraint("from_state_id", "to_state_id", name="uq_state_transition_pair"),
    )


# -----------------------
# Projects & artifacts
# -----------------------

class Project(Base, TimestampMixin):
    __tablename__ = "project"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=True,
    )
    project_type_id: Mapped[int] = mapped_column(ForeignKey("project_type.id"), nullable=False)

    project_type: Mapped["ProjectType"] = relationship()

    __table_args__ = (
        Index("ix_project_user_id", "user_id"),
    )


class Artifact(Base, TimestampMixin):
    __tablename__ = "artifact"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(
        ForeignKey("project.id", ondelete="CASCADE"),
        nullable=False,
    )
    artifact_type_id: Mapped[int] = mapped_column(ForeignKey("artifact_type.id"), nullable=False)
    state_id: Mapped[int] = mapped_column(ForeignKey("artifact_state.id"), nullable=False)
    # always the most recently created version; never rolled back
    current_version_id: Mapped[int | None] = mapped_column(
        ForeignKey("artifact_version.id", use_alter=True, name="fk_artifact_current_version"),
        nullable=True,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)

    project: Mapped["Project"] = relationship()
    artifact_type: Mapped["ArtifactType"] = relationship()
    state: Mapped["ArtifactState"] = relationship()
    current_version: Mapped["ArtifactVersion | None"] = relationship(
        foreign_keys=[current_version_id],
        post_update=True,
    )

    __table_args__ = (
        Index("ix_artifact_project_type", "project_id", "artifact_type_id"),
    )


class ArtifactVersion(Base):
    """Append-only content snapshot."""
    __tablename__ = "artifact_version"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    artifact_id: Mapped[int] = mapped_column(
        ForeignKey("artifact.id", ondelete="CASCADE"),
        nullable=False,
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[Timestamp] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("artifact_id", "version_number", name="uq_artifact_version_number"),
    )


class ArtifactInteraction(Base):
    __tablename__ = "artifact_interaction"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    artifact_id: Mapped[int] = mapped_column(
        ForeignKey("artifact.id", ondelete="CASCADE"),
        nullable=False,
    )
    version_id: Mapped[int | None] = mapped_column(ForeignKey("artifact_version.id"), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # user | assistant
    content: Mapped[str] = mapped_column(Text, nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[Timestamp] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        Index("ix_artifact_interaction_sequence", "artifact_id", "sequence_number"),
    )
