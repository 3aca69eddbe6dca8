from __future__ import annotations
from datetime import datetime
from typing import List, Optional
from uuid import uuid4
from sqlalchemy import String, Text, DateTime, ForeignKey, Index, Float, Boolean
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
import enum


def new_id() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    pass


class RelationshipType(enum.Enum):
    PARENT_CHILD = "parent-child"
    SPOUSE = "spouse"
    EX_SPOUSE = "ex-spouse"
    SIBLING = "sibling"
    OTHER = "other"


KNOWN_RELATIONSHIP_TYPES = {t.value for t in RelationshipType}


def normalize_relationship_type(value: str | None) -> str:
    """Canonicalize known relationship types; anything else is kept verbatim."""
    raw = (value or "").strip()
    lowered = raw.lower().replace("_", "-")
    if lowered in KNOWN_RELATIONSHIP_TYPES:
        return lowered
    return raw or RelationshipType.OTHER.value


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    forests: Mapped[List["Forest"]] = relationship("Forest", back_populates="tenant")


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="Visitor")
    tenant_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("tenants.id"), nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Forest(Base):
    __tablename__ = "forests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(36), ForeignKey("tenants.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    tenant: Mapped["Tenant"] = relationship("Tenant", back_populates="forests")
    trees: Mapped[List["Tree"]] = relationship(
        "Tree", back_populates="forest", cascade="all, delete-orphan", passive_deletes=True
    )


class Tree(Base):
    __tablename__ = "trees"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    forest_id: Mapped[str] = mapped_column(String(36), ForeignKey("forests.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    forest: Mapped["Forest"] = relationship("Forest", back_populates="trees")
    people: Mapped[List["Person"]] = relationship(
        "Person", back_populates="tree", cascade="all, delete-orphan", passive_deletes=True
    )
    relationships: Mapped[List["Relationship"]] = relationship(
        "Relationship", back_populates="tree", cascade="all, delete-orphan", passive_deletes=True
    )


class Person(Base):
    __tablename__ = "people"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tree_id: Mapped[str] = mapped_column(String(36), ForeignKey("trees.id", ondelete="CASCADE"), nullable=False)
    first_name: Mapped[str] = mapped_column(String(255), nullable=False)
    middle_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    maiden_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    gender: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Free-form: "1901", "1901-04" and "1901-04-12" are all valid
    birth_date: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    birth_place: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    death_date: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    death_place: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    biography: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Thumbnail URL of the primary image, kept in sync by PersonImageService
    photo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    position_x: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    position_y: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    tree: Mapped["Tree"] = relationship("Tree", back_populates="people")
    images: Mapped[List["PersonImage"]] = relationship(
        "PersonImage", back_populates="person", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("idx_people_tree", "tree_id"),
    )


class Relationship(Base):
    __tablename__ = "relationships"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tree_id: Mapped[str] = mapped_column(String(36), ForeignKey("trees.id", ondelete="CASCADE"), nullable=False)
    person1_id: Mapped[str] = mapped_column(String(36), ForeignKey("people.id", ondelete="CASCADE"), nullable=False)
    person2_id: Mapped[str] = mapped_column(String(36), ForeignKey("people.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    start_date: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    end_date: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    tree: Mapped["Tree"] = relationship("Tree", back_populates="relationships")

    __table_args__ = (
        Index("idx_relationships_tree", "tree_id"),
        Index("idx_relationships_person1", "person1_id"),
        Index("idx_relationships_person2", "person2_id"),
    )


class PersonImage(Base):
    __tablename__ = "person_images"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    person_id: Mapped[str] = mapped_column(String(36), ForeignKey("people.id", ondelete="CASCADE"), nullable=False)
    image_url: Mapped[str] = mapped_column(String(500), nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    person: Mapped["Person"] = relationship("Person", back_populates="images")

    __table_args__ = (
        Index("idx_person_images_person", "person_id"),
    )


class LifeEvent(Base):
    __tablename__ = "life_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    person_id: Mapped[str] = mapped_column(String(36), ForeignKey("people.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    event_date: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_life_events_person", "person_id"),
    )


class Story(Base):
    __tablename__ = "stories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    person_id: Mapped[str] = mapped_column(String(36), ForeignKey("people.id", ondelete="CASCADE"), nullable=False)
    tree_id: Mapped[str] = mapped_column(String(36), ForeignKey("trees.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    author_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_stories_person", "person_id"),
        Index("idx_stories_tree", "tree_id"),
    )
