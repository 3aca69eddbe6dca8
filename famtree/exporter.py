"""
Tree and forest export.

Two formats are produced:

* the plain JSON export (``TreeSerializer`` / ``ForestSerializer``), whose
  optional ``images`` map is keyed by stored file name and carries both the
  original and the thumbnail verbatim;
* the versioned ``.famtree`` package (``FamtreePackager``), which embeds every
  person image as a flat list tied to its owner.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .logging_config import log_info, log_warning
from .lookups import load_forest, load_tree
from .media_utils import ImageCodec, UploadPaths, filename_from_url
from .models import Forest, LifeEvent, Person, PersonImage, Relationship, Story, Tree

FAMTREE_VERSION = "1.0"

logger = logging.getLogger(__name__)


def _iso(value: datetime | None) -> Optional[str]:
    return value.isoformat() if value else None


def person_to_dict(p: Person) -> dict:
    return {
        "id": p.id,
        "tree_id": p.tree_id,
        "first_name": p.first_name,
        "middle_name": p.middle_name,
        "last_name": p.last_name,
        "maiden_name": p.maiden_name,
        "gender": p.gender,
        "birth_date": p.birth_date,
        "birth_place": p.birth_place,
        "death_date": p.death_date,
        "death_place": p.death_place,
        "biography": p.biography,
        "photo_url": p.photo_url,
        "position_x": p.position_x,
        "position_y": p.position_y,
        "created_at": _iso(p.created_at),
    }


def relationship_to_dict(r: Relationship) -> dict:
    return {
        "id": r.id,
        "tree_id": r.tree_id,
        "person1_id": r.person1_id,
        "person2_id": r.person2_id,
        "type": r.type,
        "start_date": r.start_date,
        "end_date": r.end_date,
        "created_at": _iso(r.created_at),
    }


def tree_to_dict(t: Tree) -> dict:
    return {
        "id": t.id,
        "forest_id": t.forest_id,
        "name": t.name,
        "description": t.description,
        "created_by": t.created_by,
        "created_at": _iso(t.created_at),
    }


def forest_to_dict(f: Forest) -> dict:
    return {
        "id": f.id,
        "tenant_id": f.tenant_id,
        "name": f.name,
        "description": f.description,
        "created_by": f.created_by,
        "created_at": _iso(f.created_at),
    }


def image_to_dict(img: PersonImage) -> dict:
    return {
        "id": img.id,
        "image_url": img.image_url,
        "is_primary": bool(img.is_primary),
        "uploaded_at": _iso(img.uploaded_at),
    }


def life_event_to_dict(e: LifeEvent) -> dict:
    return {
        "id": e.id,
        "person_id": e.person_id,
        "type": e.type,
        "title": e.title,
        "description": e.description,
        "event_date": e.event_date,
        "location": e.location,
        "created_at": _iso(e.created_at),
    }


def story_to_dict(s: Story) -> dict:
    return {
        "id": s.id,
        "person_id": s.person_id,
        "tree_id": s.tree_id,
        "title": s.title,
        "content": s.content,
        "author_id": s.author_id,
        "created_at": _iso(s.created_at),
    }


def tree_people(session: Session, tree_id: str) -> List[Person]:
    return list(
        session.execute(
            select(Person).where(Person.tree_id == tree_id).order_by(Person.created_at, Person.id)
        ).scalars()
    )


def tree_relationships(session: Session, tree_id: str) -> List[Relationship]:
    """
    Relationships scoped through the tree membership of ``person1``.

    Rows whose own ``tree_id`` disagrees are still returned but logged.
    """
    rows = list(
        session.execute(
            select(Relationship)
            .join(Person, Relationship.person1_id == Person.id)
            .where(Person.tree_id == tree_id)
            .order_by(Relationship.created_at, Relationship.id)
        ).scalars()
    )
    for rel in rows:
        if rel.tree_id != tree_id:
            log_warning(
                logger,
                "Relationship tree_id disagrees with person1 tree",
                {"relationship_id": rel.id, "stored_tree_id": rel.tree_id, "tree_id": tree_id},
            )
    return rows


class TreeSerializer:
    def __init__(self, session: Session, uploads: UploadPaths, codec: ImageCodec | None = None):
        self.session = session
        self.uploads = uploads
        self.codec = codec or ImageCodec()

    def serialize(self, tree_id: str, include_images: bool = False, tenant_id: Optional[str] = None) -> Dict[str, Any]:
        tree = load_tree(self.session, tree_id, tenant_id)
        images: Dict[str, Dict[str, str]] = {}
        payload = self.tree_payload(tree, include_images, images)
        if include_images and images:
            payload["images"] = images
        log_info(
            logger,
            "Tree exported",
            {"tree_id": tree.id, "people": len(payload["people"]), "images": len(images)},
        )
        return payload

    def tree_payload(self, tree: Tree, include_images: bool, images: Dict[str, Dict[str, str]]) -> Dict[str, Any]:
        """
        Build ``{tree, people, relationships}`` and add image entries to ``images``.

        File names already present in ``images`` are not read again.
        """
        people = tree_people(self.session, tree.id)
        relationships = tree_relationships(self.session, tree.id)

        if include_images:
            for person in people:
                filename = filename_from_url(person.photo_url)
                if not filename or filename in images:
                    continue
                entry = self._embed(filename)
                if entry is not None:
                    images[filename] = entry

        return {
            "tree": {"id": tree.id, "name": tree.name, "created_at": _iso(tree.created_at)},
            "people": [person_to_dict(p) for p in people],
            "relationships": [relationship_to_dict(r) for r in relationships],
        }

    def _embed(self, filename: str) -> Optional[Dict[str, str]]:
        original_path = self.uploads.original(filename)
        thumbnail_path = self.uploads.thumbnail(filename)
        if not original_path.exists() or not thumbnail_path.exists():
            log_warning(logger, "Skipping image with a missing variant", {"filename": filename})
            return None
        return {
            "original": self.codec.encode(original_path),
            "thumbnail": self.codec.encode(thumbnail_path),
        }


class ForestSerializer:
    def __init__(self, session: Session, uploads: UploadPaths, codec: ImageCodec | None = None):
        self.session = session
        self.trees = TreeSerializer(session, uploads, codec)

    def serialize(self, forest_id: str, include_images: bool = False, tenant_id: Optional[str] = None) -> Dict[str, Any]:
        forest = load_forest(self.session, forest_id, tenant_id)
        trees = self.session.execute(
            select(Tree).where(Tree.forest_id == forest.id).order_by(Tree.created_at, Tree.id)
        ).scalars().all()

        # One map for the whole forest: each file name is read at most once
        images: Dict[str, Dict[str, str]] = {}
        trees_data = [self.trees.tree_payload(tree, include_images, images) for tree in trees]

        payload: Dict[str, Any] = {
            "forest": {"id": forest.id, "name": forest.name, "created_at": _iso(forest.created_at)},
            "trees": trees_data,
        }
        if include_images and images:
            payload["images"] = images
        log_info(
            logger,
            "Forest exported",
            {"forest_id": forest.id, "trees": len(trees_data), "images": len(images)},
        )
        return payload


class FamtreePackager:
    """Builds the self-contained ``.famtree`` package for one tree."""

    def __init__(self, session: Session, uploads: UploadPaths, codec: ImageCodec | None = None):
        self.session = session
        self.uploads = uploads
        self.codec = codec or ImageCodec()

    def package(self, tree_id: str, tenant_id: Optional[str] = None) -> Dict[str, Any]:
        tree = load_tree(self.session, tree_id, tenant_id)
        people = tree_people(self.session, tree.id)
        relationships = tree_relationships(self.session, tree.id)

        images: List[Dict[str, Any]] = []
        for person in people:
            person_images = self.session.execute(
                select(PersonImage)
                .where(PersonImage.person_id == person.id)
                .order_by(PersonImage.uploaded_at, PersonImage.id)
            ).scalars()
            for img in person_images:
                filename = filename_from_url(img.image_url)
                if not filename:
                    continue
                path = self.uploads.original(filename)
                if not path.exists():
                    log_warning(logger, "Image file missing on export", {"filename": filename, "person_id": person.id})
                    continue
                images.append({
                    "person_id": img.person_id,
                    "is_primary": bool(img.is_primary),
                    "uploaded_at": _iso(img.uploaded_at),
                    "data": self.codec.encode(path),
                    "filename": filename,
                })

        log_info(
            logger,
            "Tree packaged",
            {"tree_id": tree.id, "people": len(people), "relationships": len(relationships), "images": len(images)},
        )
        return {
            "version": FAMTREE_VERSION,
            "exported_at": datetime.utcnow().isoformat() + "Z",
            "tree": {"name": tree.name, "created_at": _iso(tree.created_at)},
            "people": [person_to_dict(p) for p in people],
            "relationships": [relationship_to_dict(r) for r in relationships],
            "images": images,
        }
