"""
Tree and forest import.

Every public entry point runs as one database transaction. Image files
written along the way are recorded and removed again when the transaction
is rolled back, so a failed import leaves neither rows nor orphan files.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import pydantic
from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from .errors import UnsupportedVersionError, ValidationError, from_pydantic
from .exporter import FAMTREE_VERSION
from .logging_config import log_info, log_warning
from .lookups import load_forest, load_tree
from .media_utils import (
    ImageCodec,
    UploadPaths,
    decode_base64,
    filename_from_url,
    make_thumbnail,
    new_upload_filename,
    original_url,
)
from .models import Forest, Person, PersonImage, Relationship, Tree, new_id, normalize_relationship_type
from .person_images import remove_image_files, set_primary_image
from .remap import IdRemapper
from .schemas import (
    ExportedImage,
    FamtreePackage,
    ForestDocument,
    PersonRecord,
    RelationshipRecord,
    TreeDocument,
)

logger = logging.getLogger(__name__)

MODE_APPEND = "append"
MODE_OVERWRITE = "overwrite"
IMPORT_MODES = (MODE_APPEND, MODE_OVERWRITE)
DEFAULT_TREE_NAME = "Imported Tree"
IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".tif", ".tiff"}


@dataclass
class ImportSummary:
    people: int = 0
    relationships: int = 0
    images: int = 0
    dropped_relationships: int = 0

    def to_dict(self) -> dict:
        return {"people": self.people, "relationships": self.relationships, "images": self.images}


def parse_package(raw: Any) -> FamtreePackage:
    """Validate a decoded ``.famtree`` document. The version gate comes first."""
    if isinstance(raw, FamtreePackage):
        package = raw
    else:
        if not isinstance(raw, dict):
            raise ValidationError("Invalid .famtree file")
        if raw.get("version") != FAMTREE_VERSION:
            raise UnsupportedVersionError("Unsupported .famtree version")
        try:
            package = FamtreePackage.model_validate(raw)
        except pydantic.ValidationError as exc:
            raise from_pydantic(exc, "Invalid .famtree file")
    if package.version != FAMTREE_VERSION:
        raise UnsupportedVersionError("Unsupported .famtree version")
    return package


def load_package_bytes(content: bytes) -> FamtreePackage:
    try:
        raw = json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ValidationError("Invalid .famtree file")
    return parse_package(raw)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _person_fields(record: PersonRecord) -> dict:
    return {
        "first_name": record.first_name,
        "middle_name": record.middle_name,
        "last_name": record.last_name,
        "maiden_name": record.maiden_name,
        "gender": record.gender,
        "birth_date": record.birth_date,
        "birth_place": record.birth_place,
        "death_date": record.death_date,
        "death_place": record.death_place,
        "biography": record.biography,
        "position_x": record.position_x if record.position_x is not None else 0.0,
        "position_y": record.position_y if record.position_y is not None else 0.0,
    }


def insert_people(
    session: Session,
    tree_id: str,
    records: Iterable[PersonRecord],
    remapper: IdRemapper,
) -> List[tuple[PersonRecord, Person]]:
    """Insert one person per distinct document id. photo_url is left unset."""
    inserted: List[tuple[PersonRecord, Person]] = []
    for record in records:
        if record.id in remapper:
            log_warning(logger, "Duplicate person id in import document", {"person_id": record.id})
            continue
        person = Person(id=remapper.register(record.id), tree_id=tree_id, photo_url=None, **_person_fields(record))
        session.add(person)
        inserted.append((record, person))
    session.flush()
    return inserted


def insert_relationships(
    session: Session,
    tree_id: str,
    records: Iterable[RelationshipRecord],
    remapper: IdRemapper,
    summary: ImportSummary,
) -> None:
    """Insert relationships whose two endpoints were imported; drop the rest."""
    for record in records:
        person1_id = remapper.resolve(record.person1_id)
        person2_id = remapper.resolve(record.person2_id)
        if not person1_id or not person2_id:
            summary.dropped_relationships += 1
            continue
        session.add(Relationship(
            tree_id=tree_id,
            person1_id=person1_id,
            person2_id=person2_id,
            type=normalize_relationship_type(record.type),
            start_date=record.start_date,
            end_date=record.end_date,
        ))
        summary.relationships += 1
    session.flush()


class _WrittenFiles:
    """Compensating log of files created during one import."""

    def __init__(self):
        self.paths: List[Path] = []

    def add(self, path: Path) -> Path:
        self.paths.append(Path(path))
        return path

    def discard(self) -> None:
        for path in reversed(self.paths):
            path.unlink(missing_ok=True)
        self.paths.clear()


class _ImportBase:
    def __init__(
        self,
        session: Session,
        uploads: UploadPaths,
        codec: ImageCodec | None = None,
        id_factory: Callable[[], str] = new_id,
    ):
        self.session = session
        self.uploads = uploads
        self.codec = codec or ImageCodec()
        self.id_factory = id_factory

    def _run(self, work: Callable[[_WrittenFiles], Any]) -> Any:
        written = _WrittenFiles()
        try:
            result = work(written)
            self.session.commit()
        except Exception:
            self.session.rollback()
            written.discard()
            raise
        return result

    def _import_package_into(self, tree: Tree, package: FamtreePackage, written: _WrittenFiles) -> ImportSummary:
        summary = ImportSummary()
        remapper = IdRemapper(self.id_factory)

        summary.people = len(insert_people(self.session, tree.id, package.people, remapper))
        insert_relationships(self.session, tree.id, package.relationships, remapper, summary)

        for envelope in package.images:
            owner_id = remapper.resolve(envelope.person_id)
            if not owner_id:
                continue
            content = decode_base64(envelope.data)

            ext = Path(envelope.filename or "").suffix.lower()
            filename = new_upload_filename(ext if ext in IMAGE_EXTS else ".jpg")
            original_path = written.add(self.uploads.original(filename))
            thumbnail_path = written.add(self.uploads.thumbnail(filename))
            with open(original_path, "wb") as out:
                out.write(content)
            make_thumbnail(content, thumbnail_path)

            image = PersonImage(
                person_id=owner_id,
                image_url=original_url(filename),
                is_primary=False,
                uploaded_at=parse_timestamp(envelope.uploaded_at) or datetime.utcnow(),
            )
            self.session.add(image)
            self.session.flush()
            if envelope.is_primary:
                set_primary_image(self.session, self.session.get(Person, owner_id), image)
            summary.images += 1

        self.session.flush()
        return summary

    def _write_image_map(self, images: Optional[Dict[str, ExportedImage]], written: _WrittenFiles) -> None:
        """Write embedded originals and thumbnails; files already on disk are kept as they are."""
        if not images:
            return
        for raw_name, entry in images.items():
            filename = filename_from_url(raw_name)
            if not filename:
                continue
            original_path = self.uploads.original(filename)
            thumbnail_path = self.uploads.thumbnail(filename)
            if self.codec.decode(entry.original, original_path):
                written.add(original_path)
            if self.codec.decode(entry.thumbnail, thumbnail_path):
                written.add(thumbnail_path)

    def _import_document_into(self, tree: Tree, document: TreeDocument) -> ImportSummary:
        summary = ImportSummary()
        remapper = IdRemapper(self.id_factory)

        inserted = insert_people(self.session, tree.id, document.people, remapper)
        summary.people = len(inserted)
        for record, person in inserted:
            filename = filename_from_url(record.photo_url)
            if not filename:
                continue
            if not self.uploads.original(filename).exists() or not self.uploads.thumbnail(filename).exists():
                log_warning(logger, "Dropping photo reference without image files", {"filename": filename})
                continue
            image = PersonImage(person_id=person.id, image_url=original_url(filename), is_primary=False)
            self.session.add(image)
            self.session.flush()
            set_primary_image(self.session, person, image)
            summary.images += 1

        insert_relationships(self.session, tree.id, document.relationships, remapper, summary)
        return summary


class TreeImporter(_ImportBase):
    """Imports a ``.famtree`` package into an existing tree."""

    def import_package(
        self,
        tree_id: str,
        document: Any,
        mode: str = MODE_APPEND,
        tenant_id: Optional[str] = None,
    ) -> ImportSummary:
        if mode not in IMPORT_MODES:
            raise ValidationError(f"Unsupported import mode: {mode}")
        package = parse_package(document)
        tree = load_tree(self.session, tree_id, tenant_id)
        replaced_urls: List[str] = []

        def work(written: _WrittenFiles) -> ImportSummary:
            if mode == MODE_OVERWRITE:
                replaced_urls.extend(self._clear_tree(tree))
                if package.tree and package.tree.name:
                    tree.name = package.tree.name
            return self._import_package_into(tree, package, written)

        summary = self._run(work)
        if replaced_urls:
            remove_image_files(self.session, self.uploads, replaced_urls)

        log_info(
            logger,
            "Famtree package imported",
            {
                "tree_id": tree.id,
                "mode": mode,
                "people": summary.people,
                "relationships": summary.relationships,
                "dropped_relationships": summary.dropped_relationships,
                "images": summary.images,
            },
        )
        return summary

    def _clear_tree(self, tree: Tree) -> List[str]:
        """Delete relationships, images and people of ``tree``; return the removed image URLs."""
        person_ids = select(Person.id).where(Person.tree_id == tree.id)
        urls = list(
            self.session.execute(
                select(PersonImage.image_url).where(PersonImage.person_id.in_(person_ids))
            ).scalars()
        )
        self.session.execute(
            delete(Relationship).where(
                or_(Relationship.person1_id.in_(person_ids), Relationship.person2_id.in_(person_ids))
            ),
            execution_options={"synchronize_session": False},
        )
        self.session.execute(
            delete(PersonImage).where(PersonImage.person_id.in_(person_ids)),
            execution_options={"synchronize_session": False},
        )
        self.session.execute(
            delete(Person).where(Person.tree_id == tree.id),
            execution_options={"synchronize_session": False},
        )
        self.session.expire_all()
        return urls


class ForestImporter(_ImportBase):
    """Additive imports that always create new trees (and, for forest documents, a new forest)."""

    def import_package_as_new_tree(
        self,
        forest_id: str,
        document: Any,
        created_by: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> tuple[Tree, ImportSummary]:
        package = parse_package(document)
        forest = load_forest(self.session, forest_id, tenant_id)
        name = (package.tree.name if package.tree else None) or DEFAULT_TREE_NAME

        def work(written: _WrittenFiles):
            tree = Tree(forest_id=forest.id, name=name, created_by=created_by)
            self.session.add(tree)
            self.session.flush()
            return tree, self._import_package_into(tree, package, written)

        tree, summary = self._run(work)
        log_info(
            logger,
            "Famtree package imported as new tree",
            {"tree_id": tree.id, "forest_id": forest.id, "people": summary.people, "images": summary.images},
        )
        return tree, summary

    def import_tree_document(
        self,
        forest_id: str,
        document: Any,
        created_by: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> tuple[Tree, ImportSummary]:
        doc = _validate(TreeDocument, document)
        forest = load_forest(self.session, forest_id, tenant_id)

        def work(written: _WrittenFiles):
            self._write_image_map(doc.images, written)
            tree = Tree(forest_id=forest.id, name=doc.tree.name, created_by=created_by)
            self.session.add(tree)
            self.session.flush()
            return tree, self._import_document_into(tree, doc)

        tree, summary = self._run(work)
        log_info(
            logger,
            "Tree document imported",
            {"tree_id": tree.id, "people": summary.people, "relationships": summary.relationships},
        )
        return tree, summary

    def import_forest_document(
        self,
        tenant_id: str,
        document: Any,
        created_by: Optional[str] = None,
    ) -> tuple[Forest, List[ImportSummary]]:
        doc = _validate(ForestDocument, document)
        if not tenant_id:
            raise ValidationError("A tenant is required to import a forest")

        def work(written: _WrittenFiles):
            self._write_image_map(doc.images, written)
            forest = Forest(tenant_id=tenant_id, name=doc.forest.name, created_by=created_by)
            self.session.add(forest)
            self.session.flush()

            summaries = []
            for tree_doc in doc.trees:
                self._write_image_map(tree_doc.images, written)
                tree = Tree(forest_id=forest.id, name=tree_doc.tree.name, created_by=created_by)
                self.session.add(tree)
                self.session.flush()
                # Each tree gets its own remapper inside _import_document_into
                summaries.append(self._import_document_into(tree, tree_doc))
            return forest, summaries

        forest, summaries = self._run(work)
        log_info(
            logger,
            "Forest document imported",
            {"forest_id": forest.id, "trees": len(summaries), "people": sum(s.people for s in summaries)},
        )
        return forest, summaries


def _validate(model, document: Any):
    if isinstance(document, model):
        return document
    try:
        return model.model_validate(document)
    except pydantic.ValidationError as exc:
        raise from_pydantic(exc)
