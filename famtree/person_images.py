from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from PIL import Image, UnidentifiedImageError
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .errors import NotFoundError, ValidationError
from .logging_config import log_info
from .lookups import load_person
from .media_utils import (
    UPLOAD_THUMBNAIL_QUALITY,
    UploadPaths,
    filename_from_url,
    make_thumbnail,
    new_upload_filename,
    original_url,
    save_jpeg,
    thumbnail_url,
)
from .models import Person, PersonImage

logger = logging.getLogger(__name__)


def set_primary_image(session: Session, person: Person, image: PersonImage) -> None:
    """Make ``image`` the only primary image of ``person`` and mirror it into photo_url."""
    session.execute(
        update(PersonImage)
        .where(PersonImage.person_id == person.id, PersonImage.id != image.id)
        .values(is_primary=False)
    )
    image.is_primary = True
    person.photo_url = thumbnail_url(filename_from_url(image.image_url))


def remove_image_files(session: Session, uploads: UploadPaths, image_urls: Iterable[str]) -> int:
    """
    Delete the original and thumbnail behind each URL that no row references anymore.

    JSON imports link existing files by name, so several rows can share one file.
    """
    removed = 0
    for url in set(image_urls):
        still_used = session.execute(
            select(func.count(PersonImage.id)).where(PersonImage.image_url == url)
        ).scalar_one()
        if still_used:
            continue
        filename = filename_from_url(url)
        if not filename:
            continue
        for path in (uploads.original(filename), uploads.thumbnail(filename)):
            if path.exists():
                path.unlink()
                removed += 1
    return removed


class PersonImageService:
    def __init__(self, session: Session, uploads: UploadPaths):
        self.session = session
        self.uploads = uploads
        self.uploads.ensure()

    def upload(self, person_id: str, content: bytes, tenant_id: Optional[str] = None) -> Tuple[PersonImage, Person]:
        person = load_person(self.session, person_id, tenant_id)
        if not content:
            raise ValidationError("No photo file provided")

        filename = f"{person.id}-{new_upload_filename('.jpg')}"
        original_path = self.uploads.original(filename)
        thumbnail_path = self.uploads.thumbnail(filename)
        try:
            try:
                save_jpeg(content, original_path)
            except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
                raise ValidationError("Only image files are allowed") from exc
            make_thumbnail(content, thumbnail_path, quality=UPLOAD_THUMBNAIL_QUALITY)

            has_images = self.session.execute(
                select(func.count(PersonImage.id)).where(PersonImage.person_id == person.id)
            ).scalar_one()
            image = PersonImage(person_id=person.id, image_url=original_url(filename), is_primary=False)
            self.session.add(image)
            self.session.flush()
            if not has_images:
                set_primary_image(self.session, person, image)
            self.session.commit()
        except Exception:
            self.session.rollback()
            _discard([original_path, thumbnail_path])
            raise

        log_info(logger, "Person image uploaded", {"person_id": person.id, "image_id": image.id})
        return image, person

    def list(self, person_id: str, tenant_id: Optional[str] = None) -> List[PersonImage]:
        person = load_person(self.session, person_id, tenant_id)
        return list(
            self.session.execute(
                select(PersonImage)
                .where(PersonImage.person_id == person.id)
                .order_by(PersonImage.is_primary.desc(), PersonImage.uploaded_at.desc(), PersonImage.id)
            ).scalars()
        )

    def set_primary(self, person_id: str, image_id: str, tenant_id: Optional[str] = None) -> Person:
        person = load_person(self.session, person_id, tenant_id)
        image = self._get_image(person, image_id)
        set_primary_image(self.session, person, image)
        self.session.commit()
        return person

    def delete(self, person_id: str, image_id: str, tenant_id: Optional[str] = None) -> Person:
        person = load_person(self.session, person_id, tenant_id)
        image = self._get_image(person, image_id)
        was_primary = bool(image.is_primary)
        url = image.image_url

        self.session.delete(image)
        self.session.flush()

        if was_primary:
            successor = self.session.execute(
                select(PersonImage)
                .where(PersonImage.person_id == person.id)
                .order_by(PersonImage.uploaded_at.desc(), PersonImage.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            if successor:
                set_primary_image(self.session, person, successor)
            else:
                person.photo_url = None
        self.session.commit()

        remove_image_files(self.session, self.uploads, [url])
        return person

    def delete_all(self, person_id: str, tenant_id: Optional[str] = None) -> Person:
        person = load_person(self.session, person_id, tenant_id)
        images = self.session.execute(
            select(PersonImage).where(PersonImage.person_id == person.id)
        ).scalars().all()
        urls = [img.image_url for img in images]
        for img in images:
            self.session.delete(img)
        person.photo_url = None
        self.session.commit()

        remove_image_files(self.session, self.uploads, urls)
        return person

    def _get_image(self, person: Person, image_id: str) -> PersonImage:
        image = self.session.get(PersonImage, image_id)
        if not image or image.person_id != person.id:
            raise NotFoundError("Image not found")
        return image


def _discard(paths: Iterable[Path]) -> None:
    for path in paths:
        Path(path).unlink(missing_ok=True)
