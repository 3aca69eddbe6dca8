from __future__ import annotations

from flask import Blueprint, jsonify, request, current_app, send_from_directory, Response
from werkzeug.datastructures import Headers
from typing import Type, TypeVar
from pathlib import Path
import json
import unicodedata
from urllib.parse import quote
import logging

import pydantic
from sqlalchemy import func, select

from .auth import (
    Principal,
    auth_required,
    create_access_token,
    current_principal,
    hash_password,
    require_role,
    verify_password,
)
from .db import get_session
from .errors import AuthError, ConflictError, NotFoundError, PermissionDeniedError, ValidationError, from_pydantic
from .exporter import (
    FamtreePackager,
    ForestSerializer,
    TreeSerializer,
    forest_to_dict,
    image_to_dict,
    life_event_to_dict,
    person_to_dict,
    relationship_to_dict,
    story_to_dict,
    tree_people,
    tree_relationships,
    tree_to_dict,
)
from .importer import IMPORT_MODES, MODE_APPEND, ForestImporter, TreeImporter, load_package_bytes
from .lookups import load_forest, load_person, load_tree
from .logging_config import log_info
from .media_utils import UploadPaths
from .models import (
    Forest,
    LifeEvent,
    Person,
    PersonImage,
    Relationship,
    Story,
    Tenant,
    Tree,
    User,
    normalize_relationship_type,
)
from .person_images import PersonImageService, remove_image_files
from .schemas import (
    ForestImportRequest,
    LifeEventCreate,
    LoginRequest,
    NameRequest,
    PersonCreate,
    PersonUpdate,
    RegisterRequest,
    RelationshipCreate,
    RelationshipUpdate,
    StoryCreate,
    TreeCreate,
    TreeImportRequest,
)

api_bp = Blueprint("api", __name__, url_prefix="/api")
logger = logging.getLogger(__name__)

DEFAULT_TENANT_NAME = "Default Tenant"

T = TypeVar("T", bound=pydantic.BaseModel)


def _parse(model: Type[T]) -> T:
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("Invalid payload")
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        raise from_pydantic(exc)


def _uploads() -> UploadPaths:
    return UploadPaths(Path(current_app.config["UPLOADS_DIR"]))


def _tenant_scope(principal: Principal) -> str:
    # Users without a tenant match nothing
    return principal.tenant_id or ""


def _include_images() -> bool:
    return (request.args.get("includeImages") or "").lower() == "true"


# -----------------------------------------------------
# HEALTH / AUTH
# -----------------------------------------------------

@api_bp.get("/health")
def health():
    session = get_session()
    session.execute(select(1))
    return jsonify({"status": "ok"})


@api_bp.post("/auth/register")
def register():
    payload = _parse(RegisterRequest)
    session = get_session()
    email = str(payload.email)

    if session.execute(select(User).where(User.email == email)).scalar_one_or_none():
        raise ConflictError("Email already registered")

    tenant_count = session.execute(select(func.count(Tenant.id))).scalar_one()
    tenant_id = None
    role = "Visitor"
    if tenant_count == 0:
        tenant = Tenant(name=payload.tenantName or DEFAULT_TENANT_NAME)
        session.add(tenant)
        session.flush()
        tenant_id = tenant.id
        role = "Admin"

    user = User(email=email, password_hash=hash_password(payload.password), role=role, tenant_id=tenant_id)
    session.add(user)
    session.commit()

    log_info(logger, "User registered", {"user_id": user.id, "role": role})
    token = create_access_token(Principal(id=user.id, email=email, role=role, tenant_id=tenant_id))
    return jsonify({"token": token, "role": role, "tenantId": tenant_id})


@api_bp.post("/auth/login")
def login():
    payload = _parse(LoginRequest)
    session = get_session()
    user = session.execute(select(User).where(User.email == str(payload.email))).scalar_one_or_none()
    if not user or not verify_password(payload.password, user.password_hash):
        raise AuthError("Invalid credentials")

    principal = Principal(id=user.id, email=user.email, role=user.role, tenant_id=user.tenant_id)
    return jsonify({"token": create_access_token(principal), "role": user.role, "tenantId": user.tenant_id})


@api_bp.get("/me")
@auth_required
def me():
    return jsonify({"user": current_principal().to_dict()})


@api_bp.post("/tenants")
@auth_required
def create_tenant():
    principal = current_principal()
    require_role(principal, "Admin")
    payload = _parse(NameRequest)

    session = get_session()
    tenant = Tenant(name=payload.name)
    session.add(tenant)
    session.commit()
    log_info(logger, "Tenant created", {"tenant_id": tenant.id, "user_id": principal.id})
    return jsonify({"id": tenant.id, "name": tenant.name}), 201


# -----------------------------------------------------
# FORESTS
# -----------------------------------------------------

@api_bp.get("/forests")
@auth_required
def list_forests():
    principal = current_principal()
    if not principal.tenant_id:
        return jsonify({"forests": []})
    session = get_session()
    forests = session.execute(
        select(Forest).where(Forest.tenant_id == principal.tenant_id).order_by(Forest.created_at, Forest.id)
    ).scalars().all()
    return jsonify({"forests": [forest_to_dict(f) for f in forests]})


@api_bp.get("/forests/<forest_id>")
@auth_required
def get_forest(forest_id: str):
    forest = load_forest(get_session(), forest_id, _tenant_scope(current_principal()))
    return jsonify(forest_to_dict(forest))


@api_bp.post("/forests")
@auth_required
def create_forest():
    principal = current_principal()
    if not principal.tenant_id:
        raise PermissionDeniedError("Insufficient role")
    require_role(principal, "Ranger")
    payload = _parse(NameRequest)

    session = get_session()
    forest = Forest(tenant_id=principal.tenant_id, name=payload.name, created_by=principal.id)
    session.add(forest)
    session.commit()
    return jsonify({"id": forest.id, "name": forest.name}), 201


@api_bp.put("/forests/<forest_id>")
@auth_required
def update_forest(forest_id: str):
    principal = current_principal()
    require_role(principal, "Ranger")
    payload = _parse(NameRequest)

    session = get_session()
    forest = load_forest(session, forest_id, _tenant_scope(principal))
    forest.name = payload.name
    session.commit()
    return jsonify({"id": forest.id, "name": forest.name})


# -----------------------------------------------------
# TREES
# -----------------------------------------------------

@api_bp.get("/trees")
@auth_required
def list_trees():
    forest_id = (request.args.get("forestId") or "").strip()
    if not forest_id:
        raise ValidationError("forestId is required")
    session = get_session()
    forest = load_forest(session, forest_id, _tenant_scope(current_principal()))
    trees = session.execute(
        select(Tree).where(Tree.forest_id == forest.id).order_by(Tree.created_at, Tree.id)
    ).scalars().all()
    return jsonify({"trees": [tree_to_dict(t) for t in trees]})


@api_bp.get("/trees/<tree_id>")
@auth_required
def get_tree(tree_id: str):
    tree = load_tree(get_session(), tree_id, _tenant_scope(current_principal()))
    return jsonify(tree_to_dict(tree))


@api_bp.post("/trees")
@auth_required
def create_tree():
    principal = current_principal()
    require_role(principal, "Arborist")
    payload = _parse(TreeCreate)

    session = get_session()
    forest = load_forest(session, payload.forestId, _tenant_scope(principal))
    tree = Tree(forest_id=forest.id, name=payload.name, created_by=principal.id)
    session.add(tree)
    session.commit()
    return jsonify({"id": tree.id, "name": tree.name}), 201


@api_bp.put("/trees/<tree_id>")
@auth_required
def update_tree(tree_id: str):
    principal = current_principal()
    require_role(principal, "Arborist")
    payload = _parse(NameRequest)

    session = get_session()
    tree = load_tree(session, tree_id, _tenant_scope(principal))
    tree.name = payload.name
    session.commit()
    return jsonify({"id": tree.id, "name": tree.name})


@api_bp.delete("/trees/<tree_id>")
@auth_required
def delete_tree(tree_id: str):
    principal = current_principal()
    require_role(principal, "Arborist")

    session = get_session()
    tree = load_tree(session, tree_id, _tenant_scope(principal))
    urls = list(
        session.execute(
            select(PersonImage.image_url).join(Person, PersonImage.person_id == Person.id).where(Person.tree_id == tree.id)
        ).scalars()
    )
    session.delete(tree)
    session.commit()

    remove_image_files(session, _uploads(), urls)
    log_info(logger, "Tree deleted", {"tree_id": tree_id, "images": len(urls)})
    return jsonify({"success": True})


# -----------------------------------------------------
# PEOPLE
# -----------------------------------------------------

@api_bp.get("/people")
@auth_required
def list_people():
    tree_id = (request.args.get("treeId") or "").strip()
    if not tree_id:
        raise ValidationError("treeId is required")
    session = get_session()
    tree = load_tree(session, tree_id, _tenant_scope(current_principal()))
    return jsonify({"people": [person_to_dict(p) for p in tree_people(session, tree.id)]})


@api_bp.post("/people")
@auth_required
def create_person():
    payload = _parse(PersonCreate)
    session = get_session()
    tree = load_tree(session, payload.tree_id, _tenant_scope(current_principal()))

    # photo_url follows the primary image and is never set directly
    fields = payload.model_dump(exclude={"tree_id", "photo_url"}, exclude_none=True)
    person = Person(tree_id=tree.id, **fields)
    session.add(person)
    session.commit()
    return jsonify(person_to_dict(person)), 201


@api_bp.put("/people/<person_id>")
@auth_required
def update_person(person_id: str):
    payload = _parse(PersonUpdate)
    session = get_session()
    person = load_person(session, person_id, _tenant_scope(current_principal()))

    for key, value in payload.model_dump(exclude={"photo_url"}, exclude_unset=True).items():
        if key == "first_name" and not value:
            raise ValidationError("firstName cannot be empty")
        if key in ("position_x", "position_y") and value is None:
            value = 0.0
        setattr(person, key, value)
    session.commit()
    return jsonify(person_to_dict(person))


@api_bp.delete("/people/<person_id>")
@auth_required
def delete_person(person_id: str):
    session = get_session()
    person = load_person(session, person_id, _tenant_scope(current_principal()))
    urls = [img.image_url for img in person.images]
    session.delete(person)
    session.commit()

    remove_image_files(session, _uploads(), urls)
    return jsonify({"success": True})


# -----------------------------------------------------
# PERSON IMAGES
# -----------------------------------------------------

@api_bp.post("/people/<person_id>/photo")
@auth_required
def upload_photo(person_id: str):
    f = request.files.get("photo")
    if not f:
        raise ValidationError("No photo file provided")
    if f.mimetype and not f.mimetype.startswith("image/"):
        raise ValidationError("Only image files are allowed")

    service = PersonImageService(get_session(), _uploads())
    image, person = service.upload(person_id, f.read(), _tenant_scope(current_principal()))
    return jsonify({
        "photo_url": person.photo_url,
        "original_url": image.image_url,
        "image_id": image.id,
        "is_primary": bool(image.is_primary),
    })


@api_bp.get("/people/<person_id>/images")
@auth_required
def list_person_images(person_id: str):
    service = PersonImageService(get_session(), _uploads())
    images = service.list(person_id, _tenant_scope(current_principal()))
    return jsonify({"images": [image_to_dict(img) for img in images]})


@api_bp.put("/people/<person_id>/images/<image_id>/primary")
@auth_required
def set_primary_person_image(person_id: str, image_id: str):
    service = PersonImageService(get_session(), _uploads())
    person = service.set_primary(person_id, image_id, _tenant_scope(current_principal()))
    return jsonify({"success": True, "photo_url": person.photo_url})


@api_bp.delete("/people/<person_id>/images/<image_id>")
@auth_required
def delete_person_image(person_id: str, image_id: str):
    service = PersonImageService(get_session(), _uploads())
    person = service.delete(person_id, image_id, _tenant_scope(current_principal()))
    return jsonify({"success": True, "photo_url": person.photo_url})


@api_bp.delete("/people/<person_id>/photo")
@auth_required
def delete_person_photos(person_id: str):
    service = PersonImageService(get_session(), _uploads())
    service.delete_all(person_id, _tenant_scope(current_principal()))
    return jsonify({"success": True})


@api_bp.get("/uploads/<path:file_name>")
def get_upload(file_name: str):
    return send_from_directory(current_app.config["UPLOADS_DIR"], file_name, as_attachment=False)


# -----------------------------------------------------
# RELATIONSHIPS
# -----------------------------------------------------

@api_bp.get("/relationships")
@auth_required
def list_relationships():
    tree_id = (request.args.get("treeId") or "").strip()
    if not tree_id:
        raise ValidationError("treeId is required")
    session = get_session()
    tree = load_tree(session, tree_id, _tenant_scope(current_principal()))
    return jsonify({"relationships": [relationship_to_dict(r) for r in tree_relationships(session, tree.id)]})


@api_bp.post("/relationships")
@auth_required
def create_relationship():
    payload = _parse(RelationshipCreate)
    session = get_session()
    tree = load_tree(session, payload.tree_id, _tenant_scope(current_principal()))

    for endpoint in (payload.person1_id, payload.person2_id):
        person = session.get(Person, endpoint)
        if not person or person.tree_id != tree.id:
            raise ValidationError("Both people must belong to the tree")

    rel = Relationship(
        tree_id=tree.id,
        person1_id=payload.person1_id,
        person2_id=payload.person2_id,
        type=normalize_relationship_type(payload.type),
        start_date=payload.start_date,
        end_date=payload.end_date,
    )
    session.add(rel)
    session.commit()
    return jsonify(relationship_to_dict(rel)), 201


def _load_relationship(session, relationship_id: str, tenant_id: str) -> Relationship:
    rel = session.get(Relationship, relationship_id)
    if not rel or rel.tree.forest.tenant_id != tenant_id:
        raise NotFoundError("Relationship not found")
    return rel


@api_bp.put("/relationships/<relationship_id>")
@auth_required
def update_relationship(relationship_id: str):
    payload = _parse(RelationshipUpdate)
    session = get_session()
    rel = _load_relationship(session, relationship_id, _tenant_scope(current_principal()))
    rel.type = normalize_relationship_type(payload.type)
    session.commit()
    return jsonify({"success": True})


@api_bp.delete("/relationships/<relationship_id>")
@auth_required
def delete_relationship(relationship_id: str):
    session = get_session()
    rel = _load_relationship(session, relationship_id, _tenant_scope(current_principal()))
    session.delete(rel)
    session.commit()
    return jsonify({"success": True})


# -----------------------------------------------------
# LIFE EVENTS / STORIES
# -----------------------------------------------------

@api_bp.get("/events")
@auth_required
def list_events():
    person_id = (request.args.get("personId") or "").strip()
    if not person_id:
        raise ValidationError("personId is required")
    session = get_session()
    person = load_person(session, person_id, _tenant_scope(current_principal()))
    events = session.execute(
        select(LifeEvent).where(LifeEvent.person_id == person.id).order_by(LifeEvent.event_date, LifeEvent.created_at)
    ).scalars().all()
    return jsonify({"events": [life_event_to_dict(e) for e in events]})


@api_bp.post("/events")
@auth_required
def create_event():
    payload = _parse(LifeEventCreate)
    session = get_session()
    person = load_person(session, payload.person_id, _tenant_scope(current_principal()))

    event = LifeEvent(person_id=person.id, **payload.model_dump(exclude={"person_id"}))
    session.add(event)
    session.commit()
    return jsonify(life_event_to_dict(event)), 201


@api_bp.get("/stories")
@auth_required
def list_stories():
    person_id = (request.args.get("personId") or "").strip()
    tree_id = (request.args.get("treeId") or "").strip()
    session = get_session()
    tenant_id = _tenant_scope(current_principal())

    if person_id:
        person = load_person(session, person_id, tenant_id)
        condition = Story.person_id == person.id
    elif tree_id:
        tree = load_tree(session, tree_id, tenant_id)
        condition = Story.tree_id == tree.id
    else:
        raise ValidationError("personId or treeId is required")

    stories = session.execute(
        select(Story).where(condition).order_by(Story.created_at.desc(), Story.id)
    ).scalars().all()
    return jsonify({"stories": [story_to_dict(s) for s in stories]})


@api_bp.post("/stories")
@auth_required
def create_story():
    principal = current_principal()
    payload = _parse(StoryCreate)
    session = get_session()
    tree = load_tree(session, payload.tree_id, _tenant_scope(principal))
    person = load_person(session, payload.person_id, _tenant_scope(principal))
    if person.tree_id != tree.id:
        raise ValidationError("The person must belong to the tree")

    story = Story(
        person_id=person.id,
        tree_id=tree.id,
        title=payload.title,
        content=payload.content,
        author_id=principal.id,
    )
    session.add(story)
    session.commit()
    return jsonify(story_to_dict(story)), 201


# -----------------------------------------------------
# EXPORT / IMPORT
# -----------------------------------------------------

@api_bp.get("/trees/<tree_id>/export")
@auth_required
def export_tree(tree_id: str):
    serializer = TreeSerializer(get_session(), _uploads())
    try:
        payload = serializer.serialize(tree_id, _include_images(), _tenant_scope(current_principal()))
    except OSError:
        logger.exception("Tree export failed", extra={"tree_id": tree_id})
        return jsonify({"error": "Failed to export tree"}), 500
    return jsonify(payload)


@api_bp.get("/forests/<forest_id>/export")
@auth_required
def export_forest(forest_id: str):
    serializer = ForestSerializer(get_session(), _uploads())
    try:
        payload = serializer.serialize(forest_id, _include_images(), _tenant_scope(current_principal()))
    except OSError:
        logger.exception("Forest export failed", extra={"forest_id": forest_id})
        return jsonify({"error": "Failed to export forest"}), 500
    return jsonify(payload)


@api_bp.post("/trees/import")
@auth_required
def import_tree():
    principal = current_principal()
    payload = _parse(TreeImportRequest)
    importer = ForestImporter(get_session(), _uploads())
    try:
        tree, _ = importer.import_tree_document(
            payload.forestId, payload.treeData, created_by=principal.id, tenant_id=_tenant_scope(principal)
        )
    except OSError:
        logger.exception("Tree import failed", extra={"forest_id": payload.forestId})
        return jsonify({"error": "Failed to import tree"}), 500
    return jsonify({"id": tree.id, "name": tree.name})


@api_bp.post("/forests/import")
@auth_required
def import_forest():
    principal = current_principal()
    payload = _parse(ForestImportRequest)
    if not principal.tenant_id:
        raise ValidationError("A tenant is required to import a forest")
    importer = ForestImporter(get_session(), _uploads())
    try:
        forest, _ = importer.import_forest_document(principal.tenant_id, payload.forestData, created_by=principal.id)
    except OSError:
        logger.exception("Forest import failed")
        return jsonify({"error": "Failed to import forest"}), 500
    return jsonify({"id": forest.id, "name": forest.name})


@api_bp.get("/trees/<tree_id>/export-famtree")
@auth_required
def export_famtree(tree_id: str):
    packager = FamtreePackager(get_session(), _uploads())
    try:
        package = packager.package(tree_id, _tenant_scope(current_principal()))
    except OSError:
        logger.exception("Famtree export failed", extra={"tree_id": tree_id})
        return jsonify({"error": "Failed to export tree"}), 500

    return Response(
        json.dumps(package, indent=2),
        mimetype="application/json",
        headers=_attachment_headers(f"{package['tree']['name']}.famtree"),
    )


def _attachment_headers(download_name: str) -> Headers:
    """Content-Disposition with an ASCII fallback and an RFC 5987 UTF-8 name."""
    download_name = download_name.replace("\r", "").replace("\n", "")
    headers = Headers()
    try:
        download_name.encode("ascii")
    except UnicodeEncodeError:
        simple = unicodedata.normalize("NFKD", download_name).encode("ascii", "ignore").decode("ascii")
        quoted = quote(download_name, safe="!#$&+^`|~")
        headers.set("Content-Disposition", "attachment", filename=simple, **{"filename*": f"UTF-8''{quoted}"})
    else:
        headers.set("Content-Disposition", "attachment", filename=download_name)
    return headers


def _read_famtree_upload() -> bytes:
    f = request.files.get("file")
    if not f:
        raise ValidationError("No file provided")
    name = (f.filename or "").lower()
    if not name.endswith(".famtree") and f.mimetype != "application/json":
        raise ValidationError("Only .famtree files are allowed")
    return f.read()


@api_bp.post("/trees/<tree_id>/import-famtree")
@auth_required
def import_famtree(tree_id: str):
    mode = request.args.get("mode") or MODE_APPEND
    if mode not in IMPORT_MODES:
        raise ValidationError(f"Unsupported import mode: {mode}")
    package = load_package_bytes(_read_famtree_upload())

    importer = TreeImporter(get_session(), _uploads())
    try:
        summary = importer.import_package(tree_id, package, mode=mode, tenant_id=_tenant_scope(current_principal()))
    except OSError:
        logger.exception("Famtree import failed", extra={"tree_id": tree_id})
        return jsonify({"error": "Failed to import tree"}), 500
    return jsonify({"success": True, "mode": mode, "imported": summary.to_dict()})


@api_bp.post("/forests/<forest_id>/import-famtree-new")
@auth_required
def import_famtree_new(forest_id: str):
    principal = current_principal()
    package = load_package_bytes(_read_famtree_upload())

    importer = ForestImporter(get_session(), _uploads())
    try:
        tree, summary = importer.import_package_as_new_tree(
            forest_id, package, created_by=principal.id, tenant_id=_tenant_scope(principal)
        )
    except OSError:
        logger.exception("Famtree import failed", extra={"forest_id": forest_id})
        return jsonify({"error": "Failed to import tree"}), 500
    return jsonify({"success": True, "treeId": tree.id, "treeName": tree.name, "imported": summary.to_dict()})
