# famtree/schemas.py

from __future__ import annotations

from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


def _coerce_id(value):
    # Exports from other tools sometimes carry integer ids
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


RecordId = Annotated[str, BeforeValidator(_coerce_id)]
OptionalRecordId = Annotated[Optional[str], BeforeValidator(_coerce_id)]


# -----------------------------------------------------
# AUTH
# -----------------------------------------------------

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    tenantName: Optional[str] = Field(default=None, min_length=2)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)


# -----------------------------------------------------
# FORESTS / TREES
# -----------------------------------------------------

class NameRequest(BaseModel):
    name: str = Field(min_length=2)


class TreeCreate(BaseModel):
    forestId: str = Field(min_length=1)
    name: str = Field(min_length=2)


# -----------------------------------------------------
# PEOPLE / RELATIONSHIPS (camelCase on the wire)
# -----------------------------------------------------

class PersonFields(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    maiden_name: Optional[str] = None
    gender: Optional[str] = None
    birth_date: Optional[str] = None
    birth_place: Optional[str] = None
    death_date: Optional[str] = None
    death_place: Optional[str] = None
    biography: Optional[str] = None
    photo_url: Optional[str] = None
    position_x: Optional[float] = None
    position_y: Optional[float] = None


class PersonCreate(PersonFields):
    tree_id: str = Field(min_length=1)
    first_name: str = Field(min_length=1)


class PersonUpdate(PersonFields):
    pass


class RelationshipCreate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    tree_id: str = Field(min_length=1)
    person1_id: str = Field(min_length=1)
    person2_id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class RelationshipUpdate(BaseModel):
    type: str = Field(min_length=1)


# -----------------------------------------------------
# LIFE EVENTS / STORIES
# -----------------------------------------------------

class LifeEventCreate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    person_id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: Optional[str] = None
    event_date: Optional[str] = None
    location: Optional[str] = None


class StoryCreate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    person_id: str = Field(min_length=1)
    tree_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)


# -----------------------------------------------------
# EXPORT DOCUMENTS (snake_case, mirrors table columns)
# -----------------------------------------------------

class PersonRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: RecordId
    first_name: str
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    maiden_name: Optional[str] = None
    gender: Optional[str] = None
    birth_date: Optional[str] = None
    birth_place: Optional[str] = None
    death_date: Optional[str] = None
    death_place: Optional[str] = None
    biography: Optional[str] = None
    photo_url: Optional[str] = None
    position_x: Optional[float] = None
    position_y: Optional[float] = None


class RelationshipRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: OptionalRecordId = None
    person1_id: OptionalRecordId = None
    person2_id: OptionalRecordId = None
    type: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class ExportedImage(BaseModel):
    original: str
    thumbnail: str


class TreeHeader(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    created_at: Optional[str] = None


class TreeDocument(BaseModel):
    tree: TreeHeader
    people: List[PersonRecord]
    relationships: List[RelationshipRecord]
    images: Optional[Dict[str, ExportedImage]] = None


class ForestHeader(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    created_at: Optional[str] = None


class ForestDocument(BaseModel):
    forest: ForestHeader
    trees: List[TreeDocument]
    images: Optional[Dict[str, ExportedImage]] = None


class TreeImportRequest(BaseModel):
    forestId: str = Field(min_length=1)
    treeData: TreeDocument


class ForestImportRequest(BaseModel):
    forestData: ForestDocument


# -----------------------------------------------------
# .famtree PACKAGE
# -----------------------------------------------------

class PackageTree(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    created_at: Optional[str] = None


class PackageImage(BaseModel):
    person_id: OptionalRecordId = None
    is_primary: bool = False
    uploaded_at: Optional[str] = None
    data: str
    filename: Optional[str] = None


class FamtreePackage(BaseModel):
    version: str
    exported_at: Optional[str] = None
    tree: Optional[PackageTree] = None
    people: List[PersonRecord] = Field(default_factory=list)
    relationships: List[RelationshipRecord] = Field(default_factory=list)
    images: List[PackageImage] = Field(default_factory=list)
