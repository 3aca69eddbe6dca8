"""Tenant-scoped loaders shared by routes, exporters and importers."""
from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from .errors import NotFoundError
from .models import Forest, Person, Tree


def load_forest(session: Session, forest_id: str, tenant_id: Optional[str] = None) -> Forest:
    """Fetch a forest, or raise NotFoundError. ``tenant_id`` narrows the lookup when given."""
    forest = session.get(Forest, forest_id)
    if not forest or (tenant_id is not None and forest.tenant_id != tenant_id):
        raise NotFoundError("Forest not found")
    return forest


def load_tree(session: Session, tree_id: str, tenant_id: Optional[str] = None) -> Tree:
    tree = session.get(Tree, tree_id)
    if not tree or (tenant_id is not None and tree.forest.tenant_id != tenant_id):
        raise NotFoundError("Tree not found")
    return tree


def load_person(session: Session, person_id: str, tenant_id: Optional[str] = None) -> Person:
    person = session.get(Person, person_id)
    if not person or (tenant_id is not None and person.tree.forest.tenant_id != tenant_id):
        raise NotFoundError("Person not found")
    return person
