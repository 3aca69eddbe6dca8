import io
import os
import tempfile
import unittest
from pathlib import Path

from PIL import Image

from famtree import create_app
from famtree.db import get_database
from famtree.media_utils import UploadPaths
from famtree.auth import Principal, create_access_token, hash_password
from famtree.models import Forest, Person, Relationship, Tenant, Tree, User
from famtree.person_images import PersonImageService


def image_bytes(color=(255, 0, 0), size=(200, 150), fmt="PNG") -> bytes:
    """Create a small test image in memory."""
    img = Image.new("RGB", size, color)
    buf = io.BytesIO()
    img.save(buf, fmt)
    return buf.getvalue()


class FamtreeTestCase(unittest.TestCase):
    """App on a temp database with a direct session for service-level tests."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmpdir.name, "test.sqlite")
        self.uploads_dir = os.path.join(self.tmpdir.name, "uploads")

        self.app = create_app({
            "TESTING": True,
            "DATABASE": self.db_path,
            "UPLOADS_DIR": self.uploads_dir,
            "JWT_SECRET": "test-secret",
        })
        self.client = self.app.test_client()
        self.uploads = UploadPaths(Path(self.uploads_dir))

        self.ctx = self.app.app_context()
        self.ctx.push()
        self.session = get_database().session_factory()

    def tearDown(self):
        self.session.close()
        get_database().engine.dispose()
        self.ctx.pop()
        self.tmpdir.cleanup()

    def make_forest(self, name="Smith Forest", tenant=None):
        if tenant is None:
            tenant = Tenant(name="Smith Family")
            self.session.add(tenant)
            self.session.flush()
        forest = Forest(tenant_id=tenant.id, name=name)
        self.session.add(forest)
        self.session.commit()
        return forest

    def make_tree(self, forest, name="Smith Tree"):
        tree = Tree(forest_id=forest.id, name=name)
        self.session.add(tree)
        self.session.commit()
        return tree

    def add_person(self, tree, first_name, **fields):
        person = Person(tree_id=tree.id, first_name=first_name, **fields)
        self.session.add(person)
        self.session.commit()
        return person

    def add_relationship(self, tree, person1, person2, rel_type="parent-child"):
        rel = Relationship(tree_id=tree.id, person1_id=person1.id, person2_id=person2.id, type=rel_type)
        self.session.add(rel)
        self.session.commit()
        return rel

    def add_image(self, person, color=(255, 0, 0)):
        service = PersonImageService(self.session, self.uploads)
        image, _ = service.upload(person.id, image_bytes(color))
        return image

    def auth_headers(self, tenant_id, role="Admin", email="owner@example.com"):
        """Insert a user and return bearer headers for it."""
        user = User(email=email, password_hash=hash_password("password123"), role=role, tenant_id=tenant_id)
        self.session.add(user)
        self.session.commit()
        token = create_access_token(Principal(id=user.id, email=email, role=role, tenant_id=tenant_id))
        return {"Authorization": f"Bearer {token}"}

    def stored_files(self, sub="originals"):
        return sorted(os.listdir(os.path.join(self.uploads_dir, sub)))

    def sample_tree(self):
        """Parents with one child; the father has a photo."""
        forest = self.make_forest()
        tree = self.make_tree(forest)
        john = self.add_person(tree, "John", last_name="Smith", gender="male", birth_date="1950")
        jane = self.add_person(tree, "Jane", last_name="Smith", maiden_name="Doe", gender="female")
        baby = self.add_person(tree, "Baby", last_name="Smith", position_x=120.5, position_y=-40.0)
        self.add_relationship(tree, john, jane, "spouse")
        self.add_relationship(tree, john, baby, "parent-child")
        self.add_relationship(tree, jane, baby, "parent-child")
        self.add_image(john)
        return forest, tree
