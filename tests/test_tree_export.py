import base64
import unittest
from urllib.parse import quote

from sqlalchemy import select

from famtree.errors import NotFoundError
from famtree.exporter import FAMTREE_VERSION, FamtreePackager, TreeSerializer
from famtree.media_utils import filename_from_url
from famtree.models import Person, Relationship
from support import FamtreeTestCase


class TestTreeSerializer(FamtreeTestCase):
    def test_export_without_images(self):
        _, tree = self.sample_tree()
        data = TreeSerializer(self.session, self.uploads).serialize(tree.id)

        self.assertEqual(data["tree"]["id"], tree.id)
        self.assertEqual(data["tree"]["name"], "Smith Tree")
        self.assertEqual(len(data["people"]), 3)
        self.assertEqual(len(data["relationships"]), 3)
        self.assertNotIn("images", data)

        john = next(p for p in data["people"] if p["first_name"] == "John")
        self.assertTrue(john["photo_url"].startswith("/uploads/thumbnails/"))

    def test_export_embeds_both_variants(self):
        _, tree = self.sample_tree()
        data = TreeSerializer(self.session, self.uploads).serialize(tree.id, include_images=True)

        john = next(p for p in data["people"] if p["first_name"] == "John")
        filename = filename_from_url(john["photo_url"])
        self.assertEqual(list(data["images"].keys()), [filename])
        entry = data["images"][filename]
        self.assertEqual(base64.b64decode(entry["original"]), self.uploads.original(filename).read_bytes())
        self.assertEqual(base64.b64decode(entry["thumbnail"]), self.uploads.thumbnail(filename).read_bytes())

    def test_missing_variant_is_skipped(self):
        _, tree = self.sample_tree()
        john = self.session.execute(select(Person).where(Person.first_name == "John")).scalar_one()
        self.uploads.thumbnail(filename_from_url(john.photo_url)).unlink()

        data = TreeSerializer(self.session, self.uploads).serialize(tree.id, include_images=True)
        self.assertNotIn("images", data)
        self.assertEqual(len(data["people"]), 3)

    def test_relationships_follow_person1_tree(self):
        forest, tree = self.sample_tree()
        other = self.make_tree(forest, "Other Tree")
        # Stored tree_id disagrees with person1's tree; person1 decides
        rel = self.session.execute(select(Relationship).where(Relationship.type == "spouse")).scalar_one()
        rel.tree_id = other.id
        self.session.commit()

        data = TreeSerializer(self.session, self.uploads).serialize(tree.id)
        self.assertIn(rel.id, [r["id"] for r in data["relationships"]])
        other_data = TreeSerializer(self.session, self.uploads).serialize(other.id)
        self.assertEqual(other_data["relationships"], [])

    def test_unknown_tree(self):
        with self.assertRaises(NotFoundError):
            TreeSerializer(self.session, self.uploads).serialize("missing")

    def test_tenant_scope(self):
        _, tree = self.sample_tree()
        with self.assertRaises(NotFoundError):
            TreeSerializer(self.session, self.uploads).serialize(tree.id, tenant_id="another-tenant")


class TestFamtreePackager(FamtreeTestCase):
    def test_package_shape(self):
        _, tree = self.sample_tree()
        package = FamtreePackager(self.session, self.uploads).package(tree.id)

        self.assertEqual(package["version"], FAMTREE_VERSION)
        self.assertTrue(package["exported_at"].endswith("Z"))
        self.assertEqual(package["tree"]["name"], "Smith Tree")
        self.assertEqual(len(package["people"]), 3)
        self.assertEqual(len(package["relationships"]), 3)
        self.assertEqual(len(package["images"]), 1)

        envelope = package["images"][0]
        john = self.session.execute(select(Person).where(Person.first_name == "John")).scalar_one()
        self.assertEqual(envelope["person_id"], john.id)
        self.assertTrue(envelope["is_primary"])
        self.assertEqual(
            base64.b64decode(envelope["data"]),
            self.uploads.original(envelope["filename"]).read_bytes(),
        )

    def test_package_skips_missing_files(self):
        _, tree = self.sample_tree()
        for name in self.stored_files("originals"):
            self.uploads.original(name).unlink()
        package = FamtreePackager(self.session, self.uploads).package(tree.id)
        self.assertEqual(package["images"], [])
        self.assertEqual(len(package["people"]), 3)

    def test_api_download_headers(self):
        forest, tree = self.sample_tree()
        headers = self.auth_headers(forest.tenant_id)
        r = self.client.get(f"/api/trees/{tree.id}/export-famtree", headers=headers)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.headers["Content-Disposition"], 'attachment; filename="Smith Tree.famtree"')
        self.assertEqual(r.get_json()["version"], FAMTREE_VERSION)

    def test_api_download_non_latin_name(self):
        forest = self.make_forest()
        tree = self.make_tree(forest, "李家族谱")
        self.add_person(tree, "明")
        headers = self.auth_headers(forest.tenant_id)

        r = self.client.get(f"/api/trees/{tree.id}/export-famtree", headers=headers)
        self.assertEqual(r.status_code, 200)
        disposition = r.headers["Content-Disposition"]
        disposition.encode("latin-1")
        self.assertTrue(disposition.startswith("attachment; filename="))
        self.assertIn(f"filename*=UTF-8''{quote('李家族谱.famtree')}", disposition)
        self.assertEqual(r.get_json()["tree"]["name"], "李家族谱")

    def test_api_download_name_without_line_breaks(self):
        forest = self.make_forest()
        tree = self.make_tree(forest, "Evil\r\nX-Injected: 1")
        headers = self.auth_headers(forest.tenant_id)

        r = self.client.get(f"/api/trees/{tree.id}/export-famtree", headers=headers)
        self.assertEqual(r.status_code, 200)
        self.assertNotIn("X-Injected", r.headers.keys())
        self.assertNotIn("\n", r.headers["Content-Disposition"])


if __name__ == "__main__":
    unittest.main()
