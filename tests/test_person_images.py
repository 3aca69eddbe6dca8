import io
import unittest

from sqlalchemy import select

from famtree.errors import NotFoundError, ValidationError
from famtree.media_utils import filename_from_url
from famtree.models import Person, PersonImage
from famtree.person_images import PersonImageService
from support import FamtreeTestCase, image_bytes


class TestPersonImageService(FamtreeTestCase):
    def setUp(self):
        super().setUp()
        self.forest = self.make_forest()
        self.tree = self.make_tree(self.forest)
        self.person = self.add_person(self.tree, "Ada")
        self.service = PersonImageService(self.session, self.uploads)

    def _primaries(self):
        return list(
            self.session.execute(
                select(PersonImage).where(PersonImage.person_id == self.person.id, PersonImage.is_primary.is_(True))
            ).scalars()
        )

    def assertPrimaryInvariant(self):
        person = self.session.get(Person, self.person.id)
        primaries = self._primaries()
        if person.photo_url is None:
            self.assertEqual(primaries, [])
            return
        self.assertEqual(len(primaries), 1)
        self.assertEqual(filename_from_url(person.photo_url), filename_from_url(primaries[0].image_url))

    def test_first_upload_becomes_primary(self):
        first, _ = self.service.upload(self.person.id, image_bytes((255, 0, 0)))
        second, _ = self.service.upload(self.person.id, image_bytes((0, 255, 0)))

        self.assertTrue(first.is_primary)
        self.assertFalse(second.is_primary)
        self.assertPrimaryInvariant()
        self.assertEqual(len(self.stored_files()), 2)
        self.assertEqual(len(self.stored_files("thumbnails")), 2)

    def test_set_primary_moves_the_flag(self):
        self.service.upload(self.person.id, image_bytes((255, 0, 0)))
        second, _ = self.service.upload(self.person.id, image_bytes((0, 255, 0)))

        self.service.set_primary(self.person.id, second.id)
        self.assertPrimaryInvariant()
        self.assertEqual(self._primaries()[0].id, second.id)

    def test_deleting_primary_promotes_another(self):
        first, _ = self.service.upload(self.person.id, image_bytes((255, 0, 0)))
        second, _ = self.service.upload(self.person.id, image_bytes((0, 255, 0)))
        first_file = filename_from_url(first.image_url)

        self.service.delete(self.person.id, first.id)
        self.assertPrimaryInvariant()
        self.assertEqual(self._primaries()[0].id, second.id)
        self.assertNotIn(first_file, self.stored_files())

        self.service.delete(self.person.id, second.id)
        self.assertPrimaryInvariant()
        self.assertIsNone(self.session.get(Person, self.person.id).photo_url)
        self.assertEqual(self.stored_files(), [])

    def test_delete_all(self):
        self.service.upload(self.person.id, image_bytes((255, 0, 0)))
        self.service.upload(self.person.id, image_bytes((0, 255, 0)))
        self.service.delete_all(self.person.id)
        self.assertEqual(self.service.list(self.person.id), [])
        self.assertPrimaryInvariant()
        self.assertEqual(self.stored_files("thumbnails"), [])

    def test_list_puts_primary_first(self):
        self.service.upload(self.person.id, image_bytes((255, 0, 0)))
        second, _ = self.service.upload(self.person.id, image_bytes((0, 255, 0)))
        self.service.set_primary(self.person.id, second.id)
        images = self.service.list(self.person.id)
        self.assertEqual(images[0].id, second.id)

    def test_shared_files_survive_until_unreferenced(self):
        image, _ = self.service.upload(self.person.id, image_bytes())
        twin = self.add_person(self.tree, "Twin")
        self.session.add(PersonImage(person_id=twin.id, image_url=image.image_url, is_primary=True))
        self.session.commit()

        self.service.delete(self.person.id, image.id)
        self.assertIn(filename_from_url(image.image_url), self.stored_files())

    def test_rejects_non_images(self):
        with self.assertRaises(ValidationError):
            self.service.upload(self.person.id, b"plain text")
        self.assertEqual(self.stored_files(), [])
        self.assertEqual(self.service.list(self.person.id), [])

    def test_unknown_image(self):
        other = self.add_person(self.tree, "Other")
        image, _ = self.service.upload(other.id, image_bytes())
        with self.assertRaises(NotFoundError):
            self.service.set_primary(self.person.id, image.id)


class TestPhotoApi(FamtreeTestCase):
    def setUp(self):
        super().setUp()
        forest = self.make_forest()
        self.person = self.add_person(self.make_tree(forest), "Ada")
        self.headers = self.auth_headers(forest.tenant_id)

    def _post_photo(self, color=(255, 0, 0)):
        return self.client.post(
            f"/api/people/{self.person.id}/photo",
            data={"photo": (io.BytesIO(image_bytes(color)), "ada.png", "image/png")},
            content_type="multipart/form-data",
            headers=self.headers,
        )

    def test_upload_list_and_serve(self):
        r = self._post_photo()
        self.assertEqual(r.status_code, 200)
        body = r.get_json()
        self.assertTrue(body["is_primary"])
        self.assertTrue(body["photo_url"].startswith("/uploads/thumbnails/"))

        r = self.client.get(f"/api/people/{self.person.id}/images", headers=self.headers)
        self.assertEqual(len(r.get_json()["images"]), 1)

        r = self.client.get("/api" + body["original_url"])
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.mimetype, "image/jpeg")
        r.close()

    def test_set_primary_and_delete(self):
        self._post_photo((255, 0, 0))
        second = self._post_photo((0, 0, 255)).get_json()

        r = self.client.put(f"/api/people/{self.person.id}/images/{second['image_id']}/primary", headers=self.headers)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(filename_from_url(r.get_json()["photo_url"]), filename_from_url(second["original_url"]))

        r = self.client.delete(f"/api/people/{self.person.id}/photo", headers=self.headers)
        self.assertEqual(r.status_code, 200)
        self.assertIsNone(self.session.get(Person, self.person.id).photo_url)

    def test_missing_photo(self):
        r = self.client.post(
            f"/api/people/{self.person.id}/photo",
            data={},
            content_type="multipart/form-data",
            headers=self.headers,
        )
        self.assertEqual(r.status_code, 400)

    def test_non_image_mimetype(self):
        r = self.client.post(
            f"/api/people/{self.person.id}/photo",
            data={"photo": (io.BytesIO(b"hello"), "notes.txt", "text/plain")},
            content_type="multipart/form-data",
            headers=self.headers,
        )
        self.assertEqual(r.status_code, 400)


if __name__ == "__main__":
    unittest.main()
