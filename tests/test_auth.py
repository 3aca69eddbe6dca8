import unittest

from famtree.auth import ROLE_ORDER, has_role, hash_password, verify_password
from support import FamtreeTestCase


class TestRoles(unittest.TestCase):
    def test_role_order(self):
        self.assertEqual(ROLE_ORDER, ["Visitor", "Arborist", "Ranger", "Warden", "Admin"])

    def test_has_role(self):
        self.assertTrue(has_role("Admin", "Visitor"))
        self.assertTrue(has_role("Ranger", "Ranger"))
        self.assertTrue(has_role("Warden", "Arborist"))
        self.assertFalse(has_role("Arborist", "Ranger"))
        self.assertFalse(has_role("Visitor", "Arborist"))
        self.assertFalse(has_role("Superuser", "Visitor"))

    def test_password_hashing(self):
        hashed = hash_password("correct horse")
        self.assertNotEqual(hashed, "correct horse")
        self.assertTrue(verify_password("correct horse", hashed))
        self.assertFalse(verify_password("wrong horse", hashed))


class TestAuthApi(FamtreeTestCase):
    def _register(self, email, password="password123", **extra):
        return self.client.post("/api/auth/register", json={"email": email, "password": password, **extra})

    def test_first_user_becomes_admin_of_new_tenant(self):
        r = self._register("founder@example.com", tenantName="The Smiths")
        self.assertEqual(r.status_code, 200)
        body = r.get_json()
        self.assertEqual(body["role"], "Admin")
        self.assertIsNotNone(body["tenantId"])
        self.assertTrue(body["token"])

        r = self._register("guest@example.com")
        body = r.get_json()
        self.assertEqual(body["role"], "Visitor")
        self.assertIsNone(body["tenantId"])

    def test_duplicate_email(self):
        self._register("dup@example.com")
        r = self._register("dup@example.com")
        self.assertEqual(r.status_code, 409)

    def test_invalid_payload(self):
        r = self._register("not-an-email")
        self.assertEqual(r.status_code, 400)
        r = self._register("short@example.com", password="123")
        self.assertEqual(r.status_code, 400)

    def test_login_and_me(self):
        self._register("me@example.com")
        r = self.client.post("/api/auth/login", json={"email": "me@example.com", "password": "password123"})
        self.assertEqual(r.status_code, 200)
        token = r.get_json()["token"]

        r = self.client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.get_json()["user"]["email"], "me@example.com")
        self.assertEqual(r.get_json()["user"]["role"], "Admin")

    def test_bad_credentials(self):
        self._register("me@example.com")
        r = self.client.post("/api/auth/login", json={"email": "me@example.com", "password": "password999"})
        self.assertEqual(r.status_code, 401)
        r = self.client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "password123"})
        self.assertEqual(r.status_code, 401)

    def test_missing_or_invalid_token(self):
        r = self.client.get("/api/me")
        self.assertEqual(r.status_code, 401)
        self.assertEqual(r.get_json()["error"], "Missing authorization header")
        r = self.client.get("/api/me", headers={"Authorization": "Bearer garbage"})
        self.assertEqual(r.status_code, 401)

    def test_visitor_cannot_create_forest(self):
        forest = self.make_forest()
        headers = self.auth_headers(forest.tenant_id, role="Visitor")
        r = self.client.post("/api/forests", json={"name": "Nope"}, headers=headers)
        self.assertEqual(r.status_code, 403)


if __name__ == "__main__":
    unittest.main()
