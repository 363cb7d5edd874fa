"""Tests for the server-rendered pages and the page-level session guard."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from dnc_checker.config import DatabaseSettings, Settings
from dnc_checker.service import create_app

from conftest import TEST_ROUNDS, TEST_SECRET, FakeDecisionService


class WebInterfaceTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tempdir = tempfile.TemporaryDirectory()
        settings = Settings(
            session_secret=TEST_SECRET,
            database=DatabaseSettings(backend="sqlite", path=Path(self._tempdir.name) / "dnc.sqlite3"),
            secure_cookies=False,
            bcrypt_rounds=TEST_ROUNDS,
        )
        self.app = create_app(settings, decision_service=FakeDecisionService(), configure_logs=False)
        self.client = TestClient(self.app)
        self.client.__enter__()
        registered = self.client.post(
            "/api/register",
            json={"username": "alice", "email": "alice@example.com", "password": "correct-horse"},
        )
        self.assertEqual(registered.status_code, 201, registered.text)

    def tearDown(self) -> None:
        self.client.__exit__(None, None, None)
        self._tempdir.cleanup()

    def _form_login(self, username: str, password: str):
        return self.client.post(
            "/login",
            data={"username": username, "password": password},
            follow_redirects=False,
        )

    def test_protected_pages_redirect_to_login(self) -> None:
        for path in ("/dnc-lookup", "/dnc-history"):
            response = self.client.get(path, follow_redirects=False)
            self.assertEqual(response.status_code, 303)
            self.assertEqual(response.headers["location"], "/login")

    def test_invalid_cookie_redirects_to_login(self) -> None:
        self.client.cookies.set("dnc_session", "forged-token")

        response = self.client.get("/dnc-lookup", follow_redirects=False)

        self.assertEqual(response.status_code, 303)
        self.assertEqual(response.headers["location"], "/login")

    def test_public_pages_render(self) -> None:
        for path in ("/", "/login", "/register", "/forgot-password"):
            response = self.client.get(path)
            self.assertEqual(response.status_code, 200, path)
            self.assertIn("text/html", response.headers["content-type"])

    def test_form_login_sets_cookie_and_redirects(self) -> None:
        response = self._form_login("alice", "correct-horse")

        self.assertEqual(response.status_code, 303)
        self.assertEqual(response.headers["location"], "/dnc-lookup")
        set_cookie = response.headers["set-cookie"]
        self.assertIn("dnc_session=", set_cookie)
        self.assertIn("HttpOnly", set_cookie)
        self.assertIn("Max-Age=28800", set_cookie)
        self.assertIn("samesite=lax", set_cookie.lower())

        page = self.client.get("/dnc-history")
        self.assertEqual(page.status_code, 200)
        self.assertIn("DNC history", page.text)

    def test_failed_form_login_is_generic(self) -> None:
        wrong = self._form_login("alice", "wrong-password")
        unknown = self._form_login("mallory", "wrong-password")

        self.assertEqual(wrong.status_code, 400)
        self.assertEqual(unknown.status_code, 400)
        self.assertIn("Invalid username or password", wrong.text)
        self.assertIn("Invalid username or password", unknown.text)
        self.assertNotIn("dnc_session", wrong.headers.get("set-cookie", ""))

    def test_login_page_redirects_signed_in_user(self) -> None:
        self._form_login("alice", "correct-horse")

        response = self.client.get("/login", follow_redirects=False)

        self.assertEqual(response.status_code, 303)
        self.assertEqual(response.headers["location"], "/dnc-lookup")

    def test_logout_clears_session(self) -> None:
        self._form_login("alice", "correct-horse")

        response = self.client.get("/logout", follow_redirects=False)
        self.assertEqual(response.status_code, 303)
        self.assertEqual(response.headers["location"], "/login")

        page = self.client.get("/dnc-lookup", follow_redirects=False)
        self.assertEqual(page.status_code, 303)

    def test_login_form_escapes_username(self) -> None:
        response = self._form_login("<script>alert(1)</script>", "wrong-password")

        self.assertNotIn("<script>alert(1)</script>", response.text)
        self.assertIn("&lt;script&gt;", response.text)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
