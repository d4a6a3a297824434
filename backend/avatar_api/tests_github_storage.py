import base64
import hashlib
from datetime import datetime, timezone
from unittest import mock
from urllib.parse import unquote

import requests

from django.core.exceptions import ImproperlyConfigured
from django.test import SimpleTestCase

from .services.github_storage import (
    MAX_UPLOAD_ATTEMPTS,
    GitHubImageStorage,
    StorageConflictError,
    StorageError,
    prompt_hash,
    safe_avatar_name,
)

API_URL = "https://api.github.test"
REPO = "acme/avatar-images"
CONTENTS_PREFIX = f"{API_URL}/repos/{REPO}/contents/"
RAW_PREFIX = f"https://raw.githubusercontent.com/{REPO}/main/"


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, content=b"", headers=None, text=""):
        self.status_code = status_code
        self._json = json_data
        self.content = content
        self.headers = headers or {}
        self.text = text

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeGitHub:
    """
    Doble en memoria de la contents API de GitHub + descargas de Replicate.

    `files` guarda path -> (sha, bytes). `stale_sha_puts` hace que las
    siguientes N escrituras respondan con conflicto de SHA.
    """

    def __init__(self, downloads=None):
        self.files = {}
        self.downloads = downloads or {}
        self.stale_sha_puts = 0
        self.fail_puts = False
        self.fail_deletes = False
        # Se ejecuta una vez justo antes del siguiente PUT (otro escritor que se adelanta)
        self.before_put = None
        self.calls = []

    @staticmethod
    def _sha(content):
        return hashlib.sha1(content).hexdigest()

    def get(self, url, timeout=None):
        self.calls.append(("DOWNLOAD", url, None))
        if url not in self.downloads:
            return FakeResponse(404)
        return FakeResponse(200, content=self.downloads[url], headers={"Content-Type": "image/webp"})

    def request(self, method, url, headers=None, timeout=None, params=None, json=None):
        self.calls.append((method, url, json))
        if url == f"{API_URL}/repos/{REPO}":
            return FakeResponse(200, {"full_name": REPO, "private": False})
        path = unquote(url[len(CONTENTS_PREFIX):])

        if method == "GET":
            if path in self.files:
                sha, content = self.files[path]
                return FakeResponse(200, {"path": path, "sha": sha, "size": len(content)})
            children = [
                {"name": p[len(path) + 1:], "path": p, "type": "file"}
                for p in self.files if p.startswith(path + "/")
            ]
            if children:
                return FakeResponse(200, children)
            return FakeResponse(404, {"message": "Not Found"})

        if method == "PUT":
            if self.before_put:
                hook, self.before_put = self.before_put, None
                hook()
            if self.fail_puts:
                return FakeResponse(500, {"message": "Server Error"})
            if self.stale_sha_puts:
                self.stale_sha_puts -= 1
                return FakeResponse(409, {"message": f"{path} does not match abc123"})
            current = self.files.get(path)
            if current and not json.get("sha"):
                return FakeResponse(422, {"message": "Invalid request.\n\n\"sha\" wasn't supplied."})
            if current and json.get("sha") != current[0]:
                return FakeResponse(409, {"message": f"{path} does not match {json.get('sha')}"})
            content = base64.b64decode(json["content"])
            sha = self._sha(content)
            self.files[path] = (sha, content)
            return FakeResponse(201, {"content": {"path": path, "sha": sha}})

        if method == "DELETE":
            if self.fail_deletes:
                return FakeResponse(500, {"message": "Server Error"})
            current = self.files.get(path)
            if not current:
                return FakeResponse(404, {"message": "Not Found"})
            if json.get("sha") != current[0]:
                return FakeResponse(409, {"message": f"{path} does not match {json.get('sha')}"})
            del self.files[path]
            return FakeResponse(200, {"commit": {}})

        return FakeResponse(405, {"message": "Method not allowed"})

    def puts(self):
        return [c for c in self.calls if c[0] == "PUT"]


def make_storage(fake):
    return GitHubImageStorage(repo=REPO, token="ghp_test", branch="main", api_url=API_URL, session=fake)


class GitHubStorageConfigTests(SimpleTestCase):

    def test_invalid_repo_format(self):
        with self.assertRaises(ImproperlyConfigured):
            GitHubImageStorage(repo="no-slash", token="x")

    def test_missing_token(self):
        with self.assertRaises(ImproperlyConfigured):
            GitHubImageStorage(repo=REPO, token="")

    def test_public_url_and_path_roundtrip(self):
        storage = make_storage(FakeGitHub())
        url = storage.public_url_for("avatars/zara/a.webp")
        self.assertEqual(url, RAW_PREFIX + "avatars/zara/a.webp")
        self.assertTrue(storage.is_durable_url(url))
        self.assertEqual(storage.path_from_url(url), "avatars/zara/a.webp")

    def test_path_from_foreign_url_raises(self):
        storage = make_storage(FakeGitHub())
        self.assertFalse(storage.is_durable_url("https://replicate.delivery/x.webp"))
        with self.assertRaises(StorageError):
            storage.path_from_url("https://replicate.delivery/x.webp")

    def test_build_path_layout(self):
        storage = make_storage(FakeGitHub())
        path = storage.build_path("zara at the beach", "Zara Q.", "png")
        folder, filename = path.rsplit("/", 1)
        self.assertEqual(folder, "avatars/zara-q-")
        self.assertTrue(filename.endswith(".png"))
        parts = filename[:-len(".png")].split("_")
        self.assertEqual(parts[1], safe_avatar_name("Zara Q."))
        self.assertEqual(parts[2], prompt_hash("zara at the beach"))
        self.assertEqual(len(parts[3]), 6)

    def test_two_filenames_never_collide(self):
        storage = make_storage(FakeGitHub())
        self.assertNotEqual(
            storage.build_filename("same prompt", "zara"),
            storage.build_filename("same prompt", "zara"),
        )


class GitHubStorageOperationsTests(SimpleTestCase):

    def setUp(self):
        self.source = "https://replicate.delivery/out-0.webp"
        self.fake = FakeGitHub(downloads={self.source: b"fake-image-bytes"})
        self.storage = make_storage(self.fake)
        sleep_patcher = mock.patch("avatar_api.services.github_storage.time.sleep")
        self.sleep = sleep_patcher.start()
        self.addCleanup(sleep_patcher.stop)

    def test_upload_then_delete_then_missing(self):
        url = self.storage.upload(self.source, "zara at the beach", "zara")

        self.assertTrue(url.startswith(RAW_PREFIX + "avatars/zara/"))
        self.assertTrue(url.endswith(".webp"))
        path = self.storage.path_from_url(url)
        self.assertEqual(self.fake.files[path][1], b"fake-image-bytes")
        self.assertIsNotNone(self.storage.get_file_info(path))

        self.storage.delete(url)
        self.assertIsNone(self.storage.get_file_info(path))

    def test_delete_missing_file_is_success(self):
        self.storage.delete(RAW_PREFIX + "avatars/zara/gone.webp")
        self.assertEqual([c for c in self.fake.calls if c[0] == "DELETE"], [])

    def test_delete_error_propagates(self):
        url = self.storage.upload(self.source, "zara at the beach", "zara")
        self.fake.fail_deletes = True
        with self.assertRaises(StorageError):
            self.storage.delete(url)

    def test_download_failure_raises(self):
        with self.assertRaises(StorageError):
            self.storage.upload("https://replicate.delivery/missing.webp", "prompt", "zara")
        self.assertEqual(self.fake.puts(), [])

    def test_sha_conflict_is_retried_with_fresh_sha(self):
        path = "avatars/zara/existing.webp"
        self.fake.files[path] = (FakeGitHub._sha(b"old"), b"old")
        self.fake.stale_sha_puts = 1

        self.storage.put_file(path, b"new", message="update")

        self.assertEqual(self.fake.files[path][1], b"new")
        puts = self.fake.puts()
        self.assertEqual(len(puts), 2)
        # Nunca se escribe un fichero existente sin su SHA
        for _, _, body in puts:
            self.assertEqual(body["sha"], FakeGitHub._sha(b"old"))
        self.sleep.assert_called_once_with(1.0)

    def test_sha_conflict_exhausts_retry_budget(self):
        path = "avatars/zara/existing.webp"
        self.fake.files[path] = (FakeGitHub._sha(b"old"), b"old")
        self.fake.stale_sha_puts = MAX_UPLOAD_ATTEMPTS

        with self.assertRaises(StorageConflictError):
            self.storage.put_file(path, b"new", message="update")

        self.assertEqual(len(self.fake.puts()), MAX_UPLOAD_ATTEMPTS)
        self.assertEqual(self.fake.files[path][1], b"old")
        self.assertEqual(self.sleep.call_args_list, [mock.call(1.0), mock.call(2.0)])

    def test_non_conflict_error_is_not_retried(self):
        self.fake.fail_puts = True
        with self.assertRaises(StorageError) as ctx:
            self.storage.put_file("avatars/zara/new.webp", b"x", message="add")
        self.assertNotIsInstance(ctx.exception, StorageConflictError)
        self.assertEqual(len(self.fake.puts()), 1)
        self.sleep.assert_not_called()

    def test_new_file_is_written_without_sha(self):
        self.storage.put_file("avatars/zara/new.webp", b"x", message="add")
        (_, _, body), = self.fake.puts()
        self.assertNotIn("sha", body)

    def test_delete_folder_if_empty(self):
        url = self.storage.upload(self.source, "zara at the beach", "zara")
        self.assertFalse(self.storage.delete_folder_if_empty("zara"))
        self.storage.delete(url)
        self.assertTrue(self.storage.delete_folder_if_empty("zara"))

    def test_delete_folder_if_empty_never_raises(self):
        with mock.patch.object(self.storage, "list_folder", side_effect=StorageError("boom")):
            self.assertFalse(self.storage.delete_folder_if_empty("zara"))

    def test_test_connection(self):
        self.assertEqual(self.storage.test_connection()["full_name"], REPO)


class CollidingUploadTests(SimpleTestCase):
    """Dos subidas que derivan la misma ruta (mismo instante y mismo sufijo aleatorio)"""

    def setUp(self):
        self.source = "https://replicate.delivery/out-0.webp"
        self.rival_source = "https://replicate.delivery/out-1.webp"
        self.fake = FakeGitHub(downloads={self.source: b"writer-a", self.rival_source: b"writer-b"})
        self.storage = make_storage(self.fake)

        patchers = [
            mock.patch("avatar_api.services.github_storage.time.sleep"),
            mock.patch("avatar_api.services.github_storage.secrets.token_hex", return_value="abc123"),
            mock.patch("avatar_api.services.github_storage.datetime"),
        ]
        self.sleep, _, fake_datetime = [p.start() for p in patchers]
        for patcher in patchers:
            self.addCleanup(patcher.stop)
        fake_datetime.now.return_value = datetime(2026, 10, 16, 12, 0, 0, tzinfo=timezone.utc)

    def test_second_writer_rereads_sha_after_missing_sha_rejection(self):
        rival = make_storage(self.fake)
        self.fake.before_put = lambda: rival.upload(self.rival_source, "zara at the beach", "zara")

        url = self.storage.upload(self.source, "zara at the beach", "zara")

        path = self.storage.path_from_url(url)
        self.assertEqual(self.fake.files[path][1], b"writer-a")
        bodies = [body for _, _, body in self.fake.puts()]
        self.assertEqual(len(bodies), 3)
        # Primer intento: el fichero no existía al leerlo
        self.assertNotIn("sha", bodies[0])
        # El rival escribe primero
        self.assertNotIn("sha", bodies[1])
        # GitHub responde 422 "sha wasn't supplied": se relee y se envía el SHA del rival
        self.assertEqual(bodies[2]["sha"], FakeGitHub._sha(b"writer-b"))
        self.sleep.assert_called_once_with(1.0)

    def test_persistent_collision_exhausts_retry_budget(self):
        path = self.storage.build_path("zara at the beach", "zara", "webp")
        writes = iter(range(100))

        def rival():
            content = f"rival-{next(writes)}".encode()
            self.fake.files[path] = (FakeGitHub._sha(content), content)
            self.fake.before_put = rival

        self.fake.before_put = rival

        with self.assertRaises(StorageConflictError):
            self.storage.upload(self.source, "zara at the beach", "zara")

        puts = self.fake.puts()
        self.assertEqual(len(puts), MAX_UPLOAD_ATTEMPTS)
        # A partir del segundo intento siempre se envía el SHA leído
        for _, _, body in puts[1:]:
            self.assertIn("sha", body)
        self.assertNotEqual(self.fake.files[path][1], b"writer-a")


class ErrorBodyTests(SimpleTestCase):

    def test_list_error_body_is_reported_as_storage_error(self):
        fake = FakeGitHub()
        fake.request = mock.Mock(return_value=FakeResponse(500, [{"message": "boom"}], text="[...]"))
        storage = make_storage(fake)

        with self.assertRaises(StorageError) as ctx:
            storage.get_file_info("avatars/zara/a.webp")
        self.assertIn("[...]", str(ctx.exception))
