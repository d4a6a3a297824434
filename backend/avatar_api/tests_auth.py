import tempfile
from pathlib import Path

from django.contrib.auth.models import User
from django.core import signing
from django.core.cache import cache
from django.test import override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from .authentication import TOKEN_SALT, issue_token
from .models import GeneratedImage
from .tests import AuthenticatedAPITestCase


@override_settings(API_RATE_LIMIT="1000/min")
class AuthTests(APITestCase):

    def setUp(self):
        cache.clear()

    def register(self, **extra):
        body = {"email": "Zara@Example.com", "password": "Str0ng-pass!", "name": "Zara"}
        body.update(extra)
        return self.client.post(reverse("auth_register"), body, format="json")

    def test_register_returns_token_and_user(self):
        response = self.register()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        data = response.json()
        self.assertTrue(data["token"])
        self.assertEqual(data["user"]["email"], "zara@example.com")
        self.assertEqual(data["user"]["name"], "Zara")
        self.assertFalse(data["user"]["validated"])
        self.assertTrue(User.objects.get(username="zara@example.com").profile)

    def test_register_duplicate_email(self):
        self.register()
        response = self.register()
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json()["error"], "validation_error")

    def test_register_weak_password(self):
        response = self.register(password="123")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("password", response.json()["details"])

    def test_login_and_me(self):
        self.register()
        response = self.client.post(
            reverse("auth_login"),
            {"email": "zara@example.com", "password": "Str0ng-pass!"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.json()['token']}")
        me = self.client.get(reverse("auth_me"))

        self.assertEqual(me.status_code, status.HTTP_200_OK)
        self.assertEqual(me.json()["user"]["email"], "zara@example.com")

    def test_login_wrong_password(self):
        self.register()
        response = self.client.post(
            reverse("auth_login"),
            {"email": "zara@example.com", "password": "wrong-pass"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.json()["error"], "invalid_credentials")

    def test_invalid_token(self):
        self.client.credentials(HTTP_AUTHORIZATION="Bearer not-a-token")
        response = self.client.get(reverse("auth_me"))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.json()["error"], "authentication_failed")

    @override_settings(AUTH_TOKEN_MAX_AGE=-1)
    def test_expired_token(self):
        self.register()
        user = User.objects.get(username="zara@example.com")
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {issue_token(user)}")

        response = self.client.get(reverse("auth_me"))

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.json()["message"], "Token expired")

    def test_token_for_deleted_user(self):
        token = signing.dumps({"uid": 999999}, salt=TOKEN_SALT, compress=True)
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
        response = self.client.get(reverse("auth_me"))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_health_is_public(self):
        response = self.client.get(reverse("health_check"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["status"], "ok")
        self.assertIn("timestamp", response.json())


class ProfileTests(AuthenticatedAPITestCase):

    def test_update_name_and_hf_repo(self):
        response = self.client.put(
            reverse("auth_profile"),
            {"name": "Owner Two", "hfRepo": "owner/zara-lora"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["user"]["name"], "Owner Two")
        self.assertEqual(response.json()["user"]["hfRepo"], "owner/zara-lora")

    def test_invalid_hf_repo(self):
        response = self.client.put(reverse("auth_profile"), {"hfRepo": "not a repo"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_change_password_requires_current(self):
        response = self.client.put(
            reverse("auth_profile"),
            {"currentPassword": "wrong", "newPassword": "An0ther-pass!"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.put(
            reverse("auth_profile"),
            {"currentPassword": "Str0ng-pass!", "newPassword": "An0ther-pass!"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("An0ther-pass!"))

    def test_email_change_resets_validation(self):
        self.user.profile.validated = True
        self.user.profile.save()

        response = self.client.put(reverse("auth_profile"), {"email": "new@example.com"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.json()["user"]["validated"])


class UserStatsTests(AuthenticatedAPITestCase):

    def test_stats(self):
        for i in range(6):
            GeneratedImage.objects.create(
                avatar=self.avatar,
                prompt=f"zara {i}",
                image_url=f"https://raw.githubusercontent.com/acme/avatar-images/main/avatars/zara/{i}.webp",
                status=GeneratedImage.STATUS_PUBLISHED,
                is_durable=True,
            )
        GeneratedImage.objects.create(
            avatar=self.avatar, prompt="zara staged", image_url="https://replicate.delivery/x.webp",
        )

        response = self.client.get(reverse("users_stats"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.json()
        self.assertEqual(data["totalImages"], 6)
        self.assertEqual(data["totalAvatars"], 1)
        self.assertEqual(len(data["recentImages"]), 5)
        self.assertEqual(data["user"]["email"], "owner@example.com")


class FrontendTests(APITestCase):

    def test_missing_build_returns_404(self):
        with tempfile.TemporaryDirectory() as build_dir:
            with override_settings(FRONTEND_BUILD_DIR=Path(build_dir)):
                response = self.client.get("/avatars/zara")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_spa_routes_serve_index(self):
        with tempfile.TemporaryDirectory() as build_dir:
            (Path(build_dir) / "index.html").write_text("<div id=\"root\"></div>")
            with override_settings(FRONTEND_BUILD_DIR=Path(build_dir)):
                response = self.client.get("/gallery")
                body = b"".join(response.streaming_content)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn(b"root", body)
