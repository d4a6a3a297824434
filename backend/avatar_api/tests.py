from unittest import mock

from django.contrib.auth.models import User
from django.core.cache import cache
from django.db import IntegrityError
from django.test import TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from .authentication import issue_token
from .models import Avatar, Contact, GeneratedImage, UserProfile
from .services import review
from .services.github_storage import StorageError
from .services.replicate_client import GenerationAuthError, GenerationParams, GenerationRateLimitError
from .tests_github_storage import RAW_PREFIX, FakeGitHub, make_storage

OUTPUT_URLS = [
    "https://replicate.delivery/pbxt/out-0.webp",
    "https://replicate.delivery/pbxt/out-1.webp",
]


@override_settings(API_RATE_LIMIT="1000/min", IMAGE_RATE_LIMIT="1000/min")
class AuthenticatedAPITestCase(APITestCase):
    """Usuario con token Bearer y un avatar "Zara" propio."""

    def setUp(self):
        cache.clear()
        self.user = self.create_user("owner@example.com", "Owner")
        self.authenticate(self.user)
        contact = Contact.objects.create(user=self.user, name="Zara")
        self.avatar = Avatar.objects.create(
            contact=contact,
            full_name="Zara",
            replicate_model_url="acme/zara-lora:1234",
            trigger_word="zara",
        )

    @staticmethod
    def create_user(email, name="Test", password="Str0ng-pass!"):
        user = User.objects.create_user(username=email, email=email, password=password, first_name=name)
        UserProfile.objects.create(user=user)
        return user

    def authenticate(self, user):
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {issue_token(user)}")


class ImageReviewWorkflowTests(AuthenticatedAPITestCase):
    """Generación + revisión (like / dislike / download / delete) contra dobles de Replicate y GitHub"""

    def setUp(self):
        super().setUp()
        self.fake_github = FakeGitHub(downloads={url: b"img-" + url.encode() for url in OUTPUT_URLS})
        self.storage = make_storage(self.fake_github)
        self.generator = mock.Mock()
        self.generator.run.side_effect = lambda prompt, model_ref, params: OUTPUT_URLS[:params.num_outputs]

        patchers = [
            mock.patch("avatar_api.views_images.get_generator", return_value=self.generator),
            mock.patch("avatar_api.views_images.get_storage", side_effect=lambda: self.storage),
            mock.patch("avatar_api.services.github_storage.time.sleep"),
        ]
        for patcher in patchers:
            patcher.start()
            self.addCleanup(patcher.stop)

    def generate(self, **extra):
        body = {"prompt": "at the beach", "avatarId": self.avatar.id, "num_outputs": 2}
        body.update(extra)
        return self.client.post(reverse("images_generate"), body, format="json")

    def test_generate_stages_one_row_per_output(self):
        response = self.generate()

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.json()
        self.assertEqual(data["count"], 2)
        self.assertTrue(data["pendingReview"])
        self.assertEqual(data["prompt"], "zara at the beach")
        self.assertEqual(data["avatar"]["fullName"], "Zara")

        images = GeneratedImage.objects.filter(avatar=self.avatar)
        self.assertEqual(images.count(), 2)
        for image in images:
            self.assertTrue(image.is_pending_review)
            self.assertTrue(image.is_durable)
            self.assertTrue(image.image_url.startswith(RAW_PREFIX + "avatars/zara/"))
            self.assertEqual(image.prompt, "zara at the beach")
        self.assertEqual(len(self.fake_github.files), 2)

        # La trigger word se antepone y se envían los pesos del avatar
        prompt, model_ref, params = self.generator.run.call_args.args
        self.assertEqual(prompt, "zara at the beach")
        self.assertEqual(model_ref, "acme/zara-lora:1234")
        self.assertEqual(params.num_outputs, 2)

    def test_row_count_matches_num_outputs(self):
        for num_outputs in (1, 2):
            with self.subTest(num_outputs=num_outputs):
                GeneratedImage.objects.all().delete()

                response = self.generate(num_outputs=num_outputs)

                self.assertEqual(response.json()["count"], num_outputs)
                self.assertEqual(GeneratedImage.objects.filter(avatar=self.avatar).count(), num_outputs)

    def test_prompt_with_trigger_word_is_not_modified(self):
        self.generate(prompt="ZARA at the beach")
        prompt, _, _ = self.generator.run.call_args.args
        self.assertEqual(prompt, "ZARA at the beach")

    def test_zara_at_the_beach_scenario(self):
        """Escenario completo: 2 imágenes, dislike de la primera, like de la segunda, historial"""
        images = self.generate().json()["images"]
        first, second = images[0]["id"], images[1]["id"]
        first_path = self.storage.path_from_url(images[0]["imageUrl"])

        response = self.client.post(reverse("image_dislike", kwargs={"image_id": first}))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["message"], "Image rejected and deleted successfully")
        self.assertNotIn(first_path, self.fake_github.files)
        response = self.client.get(reverse("image_detail", kwargs={"image_id": first}))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        puts_before_like = len(self.fake_github.puts())
        response = self.client.post(reverse("image_like", kwargs={"image_id": second}))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.json()["image"]["isPendingReview"])
        # Like no vuelve a subir nada
        self.assertEqual(len(self.fake_github.puts()), puts_before_like)

        response = self.client.get(reverse("images_history"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        history = response.json()
        self.assertEqual([img["id"] for img in history["images"]], [second])
        self.assertEqual(history["pagination"], {"page": 1, "limit": 20, "total": 1, "pages": 1})

    def test_second_like_is_rejected(self):
        image_id = self.generate(num_outputs=1).json()["images"][0]["id"]
        url = reverse("image_like", kwargs={"image_id": image_id})

        self.assertEqual(self.client.post(url).status_code, status.HTTP_200_OK)
        response = self.client.post(url)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json()["error"], "not_pending_review")
        self.assertEqual(response.json()["message"], "Image is not pending review")

    def test_dislike_after_like_is_rejected(self):
        image_id = self.generate(num_outputs=1).json()["images"][0]["id"]
        self.client.post(reverse("image_like", kwargs={"image_id": image_id}))

        response = self.client.post(reverse("image_dislike", kwargs={"image_id": image_id}))

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertTrue(GeneratedImage.objects.filter(pk=image_id).exists())

    def test_download_publishes_and_returns_filename(self):
        image_id = self.generate(num_outputs=1).json()["images"][0]["id"]

        response = self.client.post(reverse("image_download", kwargs={"image_id": image_id}))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.json()
        self.assertEqual(data["filename"], f"Zara-{image_id}.webp")
        self.assertTrue(data["downloadUrl"].startswith(RAW_PREFIX))
        self.assertEqual(GeneratedImage.objects.get(pk=image_id).status, GeneratedImage.STATUS_PUBLISHED)

        again = self.client.post(reverse("image_download", kwargs={"image_id": image_id}))
        self.assertEqual(again.status_code, status.HTTP_400_BAD_REQUEST)

    def test_upload_failure_falls_back_to_ephemeral_url(self):
        self.fake_github.downloads = {}

        response = self.generate(num_outputs=1)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        image = GeneratedImage.objects.get(avatar=self.avatar)
        self.assertTrue(image.is_pending_review)
        self.assertFalse(image.is_durable)
        self.assertEqual(image.image_url, OUTPUT_URLS[0])

        # Like sobre la URL efímera: no sube nada y no falla
        response = self.client.post(reverse("image_like", kwargs={"image_id": image.id}))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["image"]["imageUrl"], OUTPUT_URLS[0])
        self.assertFalse(response.json()["image"]["isDurable"])
        self.assertEqual(self.fake_github.puts(), [])

    def test_generate_without_storage_configured(self):
        self.storage = None

        response = self.generate(num_outputs=1)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        image = GeneratedImage.objects.get(avatar=self.avatar)
        self.assertFalse(image.is_durable)

        # Rechazar una imagen no durable no necesita almacenamiento
        response = self.client.post(reverse("image_dislike", kwargs={"image_id": image.id}))
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_invalid_params_never_reach_replicate(self):
        response = self.generate(num_outputs=5)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json()["error"], "validation_error")
        self.assertIn("num_outputs", response.json()["details"])
        self.generator.run.assert_not_called()

    def test_short_prompt_is_rejected(self):
        response = self.generate(prompt="  a ")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.generator.run.assert_not_called()

    def test_hidden_avatar_cannot_generate(self):
        self.avatar.visible = False
        self.avatar.save()

        response = self.generate()

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.generator.run.assert_not_called()

    def test_other_users_avatar_is_not_found(self):
        other = self.create_user("other@example.com")
        foreign = Avatar.objects.create(
            contact=Contact.objects.create(user=other, name="Max"),
            full_name="Max",
            replicate_model_url="acme/max-lora:1",
            trigger_word="max",
        )

        response = self.generate(avatarId=foreign.id)

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_other_user_cannot_review_images(self):
        image_id = self.generate(num_outputs=1).json()["images"][0]["id"]
        self.authenticate(self.create_user("other@example.com"))

        response = self.client.post(reverse("image_like", kwargs={"image_id": image_id}))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertTrue(GeneratedImage.objects.get(pk=image_id).is_pending_review)

    def test_replicate_auth_error(self):
        self.generator.run.side_effect = GenerationAuthError("Invalid Replicate API token: bad")

        response = self.generate()

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.json()["error"], "invalid_replicate_token")

    def test_replicate_rate_limit(self):
        self.generator.run.side_effect = GenerationRateLimitError("slow down")

        response = self.generate()

        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(GeneratedImage.objects.count(), 0)

    def test_delete_removes_blob_row_and_checks_folder(self):
        image_id = self.generate(num_outputs=1).json()["images"][0]["id"]
        self.client.post(reverse("image_like", kwargs={"image_id": image_id}))

        with mock.patch.object(self.storage, "delete_folder_if_empty", wraps=self.storage.delete_folder_if_empty) as cleanup:
            response = self.client.delete(reverse("image_detail", kwargs={"image_id": image_id}))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(GeneratedImage.objects.filter(pk=image_id).exists())
        self.assertEqual(self.fake_github.files, {})
        cleanup.assert_called_once_with("Zara")

    def test_blob_delete_failure_keeps_the_row(self):
        image_id = self.generate(num_outputs=1).json()["images"][0]["id"]
        self.fake_github.fail_deletes = True

        response = self.client.post(reverse("image_dislike", kwargs={"image_id": image_id}))

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.json()["error"], "internal_error")
        self.assertEqual(response.json()["message"], "Internal server error")
        self.assertTrue(GeneratedImage.objects.filter(pk=image_id).exists())

    def test_history_pagination(self):
        for i in range(3):
            GeneratedImage.objects.create(
                avatar=self.avatar,
                prompt=f"zara {i}",
                image_url=f"{RAW_PREFIX}avatars/zara/{i}.webp",
                status=GeneratedImage.STATUS_PUBLISHED,
                is_durable=True,
            )
        GeneratedImage.objects.create(avatar=self.avatar, prompt="zara staged", image_url=OUTPUT_URLS[0])

        response = self.client.get(reverse("images_history"), {"page": 2, "limit": 2})

        data = response.json()
        self.assertEqual(len(data["images"]), 1)
        self.assertEqual(data["pagination"], {"page": 2, "limit": 2, "total": 3, "pages": 2})

    def test_requires_authentication(self):
        self.client.credentials()
        response = self.generate()
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.json()["error"], "not_authenticated")


class ImageRateLimitTests(AuthenticatedAPITestCase):

    @override_settings(IMAGE_RATE_LIMIT="2/min")
    def test_image_routes_are_throttled_per_ip(self):
        url = reverse("images_history")
        self.assertEqual(self.client.get(url).status_code, status.HTTP_200_OK)
        self.assertEqual(self.client.get(url).status_code, status.HTTP_200_OK)

        response = self.client.get(url)

        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(response.json()["error"], "rate_limit_exceeded")
        self.assertIn("retryAfter", response.json())

    @override_settings(IMAGE_RATE_LIMIT="2/min")
    def test_forwarded_for_cannot_be_rotated_to_skip_the_limit(self):
        # El proxy añade la IP real al final; lo que mande el cliente delante no cuenta
        url = reverse("images_history")
        statuses = [
            self.client.get(url, HTTP_X_FORWARDED_FOR=f"10.0.0.{i}, 203.0.113.7").status_code
            for i in range(4)
        ]

        self.assertEqual(statuses[:2], [status.HTTP_200_OK, status.HTTP_200_OK])
        self.assertEqual(statuses[2:], [status.HTTP_429_TOO_MANY_REQUESTS] * 2)

    @override_settings(IMAGE_RATE_LIMIT="1/min")
    def test_other_routes_use_the_global_limit(self):
        self.client.get(reverse("images_history"))
        response = self.client.get(reverse("avatars"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)


class ReviewServiceTests(TestCase):
    """Tests directos del flujo de revisión (sin HTTP)"""

    def setUp(self):
        self.avatar = Avatar.objects.create(
            full_name="Zara",
            replicate_model_url="acme/zara-lora:1234",
            trigger_word="zara",
        )
        self.fake_github = FakeGitHub(downloads={OUTPUT_URLS[0]: b"img"})
        self.storage = make_storage(self.fake_github)
        self.generator = mock.Mock()
        self.generator.run.return_value = OUTPUT_URLS[:1]

    def test_failed_insert_deletes_uploaded_blob(self):
        with mock.patch.object(GeneratedImage, "save", side_effect=IntegrityError("db down")):
            with self.assertRaises(IntegrityError):
                review.generate_images(
                    self.avatar, "at the beach", GenerationParams(),
                    generator=self.generator, storage=self.storage,
                )

        self.assertEqual(self.fake_github.files, {})
        self.assertEqual(GeneratedImage.objects.count(), 0)

    def test_reject_durable_image_without_storage_fails(self):
        _, (image,) = review.generate_images(
            self.avatar, "at the beach", GenerationParams(),
            generator=self.generator, storage=self.storage,
        )

        with self.assertRaises(StorageError):
            review.reject_image(image, storage=None)
        self.assertTrue(GeneratedImage.objects.filter(pk=image.pk).exists())

    def test_approve_keeps_url_and_durability(self):
        _, (image,) = review.generate_images(
            self.avatar, "at the beach", GenerationParams(),
            generator=self.generator, storage=self.storage,
        )
        url = image.image_url

        review.approve_image(image)
        image.refresh_from_db()

        self.assertEqual(image.status, GeneratedImage.STATUS_PUBLISHED)
        self.assertEqual(image.image_url, url)
        self.assertTrue(image.is_durable)
        with self.assertRaises(review.NotPendingReview):
            review.approve_image(image)

    def test_concurrent_approvals_only_one_wins(self):
        _, (image,) = review.generate_images(
            self.avatar, "at the beach", GenerationParams(),
            generator=self.generator, storage=self.storage,
        )
        # Dos requests que leyeron la fila cuando aún estaba en staging
        stale = GeneratedImage.objects.get(pk=image.pk)

        review.approve_image(image)

        with self.assertRaises(review.NotPendingReview):
            review.approve_image(stale)
        self.assertEqual(GeneratedImage.objects.get(pk=image.pk).status, GeneratedImage.STATUS_PUBLISHED)
