from django.urls import reverse
from rest_framework import status

from .models import Avatar, Contact, GeneratedImage
from .tests import AuthenticatedAPITestCase


class AvatarTests(AuthenticatedAPITestCase):

    def payload(self, **extra):
        body = {
            "fullName": "Leo",
            "replicateModelUrl": "acme/leo-lora:abcd",
            "triggerWord": "leo",
            "description": "Retratos de Leo",
        }
        body.update(extra)
        return body

    def test_list_only_visible_accessible_avatars(self):
        Avatar.objects.create(
            full_name="Hidden", replicate_model_url="acme/hidden:1", trigger_word="hid", visible=False,
            contact=self.avatar.contact,
        )
        other = self.create_user("other@example.com")
        Avatar.objects.create(
            full_name="Max", replicate_model_url="acme/max:1", trigger_word="max",
            contact=Contact.objects.create(user=other, name="Max"),
        )
        shared = Avatar.objects.create(full_name="Shared", replicate_model_url="acme/shared:1", trigger_word="shr")

        response = self.client.get(reverse("avatars"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        names = {a["fullName"] for a in response.json()["avatars"]}
        self.assertEqual(names, {"Zara", shared.full_name})

    def test_create_avatar(self):
        response = self.client.post(reverse("avatars"), self.payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        avatar = response.json()["avatar"]
        self.assertEqual(avatar["fullName"], "Leo")
        self.assertEqual(avatar["replicateModelUrl"], "acme/leo-lora:abcd")
        self.assertTrue(avatar["visible"])
        self.assertIsNone(Avatar.objects.get(pk=avatar["id"]).contact)

    def test_create_duplicate_model_url(self):
        response = self.client.post(
            reverse("avatars"), self.payload(replicateModelUrl="acme/zara-lora:1234"), format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(
            response.json()["details"]["replicateModelUrl"],
            ["This Replicate model URL is already in use"],
        )

    def test_create_validation(self):
        response = self.client.post(reverse("avatars"), self.payload(fullName="L", triggerWord=""), format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        details = response.json()["details"]
        self.assertIn("fullName", details)
        self.assertIn("triggerWord", details)

    def test_detail_includes_hidden_avatar(self):
        self.avatar.visible = False
        self.avatar.save()

        response = self.client.get(reverse("avatar_detail", kwargs={"avatar_id": self.avatar.id}))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.json()["avatar"]["visible"])

    def test_update_avatar(self):
        response = self.client.put(
            reverse("avatar_detail", kwargs={"avatar_id": self.avatar.id}),
            {"triggerWord": "zq", "visible": False},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.avatar.refresh_from_db()
        self.assertEqual(self.avatar.trigger_word, "zq")
        self.assertFalse(self.avatar.visible)

    def test_update_keeps_own_model_url(self):
        response = self.client.put(
            reverse("avatar_detail", kwargs={"avatar_id": self.avatar.id}),
            {"replicateModelUrl": "acme/zara-lora:1234"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_delete_cascades_images(self):
        GeneratedImage.objects.create(avatar=self.avatar, prompt="zara", image_url="https://replicate.delivery/a.webp")

        response = self.client.delete(reverse("avatar_detail", kwargs={"avatar_id": self.avatar.id}))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(Avatar.objects.filter(pk=self.avatar.id).exists())
        self.assertEqual(GeneratedImage.objects.count(), 0)

    def test_other_users_avatar_is_not_found(self):
        self.authenticate(self.create_user("other@example.com"))

        response = self.client.get(reverse("avatar_detail", kwargs={"avatar_id": self.avatar.id}))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.json()["error"], "not_found")
