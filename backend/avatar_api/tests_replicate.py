from unittest import mock

from django.core.exceptions import ImproperlyConfigured
from django.test import SimpleTestCase

from .services.replicate_client import (
    GenerationAuthError,
    GenerationError,
    GenerationParams,
    GenerationRateLimitError,
    GenerationValidationError,
    ReplicateGenerator,
    enhance_prompt,
    validate_prompt,
)
from .tests_github_storage import FakeResponse

API_URL = "https://api.replicate.test/v1"
MODEL_REF = "acme/zara-lora:1234"


def make_generator(responses):
    session = mock.Mock()
    session.request.side_effect = list(responses)
    generator = ReplicateGenerator(
        api_token="r8_testtoken123456",
        model="black-forest-labs/flux-dev-lora",
        api_url=API_URL,
        max_wait=30,
        poll_interval=0,
        session=session,
    )
    return generator, session


class PromptTests(SimpleTestCase):

    def test_trigger_word_is_prepended(self):
        self.assertEqual(enhance_prompt("at the beach", "zara"), "zara at the beach")

    def test_trigger_word_already_present_any_case(self):
        self.assertEqual(enhance_prompt("ZARA at the beach", "zara"), "ZARA at the beach")
        self.assertEqual(enhance_prompt("portrait of Zara", "zara"), "portrait of Zara")

    def test_prompt_is_stripped(self):
        self.assertEqual(validate_prompt("  at the beach  "), "at the beach")

    def test_prompt_length_bounds(self):
        with self.assertRaises(GenerationValidationError):
            validate_prompt("ab")
        with self.assertRaises(GenerationValidationError):
            validate_prompt("x" * 1001)


class GenerationParamsTests(SimpleTestCase):

    def test_defaults_are_valid(self):
        params = GenerationParams().validate()
        data = params.to_input()
        self.assertNotIn("seed", data)
        self.assertEqual(data["num_outputs"], 1)
        self.assertEqual(data["output_format"], "webp")

    def test_out_of_range_values(self):
        cases = [
            ("lora_scale", 1.5),
            ("guidance_scale", 0.5),
            ("num_inference_steps", 51),
            ("num_outputs", 5),
            ("aspect_ratio", "5:1"),
            ("output_format", "bmp"),
        ]
        for field, value in cases:
            with self.subTest(field=field):
                with self.assertRaises(GenerationValidationError) as ctx:
                    GenerationParams(**{field: value}).validate()
                self.assertEqual(ctx.exception.field, field)

    def test_seed_is_forwarded(self):
        self.assertEqual(GenerationParams(seed=42).to_input()["seed"], 42)


class ReplicateGeneratorTests(SimpleTestCase):

    def test_requires_token(self):
        with self.assertRaises(ImproperlyConfigured):
            ReplicateGenerator(api_token="")

    def test_invalid_params_never_call_upstream(self):
        generator, session = make_generator([])
        with self.assertRaises(GenerationValidationError):
            generator.run("zara at the beach", MODEL_REF, GenerationParams(num_outputs=9))
        session.request.assert_not_called()

    def test_run_returns_output_urls(self):
        generator, session = make_generator([
            FakeResponse(201, {
                "id": "p1",
                "status": "succeeded",
                "output": ["https://replicate.delivery/a.webp", "https://replicate.delivery/b.webp"],
            }),
        ])
        urls = generator.run("zara at the beach", MODEL_REF, GenerationParams(num_outputs=2))

        self.assertEqual(urls, ["https://replicate.delivery/a.webp", "https://replicate.delivery/b.webp"])
        method, url = session.request.call_args.args
        self.assertEqual(method, "POST")
        self.assertEqual(url, f"{API_URL}/models/black-forest-labs/flux-dev-lora/predictions")
        payload = session.request.call_args.kwargs["json"]["input"]
        self.assertEqual(payload["prompt"], "zara at the beach")
        self.assertEqual(payload["lora_weights"], MODEL_REF)
        self.assertEqual(payload["num_outputs"], 2)

    def test_run_polls_until_finished(self):
        generator, session = make_generator([
            FakeResponse(201, {"id": "p1", "status": "processing", "urls": {"get": f"{API_URL}/predictions/p1"}}),
            FakeResponse(200, {"id": "p1", "status": "processing", "urls": {"get": f"{API_URL}/predictions/p1"}}),
            FakeResponse(200, {"id": "p1", "status": "succeeded", "output": "https://replicate.delivery/a.webp"}),
        ])
        with mock.patch("avatar_api.services.replicate_client.time.sleep"):
            urls = generator.run("zara at the beach", MODEL_REF, GenerationParams())

        self.assertEqual(urls, ["https://replicate.delivery/a.webp"])
        self.assertEqual(session.request.call_count, 3)

    def test_unauthorized_maps_to_auth_error(self):
        generator, _ = make_generator([FakeResponse(401, {"detail": "Invalid token."})])
        with self.assertRaises(GenerationAuthError):
            generator.run("zara at the beach", MODEL_REF, GenerationParams())

    def test_throttled_maps_to_rate_limit_error(self):
        generator, _ = make_generator([FakeResponse(429, {"detail": "Request was throttled."})])
        with self.assertRaises(GenerationRateLimitError):
            generator.run("zara at the beach", MODEL_REF, GenerationParams())

    def test_failed_prediction(self):
        generator, _ = make_generator([
            FakeResponse(201, {"id": "p1", "status": "failed", "error": "NSFW content detected"}),
        ])
        with self.assertRaises(GenerationError) as ctx:
            generator.run("zara at the beach", MODEL_REF, GenerationParams())
        self.assertIn("NSFW", str(ctx.exception))

    def test_empty_output_is_an_error(self):
        generator, _ = make_generator([FakeResponse(201, {"id": "p1", "status": "succeeded", "output": []})])
        with self.assertRaises(GenerationError):
            generator.run("zara at the beach", MODEL_REF, GenerationParams())

    def test_list_error_body_is_a_generation_error(self):
        generator, _ = make_generator([FakeResponse(500, [{"detail": "boom"}], text="[server error]")])
        with self.assertRaises(GenerationError) as ctx:
            generator.run("zara at the beach", MODEL_REF, GenerationParams())
        self.assertNotIsInstance(ctx.exception, GenerationAuthError)
        self.assertIn("[server error]", str(ctx.exception))
