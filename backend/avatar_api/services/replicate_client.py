# avatar_api/services/replicate_client.py
"""
Cliente HTTP para la API de predicciones de Replicate.

Valida los parámetros localmente (nunca se envía upstream un valor fuera de
rango) y traduce los fallos de Replicate a excepciones tipadas:

- GenerationValidationError: parámetros inválidos (no hubo llamada HTTP)
- GenerationAuthError: token de Replicate inválido
- GenerationRateLimitError: Replicate nos está limitando
- GenerationError: cualquier otro fallo

No reintenta: el que llama decide.
"""
import time
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

import requests
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)

PROMPT_MIN_LENGTH = 3
PROMPT_MAX_LENGTH = 1000

ASPECT_RATIOS = ("1:1", "16:9", "9:16", "4:3", "3:4", "3:2", "2:3")
OUTPUT_FORMATS = ("webp", "jpg", "png")

# (mínimo, máximo) por parámetro numérico
PARAM_LIMITS = {
    "lora_scale": (0.0, 1.0),
    "guidance_scale": (1.0, 20.0),
    "num_inference_steps": (1, 50),
    "num_outputs": (1, 4),
}

TERMINAL_STATUSES = ("succeeded", "failed", "canceled")


class GenerationError(Exception):
    """Fallo genérico al generar imágenes con Replicate."""


class GenerationValidationError(GenerationError):
    """Parámetros fuera de rango; no se llamó a Replicate."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class GenerationAuthError(GenerationError):
    """Replicate rechazó el token."""


class GenerationRateLimitError(GenerationError):
    """Replicate devolvió throttling."""


@dataclass
class GenerationParams:
    lora_scale: float = 0.8
    num_outputs: int = 1
    aspect_ratio: str = "1:1"
    output_format: str = "webp"
    guidance_scale: float = 3.5
    num_inference_steps: int = 28
    seed: Optional[int] = None
    go_fast: bool = True

    def validate(self) -> "GenerationParams":
        for field, (low, high) in PARAM_LIMITS.items():
            value = getattr(self, field)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise GenerationValidationError(field, "must be a number")
            if value < low or value > high:
                raise GenerationValidationError(field, f"must be between {low} and {high}")
        for field in ("num_inference_steps", "num_outputs"):
            if not isinstance(getattr(self, field), int):
                raise GenerationValidationError(field, "must be an integer")
        if self.aspect_ratio not in ASPECT_RATIOS:
            raise GenerationValidationError("aspect_ratio", f"must be one of {', '.join(ASPECT_RATIOS)}")
        if self.output_format not in OUTPUT_FORMATS:
            raise GenerationValidationError("output_format", f"must be one of {', '.join(OUTPUT_FORMATS)}")
        if self.seed is not None and (isinstance(self.seed, bool) or not isinstance(self.seed, int)):
            raise GenerationValidationError("seed", "must be an integer")
        if not isinstance(self.go_fast, bool):
            raise GenerationValidationError("go_fast", "must be a boolean")
        return self

    def to_input(self) -> Dict[str, Any]:
        data = asdict(self)
        if data["seed"] is None:
            data.pop("seed")
        return data


def validate_prompt(prompt: str) -> str:
    prompt = (prompt or "").strip()
    if len(prompt) < PROMPT_MIN_LENGTH or len(prompt) > PROMPT_MAX_LENGTH:
        raise GenerationValidationError(
            "prompt",
            f"length must be between {PROMPT_MIN_LENGTH} and {PROMPT_MAX_LENGTH} characters",
        )
    return prompt


def enhance_prompt(prompt: str, trigger_word: str) -> str:
    """Antepone la trigger word si no aparece ya (sin distinguir mayúsculas)."""
    trigger = (trigger_word or "").strip()
    if not trigger or trigger.lower() in prompt.lower():
        return prompt
    return f"{trigger} {prompt}"


def _mask_token(token: str) -> str:
    if not token:
        return "<empty>"
    if len(token) <= 10:
        return token[:3] + "..."
    return f"{token[:6]}...{token[-4:]}"


class ReplicateGenerator:
    """Envía predicciones al modelo configurado y devuelve las URLs de salida."""

    def __init__(
        self,
        api_token: str,
        model: str = "black-forest-labs/flux-dev-lora",
        api_url: str = "https://api.replicate.com/v1",
        max_wait: int = 180,
        poll_interval: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        if not api_token:
            raise ImproperlyConfigured("REPLICATE_API_TOKEN is required for image generation")
        if "/" not in model:
            raise ImproperlyConfigured('Invalid REPLICATE_MODEL format. Expected: "owner/model"')
        self.api_token = api_token
        self.model = model
        self.api_url = api_url.rstrip("/")
        self.max_wait = max_wait
        self.poll_interval = poll_interval
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls) -> "ReplicateGenerator":
        return cls(
            api_token=settings.REPLICATE_API_TOKEN,
            model=settings.REPLICATE_MODEL,
            api_url=settings.REPLICATE_API_URL,
            max_wait=settings.REPLICATE_MAX_WAIT,
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
            "Prefer": "wait",
        }

    def _raise_for_response(self, response: requests.Response) -> None:
        if response.status_code < 400:
            return
        try:
            data = response.json()
        except ValueError:
            data = None
        detail = data.get("detail") if isinstance(data, dict) else None
        detail = str(detail or response.text or "")
        lowered = detail.lower()

        if response.status_code in (401, 403) or "invalid token" in lowered:
            logger.error("[Replicate] Token rechazado (%s): %s", _mask_token(self.api_token), detail)
            raise GenerationAuthError(f"Invalid Replicate API token: {detail}")
        if response.status_code == 429 or "rate limit" in lowered:
            logger.warning("[Replicate] Throttling upstream: %s", detail)
            raise GenerationRateLimitError(f"Replicate rate limit exceeded: {detail}")
        raise GenerationError(f"Replicate error {response.status_code}: {detail}")

    def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self.session.request(method, url, headers=self._headers(), timeout=60, **kwargs)
        except requests.RequestException as e:
            raise GenerationError(f"Replicate request failed: {e}") from e
        self._raise_for_response(response)
        try:
            return response.json()
        except ValueError as e:
            raise GenerationError("Replicate returned a non-JSON response") from e

    def _wait_for(self, prediction: Dict[str, Any]) -> Dict[str, Any]:
        deadline = time.monotonic() + self.max_wait
        while prediction.get("status") not in TERMINAL_STATUSES:
            if time.monotonic() >= deadline:
                raise GenerationError(
                    f"Prediction {prediction.get('id')} did not finish within {self.max_wait}s"
                )
            poll_url = (prediction.get("urls") or {}).get("get")
            if not poll_url:
                raise GenerationError("Prediction has no polling URL")
            time.sleep(self.poll_interval)
            prediction = self._request("GET", poll_url)
        return prediction

    def run(self, prompt: str, model_ref: str, params: GenerationParams) -> List[str]:
        """
        Genera imágenes para `prompt` usando los pesos LoRA `model_ref`.
        Devuelve la lista de URLs (efímeras) producidas por Replicate.
        """
        prompt = validate_prompt(prompt)
        params.validate()
        if not model_ref:
            raise GenerationValidationError("lora_weights", "model reference is required")

        payload = {"input": {"prompt": prompt, "lora_weights": model_ref, **params.to_input()}}
        url = f"{self.api_url}/models/{self.model}/predictions"

        t0 = time.perf_counter()
        logger.info(
            "[Replicate] Predicción %s (outputs=%s, steps=%s)",
            self.model, params.num_outputs, params.num_inference_steps,
        )
        prediction = self._wait_for(self._request("POST", url, json=payload))
        latency_ms = int((time.perf_counter() - t0) * 1000)

        status = prediction.get("status")
        if status != "succeeded":
            error = str(prediction.get("error") or status)
            if "rate limit" in error.lower():
                raise GenerationRateLimitError(error)
            raise GenerationError(f"Prediction {prediction.get('id')} {status}: {error}")

        output = prediction.get("output")
        urls = output if isinstance(output, list) else [output]
        urls = [u for u in urls if isinstance(u, str) and u]
        if not urls:
            raise GenerationError(f"Prediction {prediction.get('id')} returned no images")

        logger.info("[Replicate] %d imagen(es) generadas en %dms", len(urls), latency_ms)
        return urls
