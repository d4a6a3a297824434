# avatar_api/lifecycle.py
"""
Estados de revisión de una GeneratedImage.

Una imagen está en uno de estos estados:

- ``Staged(url, durable)``: pendiente de revisión. ``durable`` es True si la
  URL ya apunta al repositorio de GitHub, False si es la URL efímera de
  Replicate (la subida inmediata falló).
- ``Published(url, durable)``: aprobada, conserva la URL y la durabilidad.
- Descartada: la fila no existe.

Las transiciones fuera de ``Staged`` son terminales.
"""
from dataclasses import dataclass
from typing import Union

from .models import GeneratedImage


class NotPendingReview(Exception):
    """La imagen ya no está pendiente de revisión."""

    code = "not_pending_review"

    def __init__(self, message: str = "Image is not pending review"):
        super().__init__(message)
        self.message = message


@dataclass(frozen=True)
class Staged:
    url: str
    durable: bool


@dataclass(frozen=True)
class Published:
    url: str
    durable: bool


ImageState = Union[Staged, Published]


def state_of(image) -> ImageState:
    """Reconstruye el estado a partir de una fila de GeneratedImage."""
    if image.status == GeneratedImage.STATUS_STAGED:
        return Staged(url=image.image_url, durable=image.is_durable)
    if image.status == GeneratedImage.STATUS_PUBLISHED:
        return Published(url=image.image_url, durable=image.is_durable)
    raise ValueError(f"Estado desconocido para la imagen {image.pk}: {image.status!r}")


def approve(state: ImageState) -> Published:
    """Staged -> Published. Cualquier otro origen es ilegal."""
    if not isinstance(state, Staged):
        raise NotPendingReview()
    return Published(url=state.url, durable=state.durable)


def ensure_staged(state: ImageState) -> Staged:
    if not isinstance(state, Staged):
        raise NotPendingReview()
    return state


def apply(image, state: ImageState) -> None:
    """Vuelca un estado sobre la fila (sin guardar)."""
    image.image_url = state.url
    image.is_durable = state.durable
    if isinstance(state, Staged):
        image.status = GeneratedImage.STATUS_STAGED
    else:
        image.status = GeneratedImage.STATUS_PUBLISHED
