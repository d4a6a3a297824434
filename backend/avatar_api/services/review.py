# avatar_api/services/review.py
"""
Flujo de revisión de imágenes generadas.

generate  -> Staged (durable si la subida a GitHub funcionó, efímera si no)
like      -> Published (sin volver a subir)
download  -> Published + nombre de fichero / URL para el cliente
dislike   -> borra el blob (si es durable) y la fila
delete    -> igual que dislike pero para cualquier estado, con limpieza de carpeta
"""
import logging
import os
from typing import List, Optional, Tuple
from urllib.parse import urlparse

from django.db import transaction

from .. import lifecycle
from ..lifecycle import NotPendingReview, Staged  # noqa: F401 - re-export para las vistas
from ..models import Avatar, GeneratedImage
from .github_storage import GitHubImageStorage, StorageError
from .replicate_client import GenerationParams, ReplicateGenerator, enhance_prompt, validate_prompt

logger = logging.getLogger(__name__)


def _record_staged(avatar: Avatar, prompt: str, state: Staged, storage: Optional[GitHubImageStorage]) -> GeneratedImage:
    image = GeneratedImage(avatar=avatar, prompt=prompt)
    lifecycle.apply(image, state)
    try:
        with transaction.atomic():
            image.save()
    except Exception:
        # Sin fila no hay forma de encontrar el blob: se compensa borrándolo
        if state.durable and storage is not None:
            try:
                storage.delete(state.url)
                logger.warning("[Review] Blob %s borrado tras fallo al registrar la imagen", state.url)
            except StorageError as cleanup_error:
                logger.error("[Review] Blob huérfano %s: %s", state.url, cleanup_error)
        raise
    return image


def _stage_output(
    avatar: Avatar,
    prompt: str,
    output_url: str,
    storage: Optional[GitHubImageStorage],
) -> GeneratedImage:
    state = Staged(url=output_url, durable=False)
    if storage is None:
        logger.warning("[Review] Sin almacenamiento configurado, se guarda la URL temporal de Replicate")
    else:
        try:
            durable_url = storage.upload(output_url, prompt, avatar.full_name)
            state = Staged(url=durable_url, durable=True)
        except Exception as e:  # noqa: BLE001 - degradar en vez de perder la generación
            logger.error("[Review] Falló la subida inmediata a GitHub, se usa URL temporal: %s", e)

    return _record_staged(avatar, prompt, state, storage)


def generate_images(
    avatar: Avatar,
    prompt: str,
    params: GenerationParams,
    *,
    generator: ReplicateGenerator,
    storage: Optional[GitHubImageStorage],
) -> Tuple[str, List[GeneratedImage]]:
    """
    Genera `params.num_outputs` imágenes y las deja en staging.
    Devuelve (prompt_enviado, imágenes).
    """
    prompt = validate_prompt(prompt)
    params.validate()
    enhanced = enhance_prompt(prompt, avatar.trigger_word)

    logger.info(
        "[Review] Generando para avatar %s (%s) con trigger '%s'",
        avatar.pk, avatar.full_name, avatar.trigger_word,
    )
    output_urls = generator.run(enhanced, avatar.replicate_model_url, params)

    images = [_stage_output(avatar, enhanced, url, storage) for url in output_urls]
    logger.info("[Review] %d imagen(es) en staging para avatar %s", len(images), avatar.pk)
    return enhanced, images


def approve_image(image: GeneratedImage) -> GeneratedImage:
    """Like: Staged -> Published. La imagen ya está subida (o es el fallback efímero)."""
    published = lifecycle.approve(lifecycle.state_of(image))
    # Update condicionado al estado: de dos likes simultáneos solo gana uno
    updated = GeneratedImage.objects.filter(
        pk=image.pk,
        status=GeneratedImage.STATUS_STAGED,
    ).update(
        image_url=published.url,
        status=GeneratedImage.STATUS_PUBLISHED,
        is_durable=published.durable,
    )
    if not updated:
        raise NotPendingReview()
    lifecycle.apply(image, published)
    if not published.durable:
        logger.warning("[Review] Imagen %s publicada con URL no durable: %s", image.pk, published.url)
    logger.info("[Review] Imagen %s aprobada", image.pk)
    return image


def download_image(image: GeneratedImage) -> Tuple[str, str]:
    """Download: misma transición que like; devuelve (filename, url)."""
    approve_image(image)
    ext = os.path.splitext(urlparse(image.image_url).path)[1].lstrip(".").lower() or "jpg"
    filename = f"{image.avatar.full_name}-{image.pk}.{ext}"
    return filename, image.image_url


def _delete_blob(state, storage: Optional[GitHubImageStorage]) -> None:
    if not state.durable:
        return
    if storage is None:
        raise StorageError("GitHub storage is not configured; cannot delete stored image")
    storage.delete(state.url)


def reject_image(image: GeneratedImage, *, storage: Optional[GitHubImageStorage]) -> None:
    """Dislike: borra el blob (si es durable) y la fila. Solo desde Staged."""
    staged = lifecycle.ensure_staged(lifecycle.state_of(image))
    image_id = image.pk
    _delete_blob(staged, storage)
    image.delete()
    logger.info("[Review] Imagen %s rechazada y borrada", image_id)


def delete_image(image: GeneratedImage, *, storage: Optional[GitHubImageStorage]) -> None:
    """Borrado directo (fuera de revisión) con limpieza best-effort de la carpeta."""
    state = lifecycle.state_of(image)
    avatar = image.avatar
    image_id = image.pk
    _delete_blob(state, storage)
    image.delete()
    logger.info("[Review] Imagen %s borrada", image_id)

    remaining = GeneratedImage.objects.filter(
        avatar=avatar,
        status=GeneratedImage.STATUS_PUBLISHED,
        is_durable=True,
    ).count()
    if remaining == 0 and storage is not None:
        logger.info("[Review] No quedan imágenes de %s, revisando carpeta", avatar.full_name)
        storage.delete_folder_if_empty(avatar.full_name)
