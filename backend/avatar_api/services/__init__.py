# avatar_api/services/__init__.py
import logging
from typing import Optional

from django.core.exceptions import ImproperlyConfigured

from .github_storage import GitHubImageStorage
from .replicate_client import ReplicateGenerator

logger = logging.getLogger(__name__)


def get_generator() -> ReplicateGenerator:
    """Cliente de Replicate construido desde settings (uno por request)."""
    return ReplicateGenerator.from_settings()


def get_storage() -> Optional[GitHubImageStorage]:
    """
    Almacenamiento en GitHub construido desde settings, o None si no está
    configurado (la generación degrada a URLs efímeras).
    """
    try:
        return GitHubImageStorage.from_settings()
    except ImproperlyConfigured as e:
        logger.warning("[GitHubStorage] Almacenamiento no configurado: %s", e)
        return None
