# avatar_api/services/github_storage.py
"""
Almacenamiento de imágenes en un repositorio de GitHub (contents API).

Cada imagen se guarda en ``avatars/<avatar>/<timestamp>_<avatar>_<hash>_<rand>.<ext>``
y se sirve por la URL raw de GitHub. Las escrituras requieren el SHA actual
del fichero (concurrencia optimista), así que un conflicto se reintenta con
el SHA recién leído.
"""
import re
import time
import base64
import hashlib
import logging
import secrets
import mimetypes
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse, quote

import requests
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)

RAW_BASE_URL = "https://raw.githubusercontent.com"
AVATARS_ROOT = "avatars"
DOWNLOAD_TIMEOUT = 30
API_TIMEOUT = 30
MAX_UPLOAD_ATTEMPTS = 3
DEFAULT_EXTENSION = "webp"
KNOWN_EXTENSIONS = ("webp", "jpg", "jpeg", "png", "gif")

# Mensajes de GitHub cuando el SHA enviado no coincide con el actual
SHA_CONFLICT_RE = re.compile(
    r"(is at [0-9a-f]+ but expected [0-9a-f]+|does not match|sha.*wasn.t supplied|expected sha)",
    re.IGNORECASE,
)


class StorageError(Exception):
    """Fallo al hablar con GitHub (descarga, subida o borrado)."""


class StorageConflictError(StorageError):
    """El SHA siguió en conflicto tras agotar los reintentos."""


def safe_avatar_name(avatar_name: str) -> str:
    return re.sub(r"[^a-z0-9]", "-", (avatar_name or "").lower())


def prompt_hash(prompt: str) -> str:
    return hashlib.md5((prompt or "").encode("utf-8")).hexdigest()[:8]


def _guess_extension(source_url: str, content_type: str = "") -> str:
    path = urlparse(source_url).path
    ext = path.rsplit(".", 1)[-1].lower() if "." in path.rsplit("/", 1)[-1] else ""
    if ext in KNOWN_EXTENSIONS:
        return "jpg" if ext == "jpeg" else ext
    guessed = mimetypes.guess_extension((content_type or "").split(";")[0].strip()) or ""
    guessed = guessed.lstrip(".").lower()
    if guessed in KNOWN_EXTENSIONS:
        return "jpg" if guessed == "jpeg" else guessed
    return DEFAULT_EXTENSION


class GitHubImageStorage:

    def __init__(
        self,
        repo: str,
        token: str,
        branch: str = "main",
        api_url: str = "https://api.github.com",
        session: Optional[requests.Session] = None,
    ):
        owner, _, name = (repo or "").partition("/")
        if not owner or not name or "/" in name:
            raise ImproperlyConfigured('Invalid GITHUB_REPO format. Expected: "owner/repository"')
        if not token:
            raise ImproperlyConfigured("GITHUB_TOKEN environment variable is required for GitHub API authentication")

        self.owner = owner
        self.repo = name
        self.branch = branch or "main"
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls) -> "GitHubImageStorage":
        return cls(
            repo=settings.GITHUB_REPO,
            token=settings.GITHUB_TOKEN,
            branch=settings.GITHUB_BRANCH,
            api_url=settings.GITHUB_API_URL,
        )

    # ------------------------------------------------------------------
    # Rutas y URLs
    # ------------------------------------------------------------------

    @property
    def raw_prefix(self) -> str:
        return f"{RAW_BASE_URL}/{self.owner}/{self.repo}/{self.branch}/"

    def public_url_for(self, path: str) -> str:
        return f"{self.raw_prefix}{path}"

    def is_durable_url(self, url: str) -> bool:
        return bool(url) and url.startswith(self.raw_prefix)

    def path_from_url(self, url: str) -> str:
        if not self.is_durable_url(url):
            raise StorageError(f"URL is not stored in {self.owner}/{self.repo}: {url}")
        return url[len(self.raw_prefix):]

    def avatar_folder(self, avatar_name: str) -> str:
        return f"{AVATARS_ROOT}/{safe_avatar_name(avatar_name)}"

    def build_filename(self, prompt: str, avatar_name: str, extension: str = DEFAULT_EXTENSION) -> str:
        timestamp = re.sub(r"[:.]", "-", datetime.now(timezone.utc).isoformat(timespec="milliseconds"))
        suffix = secrets.token_hex(3)
        return f"{timestamp}_{safe_avatar_name(avatar_name)}_{prompt_hash(prompt)}_{suffix}.{extension}"

    def build_path(self, prompt: str, avatar_name: str, extension: str = DEFAULT_EXTENSION) -> str:
        return f"{self.avatar_folder(avatar_name)}/{self.build_filename(prompt, avatar_name, extension)}"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _contents_url(self, path: str) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.repo}/contents/{quote(path)}"

    def _call(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, url, headers=self._headers(), timeout=API_TIMEOUT, **kwargs)
        except requests.RequestException as e:
            raise StorageError(f"GitHub request failed: {e}") from e

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            data = None
        message = data.get("message") if isinstance(data, dict) else None
        return str(message or response.text or f"HTTP {response.status_code}")

    def _is_sha_conflict(self, response: requests.Response) -> bool:
        if response.status_code not in (409, 422):
            return False
        return bool(SHA_CONFLICT_RE.search(self._error_message(response)))

    # ------------------------------------------------------------------
    # Operaciones
    # ------------------------------------------------------------------

    def get_file_info(self, path: str) -> Optional[Dict[str, Any]]:
        """Metadatos del fichero (incluye ``sha``) o None si no existe."""
        response = self._call("GET", self._contents_url(path), params={"ref": self.branch})
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise StorageError(f"Failed to read {path}: {self._error_message(response)}")
        data = response.json()
        if isinstance(data, list):
            # Es una carpeta, no un fichero
            return None
        return data

    def download_image(self, source_url: str) -> Dict[str, Any]:
        try:
            response = self.session.get(source_url, timeout=DOWNLOAD_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error("[GitHubStorage] Error descargando %s: %s", source_url, e)
            raise StorageError(f"Failed to download image: {e}") from e
        return {
            "content": response.content,
            "content_type": response.headers.get("Content-Type", ""),
        }

    def put_file(self, path: str, content: bytes, message: str) -> Dict[str, Any]:
        """
        Crea o actualiza ``path``. Si existe, envía su SHA actual; si GitHub
        responde que el SHA no coincide, vuelve a leerlo y reintenta.
        """
        encoded = base64.b64encode(content).decode("ascii")
        last_error = ""
        for attempt in range(1, MAX_UPLOAD_ATTEMPTS + 1):
            existing = self.get_file_info(path)
            body = {"message": message, "content": encoded, "branch": self.branch}
            if existing and existing.get("sha"):
                body["sha"] = existing["sha"]

            response = self._call("PUT", self._contents_url(path), json=body)
            if response.status_code < 400:
                return response.json()

            last_error = self._error_message(response)
            if not self._is_sha_conflict(response):
                raise StorageError(f"Failed to upload {path}: {last_error}")

            logger.warning(
                "[GitHubStorage] Conflicto de SHA en %s (intento %d/%d): %s",
                path, attempt, MAX_UPLOAD_ATTEMPTS, last_error,
            )
            if attempt < MAX_UPLOAD_ATTEMPTS:
                time.sleep(attempt * 1.0)

        raise StorageConflictError(
            f"Failed to upload {path} after {MAX_UPLOAD_ATTEMPTS} attempts: {last_error}"
        )

    def upload(self, source_url: str, prompt: str, avatar_name: str) -> str:
        """Descarga la imagen de `source_url`, la sube al repo y devuelve la URL raw."""
        logger.info("[GitHubStorage] Descargando imagen de %s", source_url)
        downloaded = self.download_image(source_url)
        extension = _guess_extension(source_url, downloaded["content_type"])
        path = self.build_path(prompt, avatar_name, extension)

        logger.info("[GitHubStorage] Subiendo imagen a %s", path)
        self.put_file(
            path,
            downloaded["content"],
            message=f"Add generated image: {avatar_name} - {(prompt or '')[:50]}...",
        )
        url = self.public_url_for(path)
        logger.info("[GitHubStorage] Imagen subida: %s", url)
        return url

    def delete(self, public_url: str) -> None:
        """Borra la imagen. Si ya no existe se considera éxito."""
        path = self.path_from_url(public_url)
        existing = self.get_file_info(path)
        if not existing:
            logger.info("[GitHubStorage] %s ya no existe, nada que borrar", path)
            return

        response = self._call(
            "DELETE",
            self._contents_url(path),
            json={
                "message": f"Delete image: {path.rsplit('/', 1)[-1]}",
                "sha": existing["sha"],
                "branch": self.branch,
            },
        )
        if response.status_code == 404:
            return
        if response.status_code >= 400:
            raise StorageError(f"Failed to delete {path}: {self._error_message(response)}")
        logger.info("[GitHubStorage] Imagen borrada: %s", path)

    def list_folder(self, folder: str) -> List[Dict[str, Any]]:
        response = self._call("GET", self._contents_url(folder), params={"ref": self.branch})
        if response.status_code == 404:
            return []
        if response.status_code >= 400:
            raise StorageError(f"Failed to list {folder}: {self._error_message(response)}")
        data = response.json()
        return data if isinstance(data, list) else []

    def delete_folder_if_empty(self, avatar_name: str) -> bool:
        """
        Limpieza best-effort de la carpeta del avatar. GitHub no guarda
        carpetas vacías, así que basta con comprobar que no quedan ficheros.
        Nunca lanza excepciones.
        """
        folder = self.avatar_folder(avatar_name)
        try:
            entries = self.list_folder(folder)
        except Exception as e:  # noqa: BLE001 - la limpieza no es necesaria para la consistencia
            logger.warning("[GitHubStorage] No se pudo revisar la carpeta %s: %s", folder, e)
            return False
        if entries:
            logger.info("[GitHubStorage] La carpeta %s aún tiene %d fichero(s)", folder, len(entries))
            return False
        logger.info("[GitHubStorage] La carpeta %s está vacía (GitHub la elimina sola)", folder)
        return True

    def test_connection(self) -> Dict[str, Any]:
        response = self._call("GET", f"{self.api_url}/repos/{self.owner}/{self.repo}")
        if response.status_code >= 400:
            raise StorageError(f"GitHub connection failed: {self._error_message(response)}")
        data = response.json()
        logger.info("[GitHubStorage] Conexión OK con %s", data.get("full_name"))
        return data
