"""
Artifact storage service for autopost.

Generated images are written under a per-owner directory (one per pipeline
session or batch run) and identified by their resolved file path, which is
the opaque handle passed around by the orchestration layer.
"""
import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Optional

import httpx

from autopost.config import settings
from autopost.errors import GenerationErrorCode, GenerationFailure

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}


class ArtifactStore:
    """
    Store and load image artifacts.

    Layout:
    - {base_dir}/{owner_id}/{uuid}.png - Generated artifacts

    Implements path traversal protection to prevent directory escape attacks.
    Handles starting with http:// or https:// are fetched with httpx.
    """

    def __init__(
        self,
        base_dir: str | Path | None = None,
        http_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize ArtifactStore with base directory.

        Args:
            base_dir: Root directory for all artifacts.
                     If None, uses settings.storage.artifact_dir
            http_timeout: Timeout in seconds for fetching remote handles
            transport: Optional httpx transport for remote handles
        """
        if base_dir is None:
            base_dir = settings.storage.artifact_dir

        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._http_timeout = http_timeout
        self._transport = transport

    def get_owner_dir(self, owner_id: str) -> Path:
        """
        Get or create the directory for one session or run.

        Raises:
            ValueError: If owner_id creates path outside base_dir (traversal attack)
        """
        owner_dir = (self.base_dir / owner_id).resolve()

        if not owner_dir.is_relative_to(self.base_dir):
            raise ValueError("Invalid artifact owner path")

        owner_dir.mkdir(exist_ok=True)
        return owner_dir

    def save(self, data: bytes, mime_type: str = "image/png", owner_id: str = "shared") -> str:
        """
        Save artifact bytes and return their handle.

        Args:
            data: Image bytes
            mime_type: MIME type of the image, used for the file extension
            owner_id: Session or run identifier used as subdirectory

        Returns:
            Handle (resolved file path) of the stored artifact
        """
        extension = _EXTENSIONS.get(mime_type, ".png")
        filepath = self.get_owner_dir(owner_id) / f"{uuid.uuid4().hex}{extension}"
        filepath.write_bytes(data)
        logger.debug(f"Stored artifact {filepath} ({len(data):,} bytes)")
        return str(filepath)

    async def load(self, handle: str) -> tuple[bytes, str]:
        """
        Load artifact bytes for a handle.

        Args:
            handle: Local file path or http(s) URL

        Returns:
            (data, mime_type)

        Raises:
            GenerationFailure: If the artifact cannot be read or fetched
        """
        if handle.startswith(("http://", "https://")):
            try:
                async with httpx.AsyncClient(
                    timeout=self._http_timeout,
                    follow_redirects=True,
                    transport=self._transport,
                ) as client:
                    response = await client.get(handle)
                    response.raise_for_status()
            except httpx.TimeoutException as e:
                raise GenerationFailure(
                    f"Timed out fetching reference image {handle}",
                    GenerationErrorCode.TIMEOUT_ERROR,
                ) from e
            except httpx.HTTPStatusError as e:
                raise GenerationFailure(
                    f"Failed to fetch reference image {handle}: HTTP {e.response.status_code}",
                    GenerationErrorCode.NETWORK_ERROR,
                    e.response.status_code,
                ) from e
            except httpx.HTTPError as e:
                raise GenerationFailure(
                    f"Network error fetching reference image {handle}: {e}",
                    GenerationErrorCode.NETWORK_ERROR,
                ) from e
            mime_type = response.headers.get("content-type", "image/png").split(";")[0]
            return response.content, mime_type

        path = Path(handle)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise GenerationFailure(
                f"Cannot read reference image {handle}: {e}",
                GenerationErrorCode.CONFIG_ERROR,
            ) from e
        mime_type = mimetypes.guess_type(path.name)[0] or "image/png"
        return data, mime_type
