"""Autopost - AI-assisted social media post generation.

This module provides a startup validation function to ensure Gemini access
is configured before any generation begins.
Call validate_credentials() during application startup.
"""

import logging

from autopost.config import settings

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def validate_credentials() -> None:
    """Validate that Gemini access is configured.

    Raises:
        RuntimeError: If neither a Vertex AI project nor an API key is set.
    """
    gcloud = settings.google_cloud
    if gcloud.use_vertex_ai:
        if not gcloud.project_id:
            raise RuntimeError(
                "Vertex AI mode needs a Google Cloud project.\n"
                "Set AUTOPOST_GOOGLE_CLOUD__PROJECT_ID or google_cloud.project_id in config.yaml,\n"
                "or set AUTOPOST_GOOGLE_CLOUD__USE_VERTEX_AI=false and provide an API key."
            )
        logger.info(f"Using Vertex AI project {gcloud.project_id} ({gcloud.location})")
        return

    if not gcloud.api_key:
        raise RuntimeError(
            "Gemini Developer API mode needs an API key.\n"
            "Set AUTOPOST_GOOGLE_CLOUD__API_KEY or google_cloud.api_key in config.yaml."
        )
    logger.info("Using Gemini Developer API key")
