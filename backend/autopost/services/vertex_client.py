"""Gemini client wrapper using google-genai SDK.

Provides cached clients in either Vertex AI mode (Application Default
Credentials, location-aware) or Gemini Developer API mode (API key).

Usage:
    from autopost.services.vertex_client import get_vertex_client

    client = get_vertex_client()                    # default location
    client = get_vertex_client(location="global")   # global endpoint
"""

import asyncio
import os
from pathlib import Path

from dotenv import load_dotenv
from google import genai
from google.genai.errors import APIError, ClientError, ServerError
from pydantic import ValidationError

from autopost.config import settings
from autopost.errors import GenerationErrorCode, GenerationFailure

# Load .env for GOOGLE_APPLICATION_CREDENTIALS (ADC)
load_dotenv(Path.cwd() / ".env")

# Per-location client cache ("api-key" for Developer API mode)
_clients: dict[str, genai.Client] = {}

# Models that must use the global endpoint
GLOBAL_REGION_MODELS = {
    "gemini-3-flash-preview",
    "gemini-3-pro-preview",
    "gemini-3-pro-image-preview",
}


def location_for_model(model_id: str) -> str:
    """Return the Vertex AI location needed for a given model ID."""
    if model_id in GLOBAL_REGION_MODELS:
        return "global"
    return settings.google_cloud.location


def get_vertex_client(location: str | None = None) -> genai.Client:
    """Get or create a Gemini client for the given location.

    Clients are cached per location so repeated calls are cheap.

    Args:
        location: GCP region (e.g., "us-central1", "global").
                  Defaults to settings.google_cloud.location.
                  Ignored in API key mode.

    Returns:
        genai.Client: Configured client instance

    Raises:
        GenerationFailure: With CONFIG_ERROR if neither a project nor an API key is configured
    """
    gcloud = settings.google_cloud

    if not gcloud.use_vertex_ai:
        if not gcloud.api_key:
            raise GenerationFailure(
                "AUTOPOST_GOOGLE_CLOUD__API_KEY is not configured",
                GenerationErrorCode.CONFIG_ERROR,
            )
        if "api-key" not in _clients:
            _clients["api-key"] = genai.Client(api_key=gcloud.api_key)
        return _clients["api-key"]

    if not gcloud.project_id:
        raise GenerationFailure(
            "AUTOPOST_GOOGLE_CLOUD__PROJECT_ID is not configured",
            GenerationErrorCode.CONFIG_ERROR,
        )

    loc = location or gcloud.location

    if loc not in _clients:
        os.environ["GOOGLE_GENAI_USE_VERTEXAI"] = "true"
        os.environ["GOOGLE_CLOUD_PROJECT"] = gcloud.project_id

        _clients[loc] = genai.Client(
            vertexai=True,
            project=gcloud.project_id,
            location=loc,
        )

    return _clients[loc]


def is_retriable(exc: BaseException) -> bool:
    """Return True only for transient errors worth retrying."""
    if isinstance(exc, ServerError):
        return True
    if isinstance(exc, ClientError):
        return getattr(exc, "code", 0) == 429
    # Retry on connection/timeout errors
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError, OSError)):
        return True
    return False


def to_generation_failure(exc: BaseException) -> GenerationFailure:
    """Map a provider or transport exception to a GenerationFailure."""
    if isinstance(exc, GenerationFailure):
        return exc
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return GenerationFailure("Request timed out", GenerationErrorCode.TIMEOUT_ERROR)
    if isinstance(exc, APIError):
        status = getattr(exc, "code", None)
        message = getattr(exc, "message", None) or str(exc)
        if status == 429:
            code = GenerationErrorCode.QUOTA_EXCEEDED
        elif status in (401, 403):
            code = GenerationErrorCode.AUTH_ERROR
        else:
            code = GenerationErrorCode.API_ERROR
        return GenerationFailure(message, code, status)
    if isinstance(exc, (ConnectionError, OSError)):
        return GenerationFailure(f"Network error: {exc}", GenerationErrorCode.NETWORK_ERROR)
    if isinstance(exc, (ValidationError, ValueError)):
        return GenerationFailure(
            f"Malformed model response: {exc}", GenerationErrorCode.INVALID_RESPONSE
        )
    return GenerationFailure(f"{type(exc).__name__}: {exc}", GenerationErrorCode.API_ERROR)
