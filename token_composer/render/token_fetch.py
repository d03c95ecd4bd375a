"""
Token-data API client.

Environment variables:
- TOKEN_API_URL: token endpoint (default: Unique Network Opal REST v2)
- TOKEN_API_TIMEOUT: request timeout in seconds (default 30)
"""
from __future__ import annotations

import os
import logging

import requests

from token_composer.errors import DecodeError, FetchError

TOKEN_API_URL = os.getenv(
    "TOKEN_API_URL", "https://rest.unique.network/v2/opal/token")
TOKEN_API_TIMEOUT = float(os.getenv("TOKEN_API_TIMEOUT", "30"))

logger = logging.getLogger(__name__)


def fetch_token_tree(collection_id: str, token_id: str, session=None) -> dict:
    """
    Fetch the token document, children included.

    Raises FetchError when the API can't be reached or answers with a
    non-success status, DecodeError when the body is not a JSON object.
    """
    http = session or requests
    params = {
        "collectionId": collection_id,
        "tokenId": token_id,
        "withChildren": "true",
    }
    logger.info("📥 Fetching token %s-%s from %s",
                collection_id, token_id, TOKEN_API_URL)

    try:
        response = http.get(
            TOKEN_API_URL,
            params=params,
            headers={"accept": "application/json"},
            timeout=TOKEN_API_TIMEOUT,
        )
    except requests.RequestException as exc:
        raise FetchError(f"Failed to fetch token data: {exc}") from exc

    if not 200 <= response.status_code < 300:
        raise FetchError(
            f"Failed to fetch token data: HTTP {response.status_code}",
            status_code=response.status_code,
        )

    try:
        document = response.json()
    except ValueError as exc:
        raise DecodeError(f"Token data is not valid JSON: {exc}") from exc

    if not isinstance(document, dict):
        raise DecodeError(
            f"Token data must be a JSON object, got {type(document).__name__}")

    logger.info("✅ Token %s-%s fetched", collection_id, token_id)
    return document
