"""
Image loading for composition layers.

Environment variables:
- COMPOSER_IMAGE_TIMEOUT: per-image request timeout in seconds (default 30)
- COMPOSER_IMAGE_WORKERS: concurrent image downloads (default 8)
- COMPOSER_ORIGIN: Origin header sent with anonymous image requests
"""
from __future__ import annotations

import os
import base64
import binascii
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from io import BytesIO
from urllib.parse import unquote_to_bytes

import requests
from PIL import Image, UnidentifiedImageError

from token_composer.errors import ImageLoadError
from token_composer.models.overlay import Bitmap

IMAGE_TIMEOUT = float(os.getenv("COMPOSER_IMAGE_TIMEOUT", "30"))
IMAGE_WORKERS = int(os.getenv("COMPOSER_IMAGE_WORKERS", "8"))
REQUEST_ORIGIN = os.getenv("COMPOSER_ORIGIN", "https://token-composer.local")

logger = logging.getLogger(__name__)


def _decode(url: str, data: bytes) -> Image.Image:
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise ImageLoadError(url, f"decode failed ({exc})") from exc
    return img.convert("RGBA")


def _read_data_url(url: str) -> bytes:
    header, sep, payload = url.partition(",")
    if not sep:
        raise ImageLoadError(url, "malformed data URL")
    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise ImageLoadError(url, "malformed base64 payload") from exc
    return unquote_to_bytes(payload)


def _cors_allowed(response) -> bool:
    allow = response.headers.get("Access-Control-Allow-Origin")
    if not allow:
        return False
    allow = allow.strip()
    return allow == "*" or allow == REQUEST_ORIGIN


def load_image(url: str, session=None) -> Bitmap:
    """
    Fetch and decode one image.

    The request is anonymous: no cookies or credentials, only an Origin
    header. Any failure (transport, status, decode) raises ImageLoadError.
    """
    if not isinstance(url, str) or not url:
        raise ImageLoadError(str(url), "empty image reference")

    if url.startswith("data:"):
        return Bitmap(url, _decode(url, _read_data_url(url)), cors_allowed=True)

    http = session or requests
    try:
        response = http.get(
            url,
            headers={"Origin": REQUEST_ORIGIN},
            timeout=IMAGE_TIMEOUT,
            allow_redirects=True,
        )
    except requests.RequestException as exc:
        raise ImageLoadError(url, str(exc)) from exc

    if not 200 <= response.status_code < 300:
        raise ImageLoadError(url, f"HTTP {response.status_code}")

    bitmap = Bitmap(url, _decode(url, response.content),
                    cors_allowed=_cors_allowed(response))
    logger.debug("Loaded %s (%sx%s)", url, bitmap.width, bitmap.height)
    return bitmap


def load_images(urls: list[str], max_workers: int | None = None, loader=None) -> list[Bitmap]:
    """
    Load every URL concurrently and return bitmaps in input order.

    Fail-fast: the first load to fail is re-raised and pending loads are
    cancelled; no other error is reported.
    """
    if not urls:
        return []

    load = loader or load_image
    workers = max(1, min(max_workers or IMAGE_WORKERS, len(urls)))
    start = time.monotonic()

    executor = ThreadPoolExecutor(max_workers=workers,
                                  thread_name_prefix="image-load")
    futures = [executor.submit(load, url) for url in urls]
    try:
        for future in as_completed(futures):
            future.result()
    except Exception:
        for future in futures:
            future.cancel()
        raise
    finally:
        executor.shutdown(wait=True)

    logger.info(
        "⏱️ Loaded %s images in %.2fs (workers=%s)",
        len(urls), time.monotonic() - start, workers,
    )
    return [future.result() for future in futures]
