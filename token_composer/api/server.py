# api/server.py
import os
import hashlib
import logging
import threading
import time
from contextlib import asynccontextmanager, contextmanager
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from token_composer.errors import (
    CompositionError,
    CompositionInProgressError,
    DecodeError,
    EmptyCompositionError,
    ExportBlockedError,
    FetchError,
    ImageLoadError,
    MalformedTreeError,
    MissingParameterError,
)
from token_composer.models.compose_request import ComposeRequest
from token_composer.render.compositor import (
    Composition,
    compose_token,
    compose_urls,
    sort_layers,
)
from token_composer.render.overlay_extract import extract_layers
from token_composer.render.token_fetch import fetch_token_tree
from token_composer.utils.token_param import TOKEN_PROMPT, parse_token_param


logger = logging.getLogger(__name__)

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

SERVICE_NAME = "token-composer"
SERVICE_VERSION = "0.1.0"
GENERIC_ERROR = "An error occurred while processing the token data."

ERROR_STATUS = {
    MissingParameterError: 400,
    ExportBlockedError: 403,
    CompositionInProgressError: 409,
    EmptyCompositionError: 422,
    MalformedTreeError: 422,
    FetchError: 502,
    DecodeError: 502,
    ImageLoadError: 502,
}

active_compositions: set[str] = set()
active_compositions_guard = threading.Lock()


@contextmanager
def single_flight(key: str):
    with active_compositions_guard:
        if key in active_compositions:
            raise CompositionInProgressError(
                f"Composition already running for {key}")
        active_compositions.add(key)
    try:
        yield
    finally:
        with active_compositions_guard:
            active_compositions.discard(key)


def _urls_key(urls: list[str]) -> str:
    digest = hashlib.sha256("\n".join(urls).encode("utf-8")).hexdigest()
    return f"urls:{digest[:16]}"


def _to_http_error(exc: CompositionError, context: str) -> HTTPException:
    status = ERROR_STATUS.get(type(exc), 500)
    if isinstance(exc, MissingParameterError):
        logging.warning("⚠️ Parâmetro inválido (%s): %s", context, exc)
        return HTTPException(status_code=status, detail=TOKEN_PROMPT)
    if isinstance(exc, CompositionInProgressError):
        logging.warning("⚠️ Composição já em andamento: %s", context)
        return HTTPException(status_code=status, detail=str(exc))
    logging.error("❌ Falha na composição (%s): %s", context, exc,
                  exc_info=exc)
    return HTTPException(status_code=status, detail=GENERIC_ERROR)


def _png_response(composition: Composition) -> Response:
    body = composition.to_png()
    width, height = composition.size
    return Response(
        content=body,
        media_type=composition.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{composition.filename}"',
            "Cache-Control": "no-store",
            "X-Canvas-Size": f"{width}x{height}",
            "X-Canvas-Policy": composition.canvas_policy,
            "X-Layer-Count": str(len(composition.layers)),
        },
    )


def _compose_token_response(token: str | None) -> Response:
    start = time.monotonic()
    try:
        collection_id, token_id = parse_token_param(token)
        with single_flight(f"token:{collection_id}-{token_id}"):
            composition = compose_token(collection_id, token_id)
            response = _png_response(composition)
    except CompositionError as exc:
        raise _to_http_error(exc, f"token={token}")
    except Exception:
        logging.exception("❌ Erro inesperado na composição (token=%s)", token)
        raise HTTPException(status_code=500, detail=GENERIC_ERROR)

    logging.info("⏱️ Composição token=%s: %.2fs",
                 token, time.monotonic() - start)
    return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.info("🚀 Iniciando %s", SERVICE_NAME)
    yield
    logging.info("🧹 Encerrando %s", SERVICE_NAME)


app = FastAPI(lifespan=lifespan)

# CORS_ORIGINS=https://example.pages.dev,http://localhost:5500
raw_origins = os.getenv("CORS_ORIGINS", "")
origins = [o.strip() for o in raw_origins.split(",") if o.strip()]

if not origins:
    logger.warning(
        "CORS_ORIGINS está vazio; nenhuma origem estará autorizada para CORS."
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Canvas-Size",
                    "X-Canvas-Policy", "X-Layer-Count"],
)


@app.get("/api/compose")
def compose_get(token: str | None = None):
    return _compose_token_response(token)


@app.post("/api/compose")
def compose_post(payload: ComposeRequest):
    if payload.images:
        urls = payload.images
        start = time.monotonic()
        try:
            with single_flight(_urls_key(urls)):
                response = _png_response(compose_urls(urls))
        except CompositionError as exc:
            raise _to_http_error(exc, f"images={len(urls)}")
        except Exception:
            logging.exception("❌ Erro inesperado na composição por URLs")
            raise HTTPException(status_code=500, detail=GENERIC_ERROR)
        logging.info("⏱️ Composição por URLs (%s imagens): %.2fs",
                     len(urls), time.monotonic() - start)
        return response

    return _compose_token_response(payload.token)


@app.get("/api/layers")
def layers_plan(token: str | None = None):
    """Extracted layers in paint order, without loading any image."""
    try:
        collection_id, token_id = parse_token_param(token)
        document = fetch_token_tree(collection_id, token_id)
        layers = sort_layers(extract_layers(document))
    except CompositionError as exc:
        raise _to_http_error(exc, f"layers token={token}")
    except Exception:
        logging.exception("❌ Erro inesperado no plano de layers (token=%s)", token)
        raise HTTPException(status_code=500, detail=GENERIC_ERROR)

    return {
        "status": "success",
        "data": {
            "collectionId": collection_id,
            "tokenId": token_id,
            "layers": [layer.describe() for layer in layers],
        },
    }


@app.get("/api/health")
def health():
    return {"status": "ok", "service": SERVICE_NAME, "version": SERVICE_VERSION}
