from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import Body, FastAPI, HTTPException
from fastapi.responses import JSONResponse

from .config import PipelineConfig
from .formats import FormatUnrecognizedError
from .models import serialize_furigana, serialize_token, serialize_track
from .pipeline import CaptionPipeline

__all__ = ["MAX_TEXT_LENGTH", "WebConfig", "create_app"]

MAX_TEXT_LENGTH = 1000


@dataclass(slots=True)
class WebConfig:
    host: str = "127.0.0.1"
    port: int = 3000
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)


def _require_text(payload: object) -> str:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload.")
    text = payload.get("text")
    if not text or not isinstance(text, str):
        raise HTTPException(status_code=400, detail="Text is required and must be a string")
    if len(text) > MAX_TEXT_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Text is too long (maximum {MAX_TEXT_LENGTH} characters)",
        )
    return text


def _optional_string(payload: dict[str, object], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail=f"{key} must be a string or null.")
    return value.strip() or None


def create_app(config: WebConfig | None = None, *, pipeline: CaptionPipeline | None = None) -> FastAPI:
    config = config or WebConfig()
    pipeline = pipeline or CaptionPipeline(config.pipeline)

    app = FastAPI(title="jisub")
    app.state.config = config
    app.state.pipeline = pipeline

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse({"status": "ok", **pipeline.describe()})

    @app.post("/api/furigana")
    async def api_furigana(payload: dict[str, object] = Body(...)) -> JSONResponse:
        text = _require_text(payload)
        segments = await pipeline.furigana(text)
        return JSONResponse({"furigana": serialize_furigana(segments)})

    @app.post("/api/tokenize")
    async def api_tokenize(payload: dict[str, object] = Body(...)) -> JSONResponse:
        text = _require_text(payload)
        tokens = await pipeline.tokenize(text)
        return JSONResponse({"tokens": [serialize_token(token) for token in tokens]})

    @app.post("/api/captions")
    async def api_captions(payload: dict[str, object] = Body(...)) -> JSONResponse:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload.")
        content = payload.get("content")
        if not isinstance(content, str) or not content.strip():
            raise HTTPException(status_code=400, detail="content is required and must be a string")
        language = _optional_string(payload, "language")
        title = _optional_string(payload, "title")
        enrich = payload.get("enrich", True)
        if not isinstance(enrich, bool):
            raise HTTPException(status_code=400, detail="enrich must be a boolean.")
        try:
            track = await pipeline.load_track(content, language, title, enrich=enrich)
        except FormatUnrecognizedError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return JSONResponse(serialize_track(track))

    return app
