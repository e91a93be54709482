"""
HTTP API for the studio.

The server is single-user: one Studio lives on ``app.state`` for the whole
process, so every browser talking to it shares the same upload, crop session,
prompt and result. Run one process per user.
"""

from contextlib import asynccontextmanager
from typing import Literal, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from product_studio import __version__, codec
from product_studio.config import SUPPORTED_MIME_TYPES, ZOOM_MAX, ZOOM_MIN, StudioConfig
from product_studio.errors import StudioError
from product_studio.gemini import GeminiClient
from product_studio.logger import get_logger, setup_logger
from product_studio.models import (
    AspectRatio,
    CameraPerspective,
    CropRegion,
    LightingStyle,
    StyleSettings,
)
from product_studio.studio import Studio

logger = get_logger("server")


class ImageBody(BaseModel):
    image: str  # base64-encoded image, raw or as a data URL
    mime_type: Optional[str] = None  # image/jpeg, image/png or image/webp


class PromptBody(BaseModel):
    prompt: str


class DisplayBody(BaseModel):
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class RegionBody(BaseModel):
    x: float = Field(ge=0)
    y: float = Field(ge=0)
    width: float
    height: float
    unit: Literal["%", "px"] = "px"


class ZoomBody(BaseModel):
    scale: float = Field(ge=ZOOM_MIN, le=ZOOM_MAX)


router = APIRouter()


def _studio(request: Request) -> Studio:
    return request.app.state.studio


def _crop_view(studio: Studio) -> dict:
    return studio.snapshot()["crop"]


@router.get("/health")
def health():
    return {"ok": True, "version": __version__}


@router.get("/api/options")
def options(request: Request):
    config = _studio(request).config
    return {
        "aspect_ratios": [{"label": a.value, "value": a.value, "ratio": a.ratio} for a in AspectRatio],
        "lighting_styles": [{"label": s.value, "value": s.value} for s in LightingStyle],
        "camera_perspectives": [{"label": c.value, "value": c.value} for c in CameraPerspective],
        "upload": {
            "mime_types": list(SUPPORTED_MIME_TYPES),
            "max_bytes": config.max_upload_bytes,
        },
        "zoom": {"min": ZOOM_MIN, "max": ZOOM_MAX},
    }


@router.get("/api/studio")
def studio_state(request: Request):
    return _studio(request).snapshot()


@router.put("/api/settings")
def update_settings(body: StyleSettings, request: Request):
    studio = _studio(request)
    studio.update_settings(body)
    return studio.snapshot()


@router.put("/api/prompt")
def update_prompt(body: PromptBody, request: Request):
    studio = _studio(request)
    studio.set_prompt(body.prompt)
    return {"prompt": body.prompt}


@router.post("/api/product")
def upload_product(body: ImageBody, request: Request):
    studio = _studio(request)
    data, mime = codec.parse_image_payload(body.image, body.mime_type)
    logger.info("/api/product mime=%s img_len=%s", mime, len(data))
    studio.upload_product(data, mime)
    return _crop_view(studio)


@router.post("/api/style")
def upload_style(body: ImageBody, request: Request):
    studio = _studio(request)
    data, mime = codec.parse_image_payload(body.image, body.mime_type)
    logger.info("/api/style mime=%s img_len=%s", mime, len(data))
    image = studio.set_style_image(data, mime)
    return {"style_image": image.data_uri}


@router.delete("/api/style")
def clear_style(request: Request):
    _studio(request).clear_style_image()
    return {"style_image": None}


@router.get("/api/crop")
def crop_state(request: Request):
    return _crop_view(_studio(request))


@router.post("/api/crop")
def reopen_crop(request: Request):
    studio = _studio(request)
    studio.open_crop()
    return _crop_view(studio)


@router.delete("/api/crop")
def cancel_crop(request: Request):
    _studio(request).cancel_crop()
    return {"crop": None}


@router.put("/api/crop/display")
def crop_display(body: DisplayBody, request: Request):
    studio = _studio(request)
    studio.load_crop_display(body.width, body.height)
    return _crop_view(studio)


@router.put("/api/crop/region")
def crop_region(body: RegionBody, request: Request):
    studio = _studio(request)
    studio.drag_crop(CropRegion(x=body.x, y=body.y, width=body.width, height=body.height, unit=body.unit))
    return _crop_view(studio)


@router.put("/api/crop/zoom")
def crop_zoom(body: ZoomBody, request: Request):
    studio = _studio(request)
    studio.zoom_crop(body.scale)
    return _crop_view(studio)


@router.post("/api/crop/save")
def crop_save(request: Request):
    encoded = _studio(request).save_crop()
    return {"product_image": encoded.data_uri, "mime_type": encoded.mime_type, "bytes": len(encoded.data)}


@router.post("/api/generate")
def generate(request: Request):
    result = _studio(request).generate_image()
    return {"image": result.data_uri, "mime_type": result.mime_type}


@router.get(
    "/api/result/download",
    response_class=Response,
    responses={
        200: {
            "content": {"image/png": {}, "image/jpeg": {}, "image/webp": {}},
            "description": "The generated studio photo, in whatever format the model returned.",
        }
    },
)
def download(request: Request):
    data, mime, filename = _studio(request).download()
    return Response(
        content=data,
        media_type=mime,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.delete("/api/error")
def dismiss_error(request: Request):
    _studio(request).dismiss_error()
    return {"error": None}


async def studio_error_handler(request: Request, exc: StudioError):
    # Errors raised before the studio saw them (e.g. bad base64) still need the banner
    _studio(request).report_error(exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "kind": exc.kind})


def create_app(
    config: Optional[StudioConfig] = None,
    client: Optional[GeminiClient] = None,
    studio: Optional[Studio] = None,
) -> FastAPI:
    setup_logger()
    # Missing GEMINI_API_KEY raises MissingCredential here and aborts startup
    config = config or StudioConfig.from_env()
    client = client or GeminiClient(config)
    studio = studio or Studio(config, client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "studio starting: prompt_model=%s image_model=%s max_upload=%sMB",
            config.prompt_model, config.image_model, config.max_upload_mb,
        )
        studio.start()
        yield
        studio.close()

    app = FastAPI(title="AI Photo Studio API", version=__version__, lifespan=lifespan)
    app.state.studio = studio
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,  # use wildcard CORS header reliably
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StudioError, studio_error_handler)
    app.include_router(router)
    return app
