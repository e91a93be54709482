"""
Studio orchestration: the state behind one browser session of the app.

Prompt synthesis is wired as an explicit subscription: every change to the
trigger set (aspect ratio, lighting style, camera perspective, style reference
image) publishes a SettingsChanged event, and the synthesizer listening for it
queues a new prompt request. Requests are numbered; only the newest request's
completion may write the prompt, so a slow older call can never overwrite a
newer result.

State is shared between request handler threads and the prompt worker pool and
is only touched under ``_lock``. Remote calls always run outside the lock.
"""

import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, FrozenSet, List, Optional, Tuple

from product_studio import codec
from product_studio.config import DOWNLOAD_FILENAME, StudioConfig
from product_studio.crop import CropSession
from product_studio.errors import (
    Busy,
    InvalidCropRegion,
    MissingInput,
    NoCropSession,
    StudioError,
    UpstreamError,
)
from product_studio.gemini import GeminiClient
from product_studio.logger import get_logger
from product_studio.models import CropRegion, EncodedImage, StyleSettings

logger = get_logger("studio")

TRIGGER_FIELDS = ("aspect_ratio", "lighting_style", "camera_perspective")


@dataclass(frozen=True)
class SettingsChanged:
    settings: StyleSettings
    style_image: Optional[EncodedImage]
    changed: FrozenSet[str]


Listener = Callable[[SettingsChanged], None]


class Studio:
    def __init__(self, config: StudioConfig, client: GeminiClient, executor: Optional[Executor] = None):
        self.config = config
        self.client = client
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=config.prompt_workers, thread_name_prefix="prompt"
        )

        self.settings = StyleSettings()
        self.style_image: Optional[EncodedImage] = None
        self.source_image: Optional[EncodedImage] = None
        self.product_image: Optional[EncodedImage] = None
        self.crop_session: Optional[CropSession] = None
        self.prompt = ""
        self.generated_image: Optional[EncodedImage] = None
        self.error: Optional[str] = None

        self.is_saving_crop = False
        self.is_generating_image = False
        self._prompt_seq = 0
        self._prompts_pending = 0

        self.subscribe(self._resynthesize_prompt)
        self.subscribe(self._sync_crop_aspect)

    # ---- lifecycle ----
    def start(self) -> None:
        self.request_prompt()

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    # ---- events ----
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, event: SettingsChanged) -> None:
        with self._lock:
            listeners = list(self._listeners)
        logger.debug("settings changed: %s", sorted(event.changed))
        for listener in listeners:
            listener(event)

    def _resynthesize_prompt(self, event: SettingsChanged) -> None:
        self.request_prompt()

    def _sync_crop_aspect(self, event: SettingsChanged) -> None:
        if "aspect_ratio" not in event.changed:
            return
        with self._lock:
            if self.crop_session is not None:
                self.crop_session.on_aspect_ratio_changed(event.settings.aspect_ratio.ratio)

    # ---- error banner ----
    @contextmanager
    def _reporting(self, action: str):
        try:
            yield
        except StudioError as e:
            logger.error("%s failed (%s): %s", action, e.kind, e.message)
            self.report_error(e)
            raise
        except Exception as e:
            logger.exception("%s crashed", action)
            error = UpstreamError(f"An unexpected error occurred during {action}. Please check the logs for details.")
            self.report_error(error)
            raise error from e

    def report_error(self, error: StudioError) -> None:
        with self._lock:
            self.error = error.message

    def dismiss_error(self) -> None:
        with self._lock:
            self.error = None

    # ---- settings & style reference ----
    def update_settings(self, settings: StyleSettings) -> None:
        with self._lock:
            previous = self.settings
            changed = frozenset(f for f in TRIGGER_FIELDS if getattr(previous, f) != getattr(settings, f))
            self.settings = settings
            style_image = self.style_image
        if changed:
            self._publish(SettingsChanged(settings, style_image, changed))

    def set_style_image(self, data: bytes, mime_type: Optional[str]) -> EncodedImage:
        with self._reporting("style upload"):
            with self._lock:
                self.error = None
            raster = codec.decode(data, mime_type, self.config.max_upload_bytes)
            image = EncodedImage(data=data, mime_type=raster.mime_type)
        with self._lock:
            self.style_image = image
            settings = self.settings
        self._publish(SettingsChanged(settings, image, frozenset({"style_image"})))
        return image

    def clear_style_image(self) -> None:
        with self._lock:
            if self.style_image is None:
                return
            self.style_image = None
            settings = self.settings
        self._publish(SettingsChanged(settings, None, frozenset({"style_image"})))

    # ---- prompt ----
    @property
    def is_generating_prompt(self) -> bool:
        with self._lock:
            return self._prompts_pending > 0

    def request_prompt(self) -> int:
        with self._lock:
            self._prompt_seq += 1
            seq = self._prompt_seq
            self._prompts_pending += 1
            self.error = None
            settings, style_image = self.settings, self.style_image
        self._executor.submit(self._run_prompt, seq, settings, style_image)
        return seq

    def _run_prompt(self, seq: int, settings: StyleSettings, style_image: Optional[EncodedImage]) -> None:
        try:
            prompt = self.client.synthesize_prompt(settings, style_image)
        except StudioError as e:
            self._finish_prompt(seq, error=e)
            return
        except Exception:
            # Worker futures are never awaited; anything unexpected must still reach the banner
            logger.exception("prompt synthesis #%s crashed", seq)
            self._finish_prompt(seq, error=UpstreamError(
                "An unexpected error occurred during prompt generation. Please check the logs for details."
            ))
            return
        self._finish_prompt(seq, prompt=prompt)

    def _finish_prompt(self, seq: int, prompt: Optional[str] = None, error: Optional[StudioError] = None) -> None:
        with self._lock:
            self._prompts_pending -= 1
            if seq != self._prompt_seq:
                logger.info("discarding stale prompt #%s (latest #%s)", seq, self._prompt_seq)
                return
            if error is not None:
                logger.error("prompt synthesis #%s failed (%s): %s", seq, error.kind, error.message)
                self.error = error.message
                return
            self.prompt = prompt
            logger.info("prompt #%s ready (%s chars)", seq, len(prompt))

    def set_prompt(self, prompt: str) -> None:
        with self._lock:
            self.prompt = prompt

    # ---- product photo & crop ----
    def upload_product(self, data: bytes, mime_type: Optional[str]) -> CropSession:
        with self._reporting("product upload"):
            with self._lock:
                self.error = None
            raster = codec.decode(data, mime_type, self.config.max_upload_bytes)
            source = EncodedImage(data=data, mime_type=raster.mime_type)
            with self._lock:
                self.source_image = source
                self.product_image = None
                self.crop_session = self._open_session(raster)
                return self.crop_session

    def _open_session(self, raster) -> CropSession:
        aspect = self.settings.aspect_ratio.ratio
        session = CropSession(raster, aspect, fill=self.config.crop_fill, viewport=self.config.viewport)
        session.on_image_load(raster.natural_width, raster.natural_height, aspect)
        return session

    def open_crop(self) -> CropSession:
        with self._reporting("open crop"):
            with self._lock:
                source = self.source_image
                if source is None:
                    raise MissingInput("Please upload a product image first.")
            raster = codec.decode(source.data, source.mime_type, self.config.max_upload_bytes)
            with self._lock:
                self.crop_session = self._open_session(raster)
                return self.crop_session

    def _require_crop(self) -> CropSession:
        if self.crop_session is None:
            raise NoCropSession("No crop is in progress. Upload a product image first.")
        return self.crop_session

    def load_crop_display(self, displayed_w: float, displayed_h: float) -> CropSession:
        with self._reporting("crop display"), self._lock:
            session = self._require_crop()
            image = session.image
            session.on_image_load(
                image.natural_width, image.natural_height,
                self.settings.aspect_ratio.ratio, displayed_w, displayed_h,
            )
            return session

    def drag_crop(self, region: CropRegion) -> CropSession:
        with self._reporting("crop drag"), self._lock:
            session = self._require_crop()
            if not session.on_user_drag(region):
                raise InvalidCropRegion(
                    "The crop area must stay inside the image and keep the selected aspect ratio."
                )
            return session

    def zoom_crop(self, scale: float) -> CropSession:
        with self._reporting("crop zoom"), self._lock:
            session = self._require_crop()
            session.on_zoom_changed(scale)
            return session

    def save_crop(self) -> EncodedImage:
        with self._reporting("crop save"):
            with self._lock:
                session = self._require_crop()
                if self.is_saving_crop:
                    raise Busy("The crop is already being saved.")
                # Pinned under the lock; a concurrent zoom must not resize the view mid-blit
                image, region = session.capture()
                self.is_saving_crop = True
                self.error = None
                output_mime = self.source_image.mime_type if self.source_image else None
            try:
                encoded = codec.crop_and_encode(image, region, output_mime or image.mime_type)
            finally:
                with self._lock:
                    self.is_saving_crop = False
            with self._lock:
                self.product_image = encoded
                if self.crop_session is session:
                    self.crop_session = None
            return encoded

    def cancel_crop(self) -> None:
        with self._lock:
            self.crop_session = None

    # ---- generation ----
    def generate_image(self) -> EncodedImage:
        with self._reporting("image generation"):
            with self._lock:
                if self.is_generating_image:
                    raise Busy("An image is already being generated.")
                if self.product_image is None or not self.prompt.strip():
                    raise MissingInput("Please upload and crop a product image, and ensure a prompt is generated.")
                self.is_generating_image = True
                self.error = None
                product, prompt, style_image = self.product_image, self.prompt, self.style_image
            try:
                result = self.client.edit_image(product, prompt, style_image)
            finally:
                with self._lock:
                    self.is_generating_image = False
            with self._lock:
                self.generated_image = result
            logger.info("generated %s (%s bytes)", result.mime_type, len(result.data))
            return result

    def download(self) -> Tuple[bytes, str, str]:
        with self._lock:
            image = self.generated_image
        if image is None:
            raise MissingInput("There is no generated image to download yet.")
        return image.data, image.mime_type, DOWNLOAD_FILENAME

    # ---- view ----
    def snapshot(self) -> dict:
        with self._lock:
            return {
                "settings": self.settings.model_dump(mode="json"),
                "prompt": self.prompt,
                "error": self.error,
                "is_generating_prompt": self._prompts_pending > 0,
                "is_generating_image": self.is_generating_image,
                "is_saving_crop": self.is_saving_crop,
                "has_source_image": self.source_image is not None,
                "product_image": self.product_image.data_uri if self.product_image else None,
                "style_image": self.style_image.data_uri if self.style_image else None,
                "generated_image": self.generated_image.data_uri if self.generated_image else None,
                "crop": self.crop_session.snapshot() if self.crop_session else None,
            }
