"""
Crop editor state machine.

A CropSession lives exactly as long as the crop dialog: it is created when a
product photo is uploaded (or re-opened for a new crop) and dropped on save or
cancel. The region is always stored in percent of the displayed size, so
zooming only magnifies the view and never moves the selection over the source
pixels. Drags may arrive in either unit and are converted on the way in.

Dragged rectangles come from outside (the browser crop surface via the API),
so they are checked against the displayed bounds and the locked ratio before
they replace the selection. A small ratio tolerance absorbs the whole-pixel
rounding crop surfaces report.
"""

from dataclasses import replace
from enum import Enum
from typing import Optional, Tuple

from product_studio import codec
from product_studio.config import CROP_FILL_DEFAULT, VIEWPORT_DEFAULT, ZOOM_MAX, ZOOM_MIN
from product_studio.errors import CropRegionEmpty
from product_studio.logger import get_logger
from product_studio.models import CropRegion, EncodedImage, RasterImage

logger = get_logger("crop")

# Relative ratio slack for dragged rectangles
RATIO_TOLERANCE = 0.01
_BOUNDS_EPSILON = 1e-6


class CropState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"


def fit_to_viewport(natural_w: int, natural_h: int, viewport: Tuple[int, int]) -> Tuple[float, float]:
    """Size the image renders at inside the crop dialog (contain, never upscale)."""
    vw, vh = viewport
    scale = min(1.0, vw / natural_w, vh / natural_h)
    return natural_w * scale, natural_h * scale


def centered_aspect_crop(
    displayed_w: float,
    displayed_h: float,
    aspect: float,
    fill: float = CROP_FILL_DEFAULT,
) -> CropRegion:
    """Largest ``aspect`` rectangle inside ``fill`` of the displayed extent, centered.

    Returned in percent of the displayed size.
    """
    max_w = displayed_w * fill
    max_h = displayed_h * fill
    # Try full allowed width first, fall back to full allowed height
    w = max_w
    h = w / aspect
    if h > max_h:
        h = max_h
        w = h * aspect
    x = (displayed_w - w) / 2
    y = (displayed_h - h) / 2
    return CropRegion(
        x=x / displayed_w * 100.0,
        y=y / displayed_h * 100.0,
        width=w / displayed_w * 100.0,
        height=h / displayed_h * 100.0,
        unit="%",
    )


class CropSession:
    def __init__(
        self,
        image: RasterImage,
        aspect: float,
        fill: float = CROP_FILL_DEFAULT,
        viewport: Tuple[int, int] = VIEWPORT_DEFAULT,
    ):
        self.image = image
        self.aspect = aspect
        self.fill = fill
        self.viewport = viewport
        self.state = CropState.UNINITIALIZED
        self.region: Optional[CropRegion] = None
        self.zoom = 1.0
        # Displayed size at zoom 1.0; zoom multiplies this
        self._base_size: Optional[Tuple[float, float]] = None

    @property
    def displayed_size(self) -> Tuple[float, float]:
        return self.image.displayed_width, self.image.displayed_height

    def _recenter(self) -> None:
        dw, dh = self.displayed_size
        self.region = centered_aspect_crop(dw, dh, self.aspect, self.fill)
        self.state = CropState.INITIALIZED

    def on_image_load(
        self,
        natural_w: int,
        natural_h: int,
        target_aspect: float,
        displayed_w: Optional[float] = None,
        displayed_h: Optional[float] = None,
    ) -> bool:
        if natural_w <= 0 or natural_h <= 0:
            logger.warning("image load with empty size %sx%s; crop stays uninitialized", natural_w, natural_h)
            return False
        if target_aspect <= 0:
            logger.warning("image load with invalid aspect %s", target_aspect)
            return False

        if displayed_w and displayed_h and displayed_w > 0 and displayed_h > 0:
            base = (float(displayed_w), float(displayed_h))
        else:
            base = fit_to_viewport(natural_w, natural_h, self.viewport)
        self._base_size = base
        self.zoom = 1.0
        self.image.displayed_width, self.image.displayed_height = base
        self.aspect = target_aspect
        self._recenter()
        logger.debug("crop initialized display=%sx%s aspect=%.4f region=%s", base[0], base[1], target_aspect, self.region)
        return True

    def on_aspect_ratio_changed(self, new_aspect: float) -> None:
        if new_aspect <= 0:
            logger.warning("ignored aspect change to %s", new_aspect)
            return
        self.aspect = new_aspect
        # Any previous selection has the wrong ratio now; start over centered
        if self.state is CropState.INITIALIZED:
            self._recenter()

    def fits(self, rect: CropRegion) -> bool:
        """True when ``rect`` lies inside the displayed image at the locked ratio."""
        dw, dh = self.displayed_size
        px = rect.to_pixels(dw, dh)
        if px.width <= 0 or px.height <= 0:
            return False
        if px.x < -_BOUNDS_EPSILON or px.y < -_BOUNDS_EPSILON:
            return False
        if px.x + px.width > dw + _BOUNDS_EPSILON or px.y + px.height > dh + _BOUNDS_EPSILON:
            return False
        # Half a pixel of rounding on each side, or the relative slack on large crops
        slack = max(0.5 * (1 + self.aspect), px.width * RATIO_TOLERANCE)
        return abs(px.width - px.height * self.aspect) <= slack

    def on_user_drag(self, rect: CropRegion) -> bool:
        if self.state is not CropState.INITIALIZED:
            logger.warning("drag before image load ignored")
            return False
        if rect.width <= 0 or rect.height <= 0:
            logger.warning("drag to non-positive size %sx%s ignored", rect.width, rect.height)
            return False
        if not self.fits(rect):
            logger.warning("drag to %s outside %sx%s or off ratio %.4f ignored", rect, *self.displayed_size, self.aspect)
            return False
        # Stored in percent so a later zoom keeps selecting the same source pixels
        dw, dh = self.displayed_size
        self.region = rect.to_percent(dw, dh)
        return True

    def on_zoom_changed(self, scale: float) -> None:
        scale = max(ZOOM_MIN, min(ZOOM_MAX, float(scale)))
        self.zoom = scale
        if self._base_size is None:
            return
        base_w, base_h = self._base_size
        self.image.displayed_width = base_w * scale
        self.image.displayed_height = base_h * scale

    def capture(self) -> Tuple[RasterImage, CropRegion]:
        """Pin the current view so encoding is unaffected by later zoom changes."""
        if self.region is None:
            raise CropRegionEmpty("The crop area is empty. Select an area and try again.")
        return replace(self.image), self.region

    def crop_and_encode(self, output_mime_type: Optional[str] = None) -> EncodedImage:
        image, region = self.capture()
        return codec.crop_and_encode(image, region, output_mime_type or image.mime_type)

    def snapshot(self) -> dict:
        dw, dh = self.displayed_size
        return {
            "state": self.state.value,
            "aspect": self.aspect,
            "zoom": self.zoom,
            "natural_width": self.image.natural_width,
            "natural_height": self.image.natural_height,
            "displayed_width": dw,
            "displayed_height": dh,
            "region": self.region.as_dict() if self.region else None,
        }
