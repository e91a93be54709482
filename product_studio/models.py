"""
Value types shared by the codec, the crop editor and the studio.

StyleSettings is a frozen pydantic model so the API can accept it directly and
the studio can only ever replace it wholesale. The image/rect types are plain
dataclasses; RasterImage is the one mutable type (zoom changes its displayed
size while a crop session is open).
"""

import base64
from dataclasses import dataclass
from enum import Enum
from typing import Literal, Tuple

from PIL import Image
from pydantic import BaseModel, ConfigDict


class AspectRatio(str, Enum):
    SQUARE = "1:1"
    PORTRAIT = "3:4"
    LANDSCAPE = "16:9"

    @property
    def ratio(self) -> float:
        w, h = self.value.split(":")
        return int(w) / int(h)


class LightingStyle(str, Enum):
    STUDIO = "Studio Lighting"
    NATURAL = "Natural Light"
    CINEMATIC = "Cinematic"
    DRAMATIC = "Dramatic"
    SOFT = "Soft Glow"
    HIGH_KEY = "High-Key"


class CameraPerspective(str, Enum):
    EYE_LEVEL = "Eye-level"
    HIGH_ANGLE = "High-angle"
    LOW_ANGLE = "Low-angle"
    CLOSE_UP = "Close-up"
    WIDE_SHOT = "Wide shot"
    DUTCH_ANGLE = "Dutch Angle"


class StyleSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    aspect_ratio: AspectRatio = AspectRatio.SQUARE
    lighting_style: LightingStyle = LightingStyle.STUDIO
    camera_perspective: CameraPerspective = CameraPerspective.EYE_LEVEL


CropUnit = Literal["%", "px"]


@dataclass(frozen=True)
class CropRegion:
    """Crop rectangle in displayed coordinates, either percent or pixels."""
    x: float
    y: float
    width: float
    height: float
    unit: CropUnit = "px"

    def to_pixels(self, displayed_w: float, displayed_h: float) -> "CropRegion":
        if self.unit == "px":
            return self
        return CropRegion(
            x=self.x * displayed_w / 100.0,
            y=self.y * displayed_h / 100.0,
            width=self.width * displayed_w / 100.0,
            height=self.height * displayed_h / 100.0,
            unit="px",
        )

    def to_percent(self, displayed_w: float, displayed_h: float) -> "CropRegion":
        if self.unit == "%":
            return self
        return CropRegion(
            x=self.x * 100.0 / displayed_w,
            y=self.y * 100.0 / displayed_h,
            width=self.width * 100.0 / displayed_w,
            height=self.height * 100.0 / displayed_h,
            unit="%",
        )

    def as_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height, "unit": self.unit}


@dataclass
class RasterImage:
    """Decoded bitmap plus the size it is currently rendered at."""
    pixels: Image.Image
    mime_type: str
    displayed_width: float
    displayed_height: float

    @property
    def natural_width(self) -> int:
        return self.pixels.width

    @property
    def natural_height(self) -> int:
        return self.pixels.height

    @property
    def scale_factor(self) -> Tuple[float, float]:
        return (
            self.natural_width / self.displayed_width,
            self.natural_height / self.displayed_height,
        )


@dataclass(frozen=True)
class EncodedImage:
    data: bytes
    mime_type: str

    def to_portable_text(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_portable_text()}"
