"""Shared fixtures: in-memory images, a fake Gemini client and inline executors.

Prompt synthesis normally runs on a thread pool; the executors here run it on
the calling thread (or hold it until the test releases it) so studio tests are
deterministic.
"""

from __future__ import annotations

import base64
from concurrent.futures import Future
from io import BytesIO
from typing import Callable, List, Optional

import pytest
from PIL import Image

from product_studio.config import StudioConfig
from product_studio.errors import StudioError
from product_studio.models import EncodedImage, StyleSettings


def image_bytes(size=(64, 48), fmt: str = "PNG", color=(200, 30, 30), mode: str = "RGB") -> bytes:
    buf = BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


def data_url(data: bytes, mime: str) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


class InlineExecutor:
    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        fut: Future = Future()
        fut.set_result(fn(*args, **kwargs))
        return fut

    def shutdown(self, wait: bool = True) -> None:
        pass


class ManualExecutor:
    """Holds submitted calls until the test runs them, in any order."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        self.calls.append((fn, args, kwargs))
        return Future()

    def run(self, index: int) -> None:
        fn, args, kwargs = self.calls[index]
        fn(*args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        pass


class FakeGeminiClient:
    def __init__(self) -> None:
        self.prompt_calls: List[tuple] = []
        self.edit_calls: List[tuple] = []
        self.prompt_error: Optional[StudioError] = None
        self.edit_error: Optional[StudioError] = None
        self.result = EncodedImage(data=image_bytes((32, 32), color=(0, 0, 255)), mime_type="image/png")

    def synthesize_prompt(self, settings: StyleSettings, style_image: Optional[EncodedImage] = None) -> str:
        self.prompt_calls.append((settings, style_image))
        if self.prompt_error is not None:
            raise self.prompt_error
        return f"prompt {len(self.prompt_calls)}: {settings.lighting_style.value}"

    def edit_image(self, product_image, prompt, style_image=None) -> EncodedImage:
        self.edit_calls.append((product_image, prompt, style_image))
        if self.edit_error is not None:
            raise self.edit_error
        return self.result


@pytest.fixture
def config() -> StudioConfig:
    return StudioConfig(api_key="test-key")


@pytest.fixture
def fake_client() -> FakeGeminiClient:
    return FakeGeminiClient()
