"""
Gemini REST client: prompt synthesis and product image editing.

Both calls go to ``<api_base>/<model>:generateContent`` with the key in the
``X-goog-api-key`` header. Failures are translated into studio errors with a
message fit for the banner; the raw upstream detail goes to the log only.
"""

import base64
import binascii
from typing import Any, Dict, List, Optional

import requests

from product_studio.config import StudioConfig
from product_studio.errors import (
    InvalidCredential,
    NoImageReturned,
    RateLimited,
    StudioError,
    UpstreamError,
)
from product_studio.logger import get_logger
from product_studio.models import EncodedImage, StyleSettings

logger = get_logger("gemini")


def build_prompt_instruction(settings: StyleSettings, with_style_image: bool) -> str:
    text = (
        "You are an expert creative director for a high-end product photography studio using an advanced AI editor. "
        "Your mission is to craft a detailed, evocative, and highly specific prompt to transform a given product photo.\n\n"
        "The final image must be a professional-grade product shot. The product should be the clear hero of the image, "
        "perfectly integrated into a compelling scene.\n\n"
        "**User-defined Parameters:**\n"
        f"- **Aspect Ratio:** {settings.aspect_ratio.value} (The final composition must adhere to this.)\n"
        f"- **Lighting Style:** {settings.lighting_style.value}\n"
        f"- **Camera Perspective:** {settings.camera_perspective.value}\n\n"
        "**Your Task:**\n"
        "Synthesize these parameters into a single, masterful prompt. Describe the scene, lighting, and camera work "
        "with rich, sensory language.\n\n"
        '*Example:* For "Studio Lighting," instead of a generic phrase, describe it as: "A professional studio shot '
        "with a large, diffused key light creating soft, flattering highlights, minimal shadows filled in with ambient "
        "bounce light, and a subtle rim light to define the product's edges against a clean, seamless background.\"\n"
    )
    if with_style_image:
        text += (
            "\n**Style Reference Analysis:**\n"
            "A style reference image has been provided. Your prompt MUST incorporate its aesthetic.\n"
            "1. **Analyze the Essence:** Deconstruct the reference image's core visual elements: color palette "
            "(dominant and accent colors), textures (e.g., grainy, smooth, metallic, organic), composition, and overall "
            "mood (e.g., minimalist and clean, rustic and warm, futuristic and edgy).\n"
            "2. **Translate the Context:** Imagine a new scene inspired by the reference image that would perfectly "
            "showcase the user's product. Describe this environment.\n"
            "3. **Integrate and Enhance:** Weave the analyzed style elements and the new context seamlessly with the "
            "user-defined parameters. The user's choices for lighting and perspective are the primary guide, but they "
            "should be interpreted through the lens of the reference image's style.\n"
        )
    text += (
        "\n**Final Output Requirement:**\n"
        "Generate ONLY the final, complete prompt text. Do not include any titles, preambles, or explanations. "
        "The output must be ready to be fed directly into the image generation model."
    )
    return text


def _inline_part(image: EncodedImage) -> Dict[str, Any]:
    return {"inlineData": {"mimeType": image.mime_type, "data": image.to_portable_text()}}


def _candidate_parts(data: Any) -> List[Dict[str, Any]]:
    # Malformed bodies read as "no parts" so callers raise their own typed error
    if not isinstance(data, dict):
        return []
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return []
    content = candidates[0].get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return []
    return [p for p in parts if isinstance(p, dict)]


class GeminiClient:
    def __init__(self, config: StudioConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    def _post(self, model: str, payload: Dict[str, Any], context: str) -> Dict[str, Any]:
        try:
            resp = self.session.post(
                self.config.endpoint(model),
                headers={
                    "Content-Type": "application/json",
                    "X-goog-api-key": self.config.api_key,
                },
                json=payload,
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            logger.exception("Upstream request error during %s: %s", context, e)
            raise UpstreamError(f"An unexpected error occurred during {context}. Please try again.")

        if resp.status_code != 200:
            snippet = resp.text[:400]
            logger.error("Upstream non-200 during %s status=%s body=%s", context, resp.status_code, snippet)
            raise self._translate(resp.status_code, resp.text, context)

        try:
            return resp.json()
        except ValueError as e:
            logger.exception("Failed to parse upstream response during %s: %s", context, e)
            raise UpstreamError(f"An unexpected error occurred during {context}. Please try again.")

    @staticmethod
    def _translate(status_code: int, body: str, context: str) -> StudioError:
        message = (body or "").lower()
        if status_code == 429 or "rate limit" in message or "resource_exhausted" in message:
            return RateLimited("You have exceeded your API request limit. Please wait and try again later.")
        if status_code in (401, 403) or "api key not valid" in message:
            return InvalidCredential("Invalid API Key. Please check if the API key is configured correctly.")
        return UpstreamError(f"An unexpected error occurred during {context}. Please try again.")

    def synthesize_prompt(self, settings: StyleSettings, style_image: Optional[EncodedImage] = None) -> str:
        parts: List[Dict[str, Any]] = [{"text": build_prompt_instruction(settings, style_image is not None)}]
        if style_image is not None:
            parts.append(_inline_part(style_image))

        logger.info(
            "synthesize_prompt aspect=%s lighting=%s camera=%s style_image=%s",
            settings.aspect_ratio.value,
            settings.lighting_style.value,
            settings.camera_perspective.value,
            style_image is not None,
        )
        data = self._post(
            self.config.prompt_model,
            {"contents": [{"role": "user", "parts": parts}]},
            "prompt generation",
        )

        text_parts = [p for p in _candidate_parts(data) if isinstance(p.get("text"), str) and not p.get("thought")]
        text = "".join(p["text"] for p in text_parts)
        text = text.strip()
        if not text:
            logger.error("The model returned an empty prompt")
            raise UpstreamError("An unexpected error occurred during prompt generation. The model returned an empty prompt.")
        return text

    def edit_image(
        self,
        product_image: EncodedImage,
        prompt: str,
        style_image: Optional[EncodedImage] = None,
    ) -> EncodedImage:
        parts: List[Dict[str, Any]] = [_inline_part(product_image), {"text": prompt}]
        if style_image is not None:
            parts.append(_inline_part(style_image))

        logger.info(
            "edit_image product=%s %s bytes prompt_len=%s style_image=%s",
            product_image.mime_type, len(product_image.data), len(prompt), style_image is not None,
        )
        data = self._post(
            self.config.image_model,
            {
                "contents": [{"role": "user", "parts": parts}],
                "generationConfig": {"responseModalities": ["IMAGE", "TEXT"]},
            },
            "image generation",
        )

        for p in _candidate_parts(data):
            inline = p.get("inlineData")
            if not isinstance(inline, dict) or not str(inline.get("mimeType", "")).startswith("image/"):
                continue
            try:
                raw = base64.b64decode(inline.get("data", ""))
            except (binascii.Error, ValueError):
                logger.error("Model image part is not valid base64")
                continue
            if raw:
                return EncodedImage(data=raw, mime_type=inline["mimeType"])

        logger.error("No image returned from model")
        raise NoImageReturned(
            "The AI model did not return an image. Try adjusting your prompt or using a different image."
        )
