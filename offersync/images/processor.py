"""AI image regeneration with a local re-encode fallback."""

from __future__ import annotations

import io
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Final

import httpx
from PIL import Image, UnidentifiedImageError
from starlette.concurrency import run_in_threadpool

from offersync.ai.policy import ProviderPolicy, call_with_retry
from offersync.ai.providers.base import ImageInput, ImageModel
from offersync.images.ssrf import ValidatedUrl, validate_public_url_async
from offersync.utils.ids import generate_file_token

logger = logging.getLogger(__name__)

MAX_REDIRECTS: Final[int] = 5
DEFAULT_EDIT_TYPE: Final[str] = "enhance"

EDIT_PROMPTS: Final[dict[str, str]] = {
  "remove_bg": "Remove the background from this image. The background must be completely transparent. Ensure perfect edge detection around the subject, handling fine details precisely.",
  "enhance": "Transform this image into a high-end, professional e-commerce photograph in the style of a home furnishings catalog. Isolate the main product and place it in a clean, minimalist, beautifully lit studio environment that suits the product type. Use soft studio lighting and realistic ground shadows. The result must be photorealistic and highlight the product's quality.",
  "blur_background": "Keep the main subject in focus and sharp, but blur the background significantly to create a professional depth-of-field effect. The background should be softly blurred (bokeh) while the subject remains crystal clear.",
  "ai_square": "Transform this image into a perfect square (1:1 aspect ratio). If the image is not square, extend the canvas by generating matching background content. Keep the product centered and fully visible, and make the extended areas blend seamlessly with the original.",
  "crop_center": "Crop this image to a perfect square centered on the main product. Remove excess background from the longer side while keeping the product fully visible and centered.",
  "resize_square": "Resize this image to a perfect square format. Keep the main product centered and fully visible. If needed, extend or fill the background naturally to make the image square.",
  "adjust_brightness": "Increase the brightness of this image so it looks brighter and well-lit. The product should be clearly visible with professional lighting. Keep the image natural and do not overexpose.",
  "adjust_contrast": "Increase the contrast of this image so the product stands out more. Darks should be deeper and lights brighter while keeping a natural look.",
  "sharpen": "Sharpen this image so the product details are crisper and more defined. Enhance fine textures and edges without artifacts or over-sharpening.",
  "saturate": "Increase the color saturation of this image so the product colors are more vivid and appealing for e-commerce, without looking unrealistic.",
  "grayscale": "Convert this image to a professional black and white photograph. Keep good contrast and tonal range so product details remain visible.",
  "vintage": "Apply a professional vintage effect to this image with warm, slightly desaturated tones and a subtle sepia tint, keeping the product clearly visible.",
}

REPLACE_BACKGROUND_PROMPT: Final[str] = "Create a professional e-commerce photo. Take the product from the first image and place it realistically onto the background from the second image. Adjust the lighting on the product to match the background environment, with realistic shadows and reflections on the surface."


class ImageSourceError(RuntimeError):
  """Raised when the source or background image cannot be obtained."""


@dataclass(frozen=True)
class ProcessedImage:
  processed_url: str
  local_path: Path
  fallback_used: bool = False


def reencode_png(data: bytes) -> bytes:
  """Decode any Pillow-readable image and write it back as an optimized PNG."""
  image = Image.open(io.BytesIO(data))
  converted = image.convert("RGBA") if image.mode not in {"RGB", "RGBA", "L", "LA"} else image
  output = io.BytesIO()
  converted.save(output, format="PNG", optimize=True, compress_level=9)
  return output.getvalue()


def _sniff_mime(data: bytes) -> str:
  try:
    with Image.open(io.BytesIO(data)) as image:
      return image.get_format_mimetype() or "image/png"
  except UnidentifiedImageError as exc:
    raise ImageSourceError("Source file is not a readable image") from exc


def edit_prompt(edit_type: str | None) -> str:
  return EDIT_PROMPTS.get(edit_type or DEFAULT_EDIT_TYPE, EDIT_PROMPTS[DEFAULT_EDIT_TYPE])


class ImageProcessor:
  """Resolves an image, asks the image model to edit it, and stores the result under uploads/processed."""

  def __init__(self, *, upload_root: Path | str = ".", image_model: ImageModel | None = None, policy: ProviderPolicy | None = None, download_timeout_seconds: float = 60.0, max_download_bytes: int = 50 * 1024 * 1024, client_factory: Callable[[], httpx.AsyncClient] | None = None, url_validator: Callable[[str], Awaitable[ValidatedUrl]] = validate_public_url_async) -> None:
    self._uploads_dir = (Path(upload_root) / "uploads").resolve()
    self._image_model = image_model
    self._policy = policy or ProviderPolicy(timeout_seconds=180.0)
    self._download_timeout = download_timeout_seconds
    self._max_bytes = max_download_bytes
    self._client_factory = client_factory or self._default_client
    self._validate_url = url_validator

  def _default_client(self) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=self._download_timeout, follow_redirects=False, trust_env=False)

  @property
  def temp_dir(self) -> Path:
    return self._uploads_dir / "temp"

  @property
  def processed_dir(self) -> Path:
    return self._uploads_dir / "processed"

  async def _download(self, url: str, cleanup: list[Path]) -> Path:
    self.temp_dir.mkdir(parents=True, exist_ok=True)
    target = self.temp_dir / f"downloaded-{generate_file_token()}.png"
    current = url

    async with self._client_factory() as client:
      for _ in range(MAX_REDIRECTS + 1):
        # Each hop is validated so a public host cannot redirect into the internal network.
        await self._validate_url(current)
        async with client.stream("GET", current) as response:
          if response.is_redirect:
            location = response.headers.get("location")
            if not location:
              raise ImageSourceError("Redirect without a Location header")
            current = str(response.url.join(location))
            continue
          if not response.is_success:
            raise ImageSourceError(f"Image download failed with HTTP {response.status_code}")

          declared = response.headers.get("content-length")
          if declared and declared.isdigit() and int(declared) > self._max_bytes:
            raise ImageSourceError("Image exceeds the maximum download size")

          cleanup.append(target)
          received = 0
          with target.open("wb") as handle:
            async for chunk in response.aiter_bytes():
              received += len(chunk)
              if received > self._max_bytes:
                raise ImageSourceError("Image exceeds the maximum download size")
              handle.write(chunk)
          return target

    raise ImageSourceError("Too many redirects while downloading image")

  async def _resolve(self, image_url: str, cleanup: list[Path]) -> Path:
    if image_url.startswith(("/uploads/", "uploads/")):
      path = (self._uploads_dir.parent / image_url.lstrip("/")).resolve()
      if not path.is_relative_to(self._uploads_dir):
        raise ImageSourceError("Image path escapes the uploads directory")
      if not path.is_file():
        raise ImageSourceError(f"Image file not found: {image_url}")
      return path
    if image_url.startswith(("http://", "https://")):
      return await self._download(image_url, cleanup)
    raise ImageSourceError("Invalid image URL")

  async def _generate(self, model: ImageModel, instructions: str, images: list[ImageInput]) -> bytes:
    data = await call_with_retry(lambda: model.generate_image(instructions, images), self._policy, label=f"image:{getattr(model, 'name', 'model')}")
    return await run_in_threadpool(reencode_png, data)

  async def process(self, image_url: str, edit_type: str = DEFAULT_EDIT_TYPE, background_image_url: str | None = None) -> ProcessedImage:
    cleanup: list[Path] = []
    try:
      source = await self._resolve(image_url, cleanup)
      source_bytes = await run_in_threadpool(source.read_bytes)
      images = [ImageInput(data=source_bytes, mime_type=_sniff_mime(source_bytes))]

      if edit_type == "replace_bg":
        if not background_image_url:
          raise ImageSourceError("Background image required for replace_bg")
        background = await self._resolve(background_image_url, cleanup)
        background_bytes = await run_in_threadpool(background.read_bytes)
        images.append(ImageInput(data=background_bytes, mime_type=_sniff_mime(background_bytes)))
        instructions = REPLACE_BACKGROUND_PROMPT
      else:
        instructions = edit_prompt(edit_type)

      output: bytes | None = None
      model = self._image_model
      if model is None:
        logger.info("No image model configured; re-encoding %s", image_url)
      else:
        try:
          output = await self._generate(model, instructions, images)
        except Exception as exc:  # noqa: BLE001
          # Provider trouble degrades to a plain re-encode instead of failing the offer.
          logger.warning("Image model failed for %s (%s); falling back to re-encode", image_url, exc)

      fallback_used = output is None
      if output is None:
        output = await run_in_threadpool(reencode_png, source_bytes)

      self.processed_dir.mkdir(parents=True, exist_ok=True)
      name = f"processed-{generate_file_token()}.png"
      local_path = self.processed_dir / name
      await run_in_threadpool(local_path.write_bytes, output)
      return ProcessedImage(processed_url=f"/uploads/processed/{name}", local_path=local_path, fallback_used=fallback_used)
    finally:
      for path in cleanup:
        try:
          path.unlink(missing_ok=True)
        except OSError as exc:
          logger.error("Could not remove temporary image %s: %s", path, exc)
