"""
Image Processing Module - The "Censor" Engine

Handles the visual surgery on matched faces:
- Black box overlay
- Adaptive pixelation (mosaic effect)

Pixelation block size follows the face: small faces get small blocks,
large faces get large ones, so the censoring strength stays roughly
constant relative to the face. The block size is then capped relative to
the whole image.
"""

import io
import math
import base64
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple

from PIL import Image, ImageDraw, ImageOps

# Register HEIF/HEIC opener for PIL (Apple photo support)
try:
    import pillow_heif
    pillow_heif.register_heif_opener()
except ImportError:
    pass


class CensorMode(str, Enum):
    """Available censorship methods."""
    BLACK = "black"
    PIXELATED = "pixelated"


@dataclass(frozen=True)
class PixelationParams:
    block_ratio: float = 0.12      # block size relative to the face
    max_block_ratio: float = 0.08  # block cap relative to the image
    min_block: int = 2


def js_round(value: float) -> int:
    """Round half up, like Math.round."""
    return math.floor(value + 0.5)


def clamp_box(box) -> Tuple[int, int, int, int]:
    """Snap a float box to integer pixels: origin >= 0, size >= 1."""
    x = max(0, math.floor(box.x))
    y = max(0, math.floor(box.y))
    width = max(1, math.floor(box.width))
    height = max(1, math.floor(box.height))
    return x, y, width, height


def compute_block_size(
    width: int,
    height: int,
    image_width: Optional[int] = None,
    image_height: Optional[int] = None,
    params: PixelationParams = PixelationParams(),
) -> int:
    """
    Pixel block size for a face of ``width`` x ``height``.

    Missing image dimensions fall back to the face's own size.
    """
    face_size = max(width, height)
    block = max(params.min_block, js_round(face_size * params.block_ratio))

    image_max_dim = max(image_width or width, image_height or height)
    max_block = max(params.min_block, js_round(image_max_dim * params.max_block_ratio))

    return min(block, max_block)


def compute_grid(width: int, height: int, block: int) -> Tuple[int, int]:
    """Size of the downsampled grid the region is squeezed into."""
    return (
        max(1, math.ceil(width / block)),
        max(1, math.ceil(height / block)),
    )


def apply_black_box(surface: Image.Image, box) -> None:
    """Fill the box with opaque black."""
    x0 = math.floor(box.x)
    y0 = math.floor(box.y)
    x1 = math.ceil(box.x + box.width) - 1
    y1 = math.ceil(box.y + box.height) - 1
    if x1 < x0 or y1 < y0:
        return

    draw = ImageDraw.Draw(surface)
    draw.rectangle([x0, y0, x1, y1], fill="black")


def apply_pixelation(
    surface: Image.Image,
    source: Image.Image,
    box,
    params: PixelationParams = PixelationParams(),
) -> None:
    """Replace the box with a blocky approximation of the source pixels."""
    x, y, width, height = clamp_box(box)

    image_width = getattr(source, "width", None)
    image_height = getattr(source, "height", None)
    block = compute_block_size(width, height, image_width, image_height, params)
    grid_w, grid_h = compute_grid(width, height, block)

    # Area outside the source stays transparent and is masked out below
    region = source.convert("RGBA").crop((x, y, x + width, y + height))

    # NEAREST at both stages; any smoothing turns the blocks into blur
    tiny = region.resize((grid_w, grid_h), Image.Resampling.NEAREST)
    pixelated = tiny.resize((width, height), Image.Resampling.NEAREST)

    surface.paste(pixelated, (x, y), mask=pixelated)


def censor(
    surface: Image.Image,
    source: Image.Image,
    box,
    mode: CensorMode,
    params: PixelationParams = PixelationParams(),
) -> None:
    """Censor one face box on ``surface`` in place."""
    mode = CensorMode(mode)
    if mode == CensorMode.BLACK:
        apply_black_box(surface, box)
    else:
        apply_pixelation(surface, source, box, params)


def open_image(image_bytes: bytes) -> Image.Image:
    """Decode image bytes, honouring EXIF orientation."""
    img = Image.open(io.BytesIO(image_bytes))
    img = ImageOps.exif_transpose(img)
    if img.mode != "RGB":
        img = img.convert("RGB")
    return img


class ImageProcessor:
    """
    Core image processing engine.

    Takes an image and face boxes, returns a censored copy.
    The source image is never modified.
    """

    def __init__(self, params: PixelationParams = PixelationParams()):
        self.params = params

    def render(
        self,
        image_bytes: bytes,
        boxes: Iterable,
        mode: CensorMode = CensorMode.PIXELATED,
    ) -> Image.Image:
        source = open_image(image_bytes)
        return self.render_image(source, boxes, mode)

    def render_image(
        self,
        source: Image.Image,
        boxes: Iterable,
        mode: CensorMode = CensorMode.PIXELATED,
    ) -> Image.Image:
        surface = source.copy()
        for box in boxes:
            censor(surface, source, box, mode, self.params)
        return surface


# ============================================================================
# Utility Functions
# ============================================================================

def to_png_bytes(img: Image.Image) -> bytes:
    output_buffer = io.BytesIO()
    img.save(output_buffer, format="PNG")
    return output_buffer.getvalue()


def image_to_base64(image_bytes: bytes, format: str = "png") -> str:
    """Convert image bytes to base64 data URL."""
    b64 = base64.b64encode(image_bytes).decode('utf-8')
    return f"data:image/{format};base64,{b64}"
