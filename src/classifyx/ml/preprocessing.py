"""Image preprocessing: decode raw bytes into the classifier's input tensor.

The output is a float32 array of shape (1, H, W, 3) in RGB order with each
sample mapped through ``(value - mean) / scale``. With the defaults
(127.5 / 127.5) pixel values land in [-1, 1].
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from classifyx.ml.errors import DecodeError, UnknownImageFormatError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from classifyx.config import Settings

logger = logging.getLogger(__name__)

# Pillow format names for the hints callers tend to pass.
_FORMAT_ALIASES: dict[str, str] = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "gif": "GIF",
    "bmp": "BMP",
    "tif": "TIFF",
    "tiff": "TIFF",
    "webp": "WEBP",
}

# Single-band modes holding more than 8 bits per sample (16-bit PNG, TIFF).
_WIDE_MODES = frozenset({"I", "I;16", "I;16B", "I;16L"})


@dataclass(frozen=True)
class TensorSpec:
    """Spatial size and normalization the model was trained with."""

    height: int = 224
    width: int = 224
    mean: float = 127.5
    scale: float = 127.5

    @property
    def shape(self) -> tuple[int, int, int, int]:
        return (1, self.height, self.width, 3)


class TensorBuilder:
    """Decodes image bytes into normalized NHWC tensors."""

    def __init__(self, spec: TensorSpec | None = None, max_image_pixels: int = 100_000_000) -> None:
        self._spec = spec or TensorSpec()
        self._max_image_pixels = max_image_pixels

    @classmethod
    def from_settings(cls, settings: Settings) -> TensorBuilder:
        spec = TensorSpec(
            height=settings.input_size,
            width=settings.input_size,
            mean=settings.normalize_mean,
            scale=settings.normalize_scale,
        )
        return cls(spec, max_image_pixels=settings.max_image_pixels)

    @property
    def spec(self) -> TensorSpec:
        return self._spec

    def decode(self, image_bytes: bytes, format_hint: str = "jpeg") -> NDArray[np.float32]:
        """Decode an image buffer into a (1, H, W, 3) float32 tensor.

        Args:
            image_bytes: Raw file bytes. The format is detected from content.
            format_hint: Expected format, e.g. "jpeg". Only used for logging.

        Returns:
            Normalized tensor matching ``self.spec.shape``.

        Raises:
            UnknownImageFormatError: If the bytes are not a recognized image.
            DecodeError: If the image is corrupt or exceeds the pixel limit.
        """
        try:
            image = Image.open(io.BytesIO(image_bytes))
        except UnidentifiedImageError as err:
            raise UnknownImageFormatError("invalid image: unknown format") from err
        except (OSError, ValueError, Image.DecompressionBombError) as err:
            raise DecodeError(f"invalid image: {err}") from err

        with image:
            expected = _FORMAT_ALIASES.get(format_hint.lower().lstrip("."))
            if expected is not None and image.format != expected:
                logger.debug("Format hint %s does not match detected format %s", format_hint, image.format)

            width, height = image.size
            if width * height > self._max_image_pixels:
                raise DecodeError(
                    f"invalid image: {width}x{height} exceeds the limit of {self._max_image_pixels} pixels"
                )

            try:
                # JPEG only: let the decoder downscale by a power of two first.
                image.draft("RGB", (self._spec.width, self._spec.height))
                oriented = ImageOps.exif_transpose(image)
                if oriented.mode in _WIDE_MODES:
                    return self._wide_tensor(oriented)
                fitted = self._fit(oriented.convert("RGB"))
            except (OSError, ValueError, Image.DecompressionBombError) as err:
                raise DecodeError(f"invalid image: {err}") from err

        pixels = np.asarray(fitted, dtype=np.float32)
        tensor = (pixels - self._spec.mean) / self._spec.scale
        return tensor[np.newaxis, ...].astype(np.float32, copy=False)

    def _fit(self, image: Image.Image) -> Image.Image:
        return ImageOps.fit(
            image,
            (self._spec.width, self._spec.height),
            method=Image.Resampling.LANCZOS,
        )

    def _wide_tensor(self, image: Image.Image) -> NDArray[np.float32]:
        # convert("RGB") would clip 16-bit samples at 255, so resample as
        # float and keep the high byte of each sample instead.
        fitted = self._fit(image.convert("I").convert("F"))
        samples = np.clip(np.rint(np.asarray(fitted)), 0, 0xFFFF).astype(np.uint32)
        gray = convert_value(samples, self._spec.mean, self._spec.scale).astype(np.float32)
        return np.repeat(gray[np.newaxis, ..., np.newaxis], 3, axis=-1)


def convert_value(value: int | NDArray[np.uint32], mean: float = 127.5, scale: float = 127.5) -> float | NDArray:
    """Map 16-bit-per-channel samples to the model's input range.

    Only the high byte is significant, matching 8-bit decoding. Accepts a
    single sample or an integer array.
    """
    return ((value >> 8) - mean) / scale
