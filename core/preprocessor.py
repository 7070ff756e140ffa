# core/preprocessor.py
import logging
from typing import Sequence, Tuple

import numpy as np
from PIL import Image

from core.image_processor import decode_image

logger = logging.getLogger(__name__)

# Per-channel statistics of the CLIP training set (R, G, B).
CLIP_MEAN: Tuple[float, float, float] = (0.48145466, 0.4578275, 0.40821073)
CLIP_STD: Tuple[float, float, float] = (0.26862954, 0.26130258, 0.27577711)


class Preprocessor:
    """
    Turns a decoded image into the canonical tensor expected by the encoder.

    The tensor is float32 with shape ``[1, 3, S, S]`` (batch, channel,
    height, width) and every element equals ``(raw / 255 - mean_c) / std_c``.

    Attributes:
        image_size: Side ``S`` of the square output.
        mean: Per-channel mean (R, G, B).
        std: Per-channel standard deviation (R, G, B).
    """

    def __init__(
        self,
        image_size: int,
        mean: Sequence[float] = CLIP_MEAN,
        std: Sequence[float] = CLIP_STD,
    ):
        if image_size <= 0:
            raise ValueError(f"image_size must be positive, got {image_size}")
        if len(mean) != 3 or len(std) != 3:
            raise ValueError("mean and std must have exactly 3 values (R, G, B).")
        if any(s <= 0 for s in std):
            raise ValueError("std values must be positive.")

        self.image_size = image_size
        self.mean = tuple(float(m) for m in mean)
        self.std = tuple(float(s) for s in std)
        self._mean = np.asarray(self.mean, dtype=np.float32)
        self._std = np.asarray(self.std, dtype=np.float32)

    def resize_and_crop(self, image: Image.Image) -> Image.Image:
        """
        Scales the shorter side to ``S`` (keeping the aspect ratio) and
        center-crops the longer side down to ``S``.
        """
        size = self.image_size
        width, height = image.size
        if width <= 0 or height <= 0:
            raise ValueError(f"Image has invalid dimensions {width}x{height}.")

        scale = size / min(width, height)
        new_width = max(size, int(round(width * scale)))
        new_height = max(size, int(round(height * scale)))
        if (new_width, new_height) != (width, height):
            image = image.resize((new_width, new_height), Image.Resampling.BICUBIC)

        left = (new_width - size) // 2
        top = (new_height - size) // 2
        return image.crop((left, top, left + size, top + size))

    def prepare(self, image: Image.Image) -> np.ndarray:
        """
        Builds the canonical tensor for one image.

        Args:
            image: A decoded PIL image (converted to RGB if needed).

        Returns:
            A C-contiguous float32 array of shape ``[1, 3, S, S]``.
        """
        if not isinstance(image, Image.Image):
            raise TypeError(f"prepare expects a PIL Image, got {type(image).__name__}")
        if image.mode != "RGB":
            image = image.convert("RGB")

        cropped = self.resize_and_crop(image)
        pixels = np.asarray(cropped, dtype=np.float32) / 255.0  # H x W x C
        normalized = (pixels - self._mean) / self._std
        tensor = np.ascontiguousarray(normalized.transpose(2, 0, 1)[np.newaxis, ...], dtype=np.float32)
        return tensor

    def prepare_file(self, image_path: str) -> np.ndarray:
        """Decodes ``image_path`` and prepares it. Raises ImageDecodeError on bad input."""
        return self.prepare(decode_image(image_path))
