# core/image_processor.py
import os
import numpy as np
from PIL import Image, UnidentifiedImageError, ExifTags, ImageOps
from typing import List, Sequence
import logging

from config import IMAGE_EXTENSIONS
from app.exceptions import ImageDecodeError

logger = logging.getLogger(__name__)

# --- EXIF Orientation Helper ---
# Cache the Orientation TAG ID
try:
    ORIENTATION_TAG_ID = next(k for k, v in ExifTags.TAGS.items() if v == "Orientation")
except StopIteration:
    ORIENTATION_TAG_ID = None
    logger.debug("EXIF Orientation Tag ID not found in Pillow's ExifTags.")


def correct_image_orientation(img: Image.Image) -> Image.Image:
    """
    Corrects the orientation of a PIL image based on its EXIF data.

    Args:
        img: The input PIL Image object.

    Returns:
        The orientation-corrected PIL Image object, or the original image
        if no EXIF orientation data is present or it cannot be applied.
    """
    if ORIENTATION_TAG_ID is None:
        logger.debug("Skipping orientation correction: Orientation tag ID not available.")
        return img

    try:
        corrected_img = ImageOps.exif_transpose(img)
        if corrected_img is not img:
            logger.debug("Applied EXIF orientation correction.")
        return corrected_img
    except (OSError, ValueError, KeyError) as e:
        # Malformed EXIF blocks are common; the pixels themselves are still usable.
        logger.warning(f"Could not apply EXIF orientation correction: {e}")
        return img


# --- Main Functions ---

def is_image_file(path: str, extensions: Sequence[str] = IMAGE_EXTENSIONS) -> bool:
    """Checks (case-insensitively) whether the path has a supported raster extension."""
    if not isinstance(path, str) or not path.strip():
        return False
    return os.path.splitext(path)[1].lower() in extensions


def find_image_files(
        directory_path: str, extensions: Sequence[str] = IMAGE_EXTENSIONS
) -> List[str]:
    """
    Recursively finds all image files in the specified directory.

    Symbolic links to directories are not followed and unreadable
    subdirectories are skipped.

    Args:
        directory_path: The path to the directory to search.
        extensions: Lower-case extensions (with dot) to accept.

    Returns:
        A sorted list of full paths to image files. Sorting keeps the
        candidate order (and therefore tie ordering in rankings) stable
        between runs.

    Raises:
        FileNotFoundError: If the directory does not exist.
    """
    if not isinstance(directory_path, str) or not directory_path.strip():
        raise FileNotFoundError("Invalid directory path provided (empty or not a string).")
    if not os.path.isdir(directory_path):
        logger.error(f"Directory not found or not accessible: {directory_path}")
        raise FileNotFoundError(f"Directory not found: {directory_path}")

    logger.info(f"Searching for images with extensions {tuple(extensions)} in: {directory_path}")
    image_files: List[str] = []
    files_scanned = 0

    def _on_walk_error(error: OSError):
        logger.warning(f"  Skipping inaccessible entry: {error}")

    for root, _, files in os.walk(directory_path, onerror=_on_walk_error):
        for filename in files:
            files_scanned += 1
            if not is_image_file(filename, extensions):
                continue
            full_path = os.path.join(root, filename)
            if os.path.isfile(full_path):
                image_files.append(full_path)
            else:
                logger.debug(f"  Skipping non-file entry: {full_path}")

    image_files.sort()
    if not image_files:
        logger.warning(
            f"No image files with supported extensions found in {directory_path} (Scanned {files_scanned} files).")
    else:
        logger.info(f"Found {len(image_files)} image files (Scanned {files_scanned} total files).")
    return image_files


def decode_image(image_path: str, apply_orientation_correction: bool = True) -> Image.Image:
    """
    Decodes an image file into an RGB PIL image.

    The pixel data is loaded eagerly so that truncated files fail here
    rather than later in the pipeline.

    Args:
        image_path: The full path to the image file.
        apply_orientation_correction: If True, applies the EXIF orientation.

    Returns:
        A fully loaded PIL Image in RGB mode.

    Raises:
        ImageDecodeError: If the file is missing, empty, corrupt or in an
            unsupported format.
    """
    if not isinstance(image_path, str) or not image_path:
        raise ImageDecodeError("Invalid image path (empty or not a string).")
    if not os.path.isfile(image_path):
        raise ImageDecodeError(f"Image file does not exist or is not a file: {image_path}")

    try:
        with Image.open(image_path) as opened:
            opened.load()
            img = opened
            if apply_orientation_correction:
                img = correct_image_orientation(img)
            img = _to_rgb(img, image_path)
    except UnidentifiedImageError as e:
        raise ImageDecodeError(
            f"Cannot identify image file (possibly corrupt or unsupported format): {image_path}") from e
    except Image.DecompressionBombError as e:
        raise ImageDecodeError(f"Image is too large to decode safely: {image_path}") from e
    except (OSError, ValueError, SyntaxError) as e:
        # Pillow reports truncated/broken streams as OSError, broken headers as SyntaxError.
        raise ImageDecodeError(f"Failed to decode image {image_path}: {e}") from e

    return img


def _to_rgb(img: Image.Image, image_path: str) -> Image.Image:
    """Converts any mode to RGB, compositing transparency onto white."""
    if img.mode == "RGB":
        return img.copy()

    logger.debug(f"Converting image '{os.path.basename(image_path)}' from mode {img.mode} to RGB.")
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    if img.mode == "I" or img.mode.startswith("I;16"):
        img = _high_bit_depth_to_l(img)
    return img.convert("RGB")


def _high_bit_depth_to_l(img: Image.Image) -> Image.Image:
    """
    Scales 16-bit grayscale (modes I;16* and I) down to 8 bits.

    Pillow's own conversion clips values above 255 instead of rescaling,
    which turns nearly every pixel of a 16-bit image white.
    """
    pixels = np.clip(np.asarray(img, dtype=np.int64), 0, 65535)
    return Image.fromarray((pixels >> 8).astype(np.uint8))
