# app/descriptors.py
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Tuple, Union

from tqdm import tqdm

from app.exceptions import ImageDecodeError, InferenceError, InitializationError
from app.models import DescriptorBatch, DescriptorFailure
from core.encoder import ClipImageEncoder
from core.image_processor import is_image_file
from core.models import ImageDescriptor
from core.preprocessor import Preprocessor

logger = logging.getLogger(__name__)

_Outcome = Tuple[str, Union[ImageDescriptor, DescriptorFailure]]


def create_descriptor(
    image_path: str,
    preprocessor: Preprocessor,
    encoder: ClipImageEncoder,
) -> ImageDescriptor:
    """
    Builds the descriptor of one image: decode → tensor → embedding → normalize.

    Args:
        image_path: Path to the image file.
        preprocessor: Produces the canonical tensor.
        encoder: Loaded encoder shared by the whole run.

    Returns:
        A new ImageDescriptor with a unit-norm embedding.

    Raises:
        ImageDecodeError: If the path is not a supported image or cannot be decoded.
        InferenceError: If the model output is unusable.
    """
    if not is_image_file(image_path):
        raise ImageDecodeError(f"File is not a supported image: {image_path}")

    tensor = preprocessor.prepare_file(image_path)
    raw_embedding = encoder.extract(tensor)
    return ImageDescriptor.from_raw_embedding(image_path, raw_embedding)


def _describe_isolated(
    image_path: str, preprocessor: Preprocessor, encoder: ClipImageEncoder
) -> _Outcome:
    """Per-image wrapper: expected per-image failures become DescriptorFailure values."""
    try:
        return image_path, create_descriptor(image_path, preprocessor, encoder)
    except ImageDecodeError as e:
        logger.warning(f"Skipping undecodable image {image_path}: {e}")
        return image_path, DescriptorFailure(image_path, str(e), "ImageDecodeError")
    except InferenceError as e:
        logger.warning(f"Skipping image with unusable embedding {image_path}: {e}")
        return image_path, DescriptorFailure(image_path, str(e), "InferenceError")


def build_descriptors(
    image_paths: Sequence[str],
    preprocessor: Preprocessor,
    encoder: ClipImageEncoder,
    max_workers: int = 1,
    show_progress: bool = False,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> DescriptorBatch:
    """
    Builds descriptors for many images on a bounded thread pool.

    Each worker decodes only the image it is processing, so at most
    ``max_workers`` decoded images are held in memory at once. A bad file is
    logged and recorded in ``failures``; it never aborts the batch.

    Args:
        image_paths: Paths to process.
        preprocessor: Shared, stateless preprocessor.
        encoder: Shared encoder (its session supports concurrent runs).
        max_workers: Upper bound on concurrent workers.
        show_progress: Show a tqdm progress bar.
        progress_callback: Optional function called with (processed, total).

    Returns:
        DescriptorBatch with descriptors in input order plus the failures.

    Raises:
        InitializationError: If the encoder session is already closed.
    """
    total = len(image_paths)
    if total == 0:
        logger.debug("build_descriptors received an empty list of paths.")
        return DescriptorBatch()
    if not encoder.is_ready:
        raise InitializationError("Encoder session is closed; cannot build descriptors.")

    workers = max(1, min(max_workers, total))
    logger.info(f"Building descriptors for {total} images with {workers} workers...")
    start_time = time.time()

    descriptors: List[ImageDescriptor] = []
    failures: List[DescriptorFailure] = []

    with ThreadPoolExecutor(max_workers=workers) as executor:
        outcomes = executor.map(lambda path: _describe_isolated(path, preprocessor, encoder), image_paths)
        for processed, (_, outcome) in enumerate(
            tqdm(outcomes, total=total, desc="Encoding images", disable=not show_progress), start=1
        ):
            if isinstance(outcome, ImageDescriptor):
                descriptors.append(outcome)
            else:
                failures.append(outcome)
            if progress_callback:
                progress_callback(processed, total)

    elapsed = time.time() - start_time
    logger.info(
        f"Descriptor construction finished in {elapsed:.2f}s. Success: {len(descriptors)}, Failed: {len(failures)}")
    if failures:
        logger.warning(f"{len(failures)} images were skipped (see previous warnings).")

    return DescriptorBatch(descriptors=descriptors, failures=failures)
