# --- app/factory.py ---
import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Optional

import config
from app.exceptions import ModelLoadError
from core.downloader import ModelDownloader
from core.encoder import ClipImageEncoder
from core.preprocessor import Preprocessor
from core.similarity import SimilarityEngine

logger = logging.getLogger(__name__)


def default_model_path() -> str:
    return os.path.abspath(os.path.join(config.MODELS_DIR, config.VISUAL_MODEL_FILENAME))


def create_preprocessor(image_size: int = config.IMAGE_SIZE) -> Preprocessor:
    """Preprocessor for the canonical [1, 3, S, S] CLIP tensor."""
    return Preprocessor(image_size=image_size)


def create_similarity_engine(threshold: float = config.SIMILARITY_THRESHOLD) -> SimilarityEngine:
    return SimilarityEngine(threshold=threshold)


def create_downloader() -> ModelDownloader:
    return ModelDownloader(
        user_agent=config.USER_AGENT,
        timeout=config.DOWNLOAD_TIMEOUT,
        max_attempts=config.DOWNLOAD_MAX_ATTEMPTS,
    )


def ensure_visual_model(
    model_path: Optional[str] = None,
    url: str = config.VISUAL_MODEL_URL,
    downloader: Optional[ModelDownloader] = None,
) -> str:
    """Downloads the visual model if it is not on disk yet and returns its path."""
    target = model_path or default_model_path()
    return (downloader or create_downloader()).ensure_model(url, target)


def _close_when_loaded(future: Future):
    """Releases an encoder whose load finished after the caller gave up waiting."""
    if future.cancelled() or future.exception() is not None:
        return
    logger.warning("Model load completed after timeout; releasing the late session.")
    future.result().close()


def create_encoder(
    model_path: Optional[str] = None,
    image_size: int = config.IMAGE_SIZE,
    intra_op_threads: int = config.INTRA_OP_THREADS,
    load_timeout: float = config.MODEL_LOAD_TIMEOUT,
) -> ClipImageEncoder:
    """
    Crea el encoder de imágenes (carga bloqueante, una vez por ejecución).

    Args:
        model_path: Ruta al modelo ONNX (por defecto MODELS_DIR/VISUAL_MODEL_FILENAME).
        image_size: Lado S del tensor canónico.
        intra_op_threads: Hilos por operador para ONNX Runtime.
        load_timeout: Segundos máximos de espera (0 o negativo = sin límite).
            La carga en sí no se puede cancelar; al expirar se informa como
            ModelLoadError y la sesión tardía se libera al terminar.

    Raises:
        ModelLoadError: Si la carga falla o supera ``load_timeout``.
    """
    path = model_path or default_model_path()
    logger.info(f"Creating ClipImageEncoder for model: {path} (image size {image_size})...")

    if not load_timeout or load_timeout <= 0:
        return ClipImageEncoder(path, image_size=image_size, intra_op_threads=intra_op_threads)

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="model-load")
    future = executor.submit(ClipImageEncoder, path, image_size, intra_op_threads)
    try:
        return future.result(timeout=load_timeout)
    except FutureTimeoutError as e:
        future.add_done_callback(_close_when_loaded)
        msg = f"Model load exceeded {load_timeout:.1f}s: {path}"
        logger.error(msg)
        raise ModelLoadError(msg) from e
    finally:
        executor.shutdown(wait=False)
