import logging
import os
import time

from app.descriptors import build_descriptors, create_descriptor
from app.models import SearchStatus, SimilarityReport
from core.encoder import ClipImageEncoder
from core.image_processor import find_image_files
from core.preprocessor import Preprocessor
from core.similarity import SimilarityEngine

logger = logging.getLogger(__name__)


def find_similar_images(
    reference_path: str,
    target_dir: str,
    preprocessor: Preprocessor,
    encoder: ClipImageEncoder,
    engine: SimilarityEngine,
    max_workers: int = 1,
    show_progress: bool = False,
) -> SimilarityReport:
    """
    Busca en ``target_dir`` imágenes similares a la imagen de referencia.

    Las identidades de los descriptores son rutas absolutas, de modo que la
    imagen de referencia nunca aparece como similar a sí misma aunque esté
    dentro de ``target_dir``.

    Args:
        reference_path: Imagen de referencia.
        target_dir: Directorio (recursivo) con las imágenes candidatas.
        preprocessor: Preprocessor configurado con el tamaño del modelo.
        encoder: Encoder cargado, compartido por todas las imágenes.
        engine: Motor de similitud con el umbral deseado.
        max_workers: Hilos para construir descriptores de candidatas.
        show_progress: Muestra barra de progreso tqdm.

    Returns:
        SimilarityReport. Su ``status`` distingue entre "no hay imágenes
        candidatas" y "ninguna supera el umbral".

    Raises:
        ImageDecodeError / InferenceError: Si la imagen de referencia no es utilizable.
        FileNotFoundError: Si ``target_dir`` no existe.
        DimensionMismatchError: Si las dimensiones de los embeddings no coinciden.
    """
    logger.info("--- Performing Image-to-Image Similarity Search ---")
    logger.info(f"  Reference Image: '{reference_path}'")
    logger.info(f"  Target Directory: '{target_dir}'")
    logger.info(f"  Similarity Threshold: {engine.threshold:.2f}")
    start_time = time.time()

    reference = create_descriptor(os.path.abspath(reference_path), preprocessor, encoder)
    logger.info(f"Reference image encoded (dim: {reference.dimension}).")

    candidate_paths = [os.path.abspath(p) for p in find_image_files(target_dir)]

    if not candidate_paths:
        logger.warning(f"No candidate images found in {target_dir}.")
        return SimilarityReport(reference=reference, threshold=engine.threshold)

    batch = build_descriptors(
        candidate_paths,
        preprocessor,
        encoder,
        max_workers=max_workers,
        show_progress=show_progress,
    )
    results = engine.rank(reference, batch.descriptors)

    report = SimilarityReport(
        reference=reference,
        threshold=engine.threshold,
        results=results,
        candidates_found=len(candidate_paths),
        failures=batch.failures,
    )
    if report.is_empty:
        logger.info("Search successful, but no images above the similarity threshold.")
    else:
        logger.info(f"Search successful. Found {report.count} similar images.")
    logger.info(f"--- Similarity Search Finished in {time.time() - start_time:.2f}s ---")
    return report


def describe_report(report: SimilarityReport) -> str:
    """One-line human summary of a report's outcome."""
    if report.status is SearchStatus.NO_CANDIDATES:
        return "There is no image in the target directory."
    if report.status is SearchStatus.NO_MATCHES:
        return (f"No images above similarity threshold {report.threshold:.2f} "
                f"({report.candidates_found} candidates checked).")
    return f"{report.count} similar images found ({report.candidates_found} candidates checked)."
