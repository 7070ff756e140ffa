# --- app/cli_handlers.py ---
import json
import logging
import os
import time
from argparse import Namespace
from typing import List

from app import factory, searching
from app.exceptions import (
    DimensionMismatchError,
    ImageDecodeError,
    InferenceError,
    ModelDownloadError,
    ModelLoadError,
)
from app.models import SimilarityReport

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


def handle_download(args: Namespace) -> int:
    """Maneja --download-only y la descarga previa a la búsqueda."""
    logger.info("--- ACTION: Ensuring visual model is available ---")
    try:
        path = factory.ensure_visual_model(args.model_path)
        logger.info(f"Visual model ready at: {path}")
        return EXIT_OK
    except ModelDownloadError as e:
        logger.error(f"Model download failed: {e}")
        return EXIT_FAILURE


def render_report(report: SimilarityReport) -> List[str]:
    """Formats results as 'source | target | score' lines (score with 6 decimals)."""
    lines = []
    for source, target, score in (result.as_tuple() for result in report.results):
        lines.append(f"{os.path.basename(source)} | {os.path.basename(target)} | {score:.6f}")
    return lines


def write_json_report(report: SimilarityReport, output_path: str):
    payload = {
        "status": report.status.value,
        "threshold": report.threshold,
        "candidates_found": report.candidates_found,
        "results": [
            {"source": source, "target": target, "similarity": score}
            for source, target, score in (result.as_tuple() for result in report.results)
        ],
        "skipped": [
            {"path": failure.path, "error": failure.error_type, "reason": failure.reason}
            for failure in report.failures
        ],
    }
    with open(output_path, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)
    logger.info(f"Results saved to: {output_path}")


def handle_search(args: Namespace) -> int:
    """Maneja --reference/--target-dir: busca imágenes similares y muestra la tabla."""
    logger.info(f"--- ACTION: Similarity search for '{args.reference}' in '{args.target_dir}' ---")
    if not os.path.isfile(args.reference):
        logger.error(f"Reference image not found: '{args.reference}'")
        return EXIT_FAILURE
    if not os.path.isdir(args.target_dir):
        logger.error(f"Target directory not found: '{args.target_dir}'")
        return EXIT_FAILURE

    try:
        preprocessor = factory.create_preprocessor()
        engine = factory.create_similarity_engine(args.threshold)
        start_time = time.time()
        with factory.create_encoder(args.model_path, image_size=preprocessor.image_size) as encoder:
            report = searching.find_similar_images(
                reference_path=args.reference,
                target_dir=args.target_dir,
                preprocessor=preprocessor,
                encoder=encoder,
                engine=engine,
                max_workers=args.workers,
                show_progress=True,
            )
        logger.info(f"Search completed in {time.time() - start_time:.2f}s.")
    except ModelLoadError as e:
        logger.error(f"Cannot run search without a usable model: {e}")
        return EXIT_FAILURE
    except (ImageDecodeError, InferenceError) as e:
        logger.error(f"Reference image is not usable: {e}")
        return EXIT_FAILURE
    except DimensionMismatchError as e:
        logger.error(f"Comparison aborted, inconsistent embedding dimensions: {e}")
        return EXIT_FAILURE

    logger.info(searching.describe_report(report))
    for line in render_report(report):
        logger.info(f"  {line}")
    if report.failures:
        logger.warning(f"Skipped {len(report.failures)} unreadable images.")
    if args.output:
        try:
            write_json_report(report, args.output)
        except OSError as e:
            logger.error(f"Could not write results to '{args.output}': {e}")
            return EXIT_FAILURE
    return EXIT_OK
