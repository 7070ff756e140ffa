# main.py
import argparse
import logging
import sys
import time
from typing import List, Optional

import config
from app import cli_handlers
from app.logging_config import setup_logging

logger = logging.getLogger(__name__)


# --- Argument Parsing ---
def setup_arg_parser() -> argparse.ArgumentParser:
    """Sets up and returns the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        description="Find images visually similar to a reference image (CLIP embeddings).",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("--reference", metavar="IMAGE_PATH",
                        help="Reference image to compare against.")
    parser.add_argument("--target-dir", metavar="DIR",
                        help="Directory searched recursively for candidate images.")
    parser.add_argument("--threshold", type=float, default=config.SIMILARITY_THRESHOLD,
                        help="Keep only images with similarity strictly above this value.")
    parser.add_argument("--model-path", default=None,
                        help="Path to the visual ONNX model (default: MODELS_DIR/VISUAL_MODEL_FILENAME).")
    parser.add_argument("--workers", type=int, default=config.MAX_WORKERS,
                        help="Number of worker threads used to encode candidates.")
    parser.add_argument("--output", metavar="JSON_PATH",
                        help="Also write the results to this JSON file.")
    parser.add_argument("--skip-download", action="store_true",
                        help="Do not try to download the model if it is missing.")
    parser.add_argument("--download-only", action="store_true",
                        help="Download the model and exit.")
    parser.add_argument("--log-level", default=config.LOG_LEVEL,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Logging level.")
    return parser


# --- Main Execution Logic ---
def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function for the CLI tool."""
    parser = setup_arg_parser()
    args = parser.parse_args(argv)

    if not args.download_only and not (args.reference and args.target_dir):
        parser.error("--reference and --target-dir are required (or use --download-only).")
    if not -1.0 <= args.threshold <= 1.0:
        parser.error("--threshold must be within [-1, 1].")
    if args.workers < 1:
        parser.error("--workers must be at least 1.")

    setup_logging(args.log_level)
    logger.info("--- Visual Duplicate Finder ---")
    start_time = time.time()

    exit_code = cli_handlers.EXIT_OK
    if not args.skip_download:
        exit_code = cli_handlers.handle_download(args)

    if exit_code == cli_handlers.EXIT_OK and not args.download_only:
        exit_code = cli_handlers.handle_search(args)

    logger.info(f"--- Total Execution Time: {time.time() - start_time:.2f} seconds ---")
    return exit_code


def run():
    """Console script entry point."""
    sys.exit(main())


# --- Script Entry Point ---
if __name__ == "__main__":
    run()
