import logging
import sys
from typing import Optional

import config


def setup_logging(level: Optional[str] = None):
    """
    Configura el logging básico para la aplicación.

    Utiliza el nivel recibido o, si no se indica, el definido en la
    configuración (config.LOG_LEVEL) y dirige la salida a stdout.
    """
    level_name = (level or config.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        force=True,
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("onnxruntime").setLevel(logging.WARNING)
    logging.info(
        f"Logging configurado a nivel: {logging.getLevelName(log_level)}"
    )
