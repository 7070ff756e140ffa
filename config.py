# --- config.py ---
import os
from typing import Tuple

from dotenv import load_dotenv

# Carga variables de entorno desde .env
load_dotenv()

# --- Model Configuration ---
# Directorio donde se guardan los modelos ONNX descargados
MODELS_DIR: str = os.getenv("APP_MODELS_DIR", "models")
# Nombre del archivo del modelo visual (encoder de imágenes CLIP ViT-B/32)
VISUAL_MODEL_FILENAME: str = os.getenv(
    "APP_VISUAL_MODEL_FILENAME", "clip-vit-b32-vision.onnx"
)
# URL de descarga del modelo visual
VISUAL_MODEL_URL: str = os.getenv(
    "APP_VISUAL_MODEL_URL",
    "https://huggingface.co/Qdrant/clip-ViT-B-32-vision/resolve/main/model.onnx",
)
# Hilos internos de ONNX Runtime por operador (0 = valor por defecto del runtime)
INTRA_OP_THREADS: int = int(os.getenv("APP_INTRA_OP_THREADS", "0"))
# Tiempo máximo (segundos) para cargar el modelo (0 = sin límite)
MODEL_LOAD_TIMEOUT: float = float(os.getenv("APP_MODEL_LOAD_TIMEOUT", "0"))

# --- Image Processing Configuration ---
# Formatos raster que Pillow puede decodificar
IMAGE_EXTENSIONS: Tuple[str, ...] = (
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".tif", ".tiff", ".tga", ".pbm",
)
# Lado del tensor canónico que espera el encoder (S x S)
IMAGE_SIZE: int = int(os.getenv("APP_IMAGE_SIZE", "224"))
# Número de hilos para construir descriptores en paralelo
MAX_WORKERS: int = int(os.getenv("APP_MAX_WORKERS", str(min(8, os.cpu_count() or 1))))

# --- Search Configuration ---
# Umbral de similitud coseno (se incluyen solo puntuaciones estrictamente mayores)
SIMILARITY_THRESHOLD: float = float(os.getenv("APP_SIMILARITY_THRESHOLD", "0.80"))

# --- Download Configuration ---
DOWNLOAD_TIMEOUT: float = float(os.getenv("APP_DOWNLOAD_TIMEOUT", "600"))
DOWNLOAD_MAX_ATTEMPTS: int = int(os.getenv("APP_DOWNLOAD_MAX_ATTEMPTS", "3"))
USER_AGENT: str = os.getenv("APP_USER_AGENT", "visual-duplicate-finder/0.1")

# --- Logging Configuration ---
# Nivel de logging (DEBUG, INFO, WARNING, ERROR, CRITICAL)
LOG_LEVEL: str = os.getenv("APP_LOG_LEVEL", "INFO").upper()

# --- Validation ---
if LOG_LEVEL not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
    print(f"Warning: Invalid LOG_LEVEL '{LOG_LEVEL}' in config/env. Defaulting to INFO.")
    LOG_LEVEL = "INFO"
if IMAGE_SIZE <= 0:
    print(f"Warning: Invalid IMAGE_SIZE '{IMAGE_SIZE}' in config/env. Defaulting to 224.")
    IMAGE_SIZE = 224
if not -1.0 <= SIMILARITY_THRESHOLD <= 1.0:
    print(f"Warning: SIMILARITY_THRESHOLD {SIMILARITY_THRESHOLD} outside [-1, 1]. Defaulting to 0.80.")
    SIMILARITY_THRESHOLD = 0.80
if MAX_WORKERS < 1:
    print(f"Warning: Invalid MAX_WORKERS '{MAX_WORKERS}' in config/env. Defaulting to 1.")
    MAX_WORKERS = 1
if DOWNLOAD_MAX_ATTEMPTS < 1:
    DOWNLOAD_MAX_ATTEMPTS = 1
