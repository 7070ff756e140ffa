class ImageSimilarityError(Exception):
    """Clase base para excepciones en esta aplicación."""


class InitializationError(ImageSimilarityError):
    """Error durante la inicialización de componentes."""


class ModelLoadError(InitializationError):
    """El modelo no existe, está corrupto o no es compatible con el runtime."""


class ModelDownloadError(ImageSimilarityError):
    """Error al descargar un artefacto de modelo."""


class ImageDecodeError(ImageSimilarityError):
    """El archivo no se pudo decodificar como imagen raster."""


class InferenceError(ImageSimilarityError):
    """El modelo devolvió una salida con rango o longitud inesperados."""


class DimensionMismatchError(ImageSimilarityError):
    """Se intentaron comparar embeddings de distinta dimensión."""
