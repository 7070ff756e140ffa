# core/encoder.py
import logging
import os
import threading
import time
from typing import List, Optional, Sequence, Union

import numpy as np
import onnxruntime as ort

from app.exceptions import InferenceError, ModelLoadError

logger = logging.getLogger(__name__)

Dim = Union[int, str, None]


def _is_dynamic(dim: Dim) -> bool:
    """Symbolic ('batch') or unknown (None) dimensions accept any size."""
    return not isinstance(dim, int) or dim <= 0


def _format_shape(shape: Sequence[Dim]) -> str:
    return "x".join(str(d) for d in shape)


class ClipImageEncoder:
    """
    Encoder de imágenes sobre una sesión de ONNX Runtime.

    Carga el modelo una sola vez, valida los metadatos de entrada/salida
    contra el tensor canónico y devuelve embeddings crudos (sin normalizar).
    La sesión es un recurso nativo: debe liberarse con ``close()`` o usando
    el encoder como context manager.

    ``InferenceSession.run`` es thread-safe, por lo que ``extract`` puede
    llamarse concurrentemente desde varios hilos sin bloqueo.

    Attributes:
        model_path: Ruta al archivo .onnx.
        image_size: Lado S del tensor de entrada [1, 3, S, S].
        input_name: Nombre de la entrada, leído de los metadatos del modelo.
        output_name: Nombre de la salida de embeddings, leído de los metadatos.
    """

    def __init__(
        self,
        model_path: str,
        image_size: int,
        intra_op_threads: int = 0,
        providers: Optional[List[str]] = None,
    ):
        """
        Inicializa el encoder cargando la sesión de inferencia.

        Args:
            model_path: Ruta al modelo ONNX.
            image_size: Lado S que produce el Preprocessor.
            intra_op_threads: Hilos por operador (0 = valor por defecto del runtime).
            providers: Execution providers de ONNX Runtime (por defecto CPU).

        Raises:
            ModelLoadError: Si el modelo no existe, está corrupto o sus
                metadatos no son compatibles.
        """
        self.model_path = model_path
        self.image_size = image_size
        self.input_name: Optional[str] = None
        self.output_name: Optional[str] = None
        self._session: Optional[ort.InferenceSession] = None
        self._embedding_dimension: Optional[int] = None
        self._dimension_lock = threading.Lock()

        logger.info(f"Initializing ClipImageEncoder with model: {self.model_path}")
        self._load_session(intra_op_threads, providers or ["CPUExecutionProvider"])

    # --- Lifecycle ---

    @property
    def is_ready(self) -> bool:
        return self._session is not None

    @property
    def embedding_dimension(self) -> Optional[int]:
        """D from the output metadata, or from the first extraction when dynamic."""
        return self._embedding_dimension

    def close(self):
        """Releases the inference session. Safe to call more than once."""
        if self._session is not None:
            logger.info(f"Releasing inference session for {os.path.basename(self.model_path)}.")
            self._session = None

    def __enter__(self) -> "ClipImageEncoder":
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False

    # --- Loading ---

    def _load_session(self, intra_op_threads: int, providers: List[str]):
        """Crea la sesión de ONNX Runtime y valida sus metadatos."""
        if not os.path.isfile(self.model_path):
            msg = f"Model file not found: {self.model_path}"
            logger.error(msg)
            raise ModelLoadError(msg)

        sess_options = ort.SessionOptions()
        sess_options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        sess_options.execution_mode = ort.ExecutionMode.ORT_PARALLEL
        if intra_op_threads > 0:
            sess_options.intra_op_num_threads = intra_op_threads

        start_time = time.time()
        try:
            session = ort.InferenceSession(self.model_path, sess_options=sess_options, providers=providers)
        except Exception as e:
            # onnxruntime raises its own pybind exception types for corrupt/incompatible graphs
            msg = f"Failed to load model '{self.model_path}': {e}"
            logger.error(msg)
            raise ModelLoadError(msg) from e

        self._validate_and_bind(session)
        self._session = session
        logger.info(
            f"Model loaded in {time.time() - start_time:.2f}s: {os.path.basename(self.model_path)} "
            f"(input '{self.input_name}', output '{self.output_name}', "
            f"dim {self._embedding_dimension or 'dynamic'})")

    def _validate_and_bind(self, session: ort.InferenceSession):
        """Checks the model metadata against the canonical tensor and picks the I/O names."""
        inputs = session.get_inputs()
        outputs = session.get_outputs()
        for meta in inputs:
            logger.debug(f"  Model input: {meta.name}: {_format_shape(meta.shape)} ({meta.type})")
        for meta in outputs:
            logger.debug(f"  Model output: {meta.name}: {_format_shape(meta.shape)} ({meta.type})")

        if not inputs:
            raise ModelLoadError(f"Model '{self.model_path}' declares no inputs.")
        if len(inputs) > 1:
            logger.warning(f"Model declares {len(inputs)} inputs; feeding only the first ('{inputs[0].name}').")

        image_input = inputs[0]
        shape = list(image_input.shape)
        expected = [1, 3, self.image_size, self.image_size]
        if image_input.type != "tensor(float)":
            raise ModelLoadError(
                f"Model input '{image_input.name}' has type {image_input.type}, expected tensor(float).")
        if len(shape) != 4 or any(
            not _is_dynamic(dim) and dim != want for dim, want in zip(shape, expected)
        ):
            raise ModelLoadError(
                f"Model input '{image_input.name}' has shape {_format_shape(shape)}, "
                f"incompatible with canonical tensor {_format_shape(expected)}.")

        embedding_output = next((meta for meta in outputs if len(meta.shape) in (1, 2)), None)
        if embedding_output is None:
            raise ModelLoadError(
                f"Model '{self.model_path}' has no rank-1 or rank-2 output to use as embedding.")

        self.input_name = image_input.name
        self.output_name = embedding_output.name
        last_dim = embedding_output.shape[-1]
        self._embedding_dimension = None if _is_dynamic(last_dim) else int(last_dim)

    # --- Inference ---

    def extract(self, tensor: np.ndarray) -> np.ndarray:
        """
        Runs the model on one canonical tensor.

        Args:
            tensor: float32 array of shape [1, 3, S, S].

        Returns:
            The raw (not normalized) embedding as a float32 vector of length D.

        Raises:
            ValueError: If the tensor shape does not match the encoder
                configuration.
            InferenceError: If the session is closed, the run fails, or the
                output has an unexpected rank, length or non-finite values.
        """
        session = self._session
        if session is None:
            raise InferenceError("Encoder session is closed.")

        expected_shape = (1, 3, self.image_size, self.image_size)
        if tensor.shape != expected_shape:
            raise ValueError(
                f"Tensor shape {tensor.shape} does not match encoder input {expected_shape}.")
        if tensor.dtype != np.float32:
            tensor = tensor.astype(np.float32)

        try:
            raw_outputs = session.run([self.output_name], {self.input_name: tensor})
        except Exception as e:
            raise InferenceError(f"Inference failed: {e}") from e

        output = np.asarray(raw_outputs[0])
        if output.ndim == 2 and output.shape[0] == 1:
            vector = output[0]
        elif output.ndim == 1:
            vector = output
        else:
            raise InferenceError(
                f"Unexpected output shape {output.shape} from '{self.output_name}'; expected [1, D] or [D].")

        if vector.size == 0:
            raise InferenceError("Model produced an empty embedding.")
        self._check_dimension(int(vector.shape[0]))
        if not np.all(np.isfinite(vector)):
            raise InferenceError("Model produced non-finite values in the embedding.")

        return np.array(vector, dtype=np.float32)

    def _check_dimension(self, length: int):
        with self._dimension_lock:
            if self._embedding_dimension is None:
                self._embedding_dimension = length
                logger.debug(f"Embedding dimension fixed at {length} from first extraction.")
            elif length != self._embedding_dimension:
                raise InferenceError(
                    f"Embedding length {length} differs from expected {self._embedding_dimension}.")
