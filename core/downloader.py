# core/downloader.py
import logging
import os
import time
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from tqdm import tqdm
from urllib3.util.retry import Retry

from app.exceptions import ModelDownloadError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1 << 18


def build_session(user_agent: str, retries: int = 5) -> requests.Session:
    """HTTP session that retries connection errors and 429/5xx responses."""
    session = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=0.8,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers["User-Agent"] = user_agent
    # Content-Length must describe the bytes we write
    session.headers["Accept-Encoding"] = "identity"
    return session


class ModelDownloader:
    """
    Descarga artefactos de modelo a disco.

    Cada intento escribe en un archivo ``.part`` que solo se renombra al
    destino cuando la descarga termina; si un intento falla, el parcial se
    borra y el siguiente intento empieza desde cero.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        user_agent: str = "visual-duplicate-finder",
        timeout: float = 600.0,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        show_progress: bool = True,
    ):
        self.session = session or build_session(user_agent)
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.show_progress = show_progress

    def ensure_model(self, url: str, destination: str) -> str:
        """
        Makes sure ``destination`` exists, downloading it from ``url`` if needed.

        Returns:
            The absolute path of the model file.

        Raises:
            ModelDownloadError: If every attempt fails.
        """
        destination = os.path.abspath(destination)
        if os.path.isfile(destination):
            logger.info(f"Model already exists: {destination}")
            return destination
        if not url:
            raise ModelDownloadError(f"Model missing at {destination} and no download URL configured.")

        os.makedirs(os.path.dirname(destination), exist_ok=True)
        partial_path = destination + ".part"
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            logger.info(f"Downloading model {os.path.basename(destination)} (attempt {attempt}/{self.max_attempts})...")
            try:
                self._download_once(url, partial_path)
                os.replace(partial_path, destination)
                logger.info(f"Downloaded {os.path.basename(destination)} to {destination}")
                return destination
            except (requests.RequestException, OSError) as e:
                last_error = e
                logger.warning(f"Download attempt {attempt} failed: {e}")
                self._remove_partial(partial_path)
                if attempt < self.max_attempts:
                    time.sleep(self.backoff_seconds * attempt)

        raise ModelDownloadError(
            f"Failed to download {url} after {self.max_attempts} attempts: {last_error}") from last_error

    def _download_once(self, url: str, partial_path: str):
        with self.session.get(url, stream=True, timeout=self.timeout) as response:
            response.raise_for_status()
            total_bytes = int(response.headers.get("Content-Length", 0)) or None
            content_encoding = response.headers.get("Content-Encoding", "identity").lower()
            if content_encoding != "identity":
                # iter_content yields decoded bytes; Content-Length counts the encoded body
                logger.info(f"Server sent a {content_encoding}-encoded body; skipping the size check.")
                total_bytes = None
            if total_bytes:
                logger.info(f"Total size: {total_bytes / (1024.0 * 1024.0):.1f} MB")
            else:
                logger.info("Total size: unknown")

            written = 0
            with open(partial_path, "wb") as fh, tqdm(
                total=total_bytes,
                unit="B",
                unit_scale=True,
                desc=os.path.basename(url),
                disable=not self.show_progress,
            ) as progress:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    fh.write(chunk)
                    written += len(chunk)
                    progress.update(len(chunk))

            if total_bytes is not None and written != total_bytes:
                raise OSError(f"Incomplete download: got {written} of {total_bytes} bytes")

    @staticmethod
    def _remove_partial(partial_path: str):
        try:
            os.remove(partial_path)
        except FileNotFoundError:
            pass
