"""Cliente HTTP con retry automático para el índice y las descargas de firmware.

Este módulo proporciona un wrapper sobre httpx con capacidades de retry
automático usando tenacity para manejar fallos de red temporales. Se
construye una sola vez por operación y se inyecta en los componentes
que lo usan.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Callable, Iterable

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)


logger = logging.getLogger(__name__)


class HttpClientError(Exception):
    """Error base para el cliente HTTP."""
    pass


class TransientHttpError(HttpClientError):
    """Error de red o 5xx que merece un reintento."""
    pass


class RateLimitError(TransientHttpError):
    """Error cuando se alcanza el límite de rate de la API."""
    pass


_RETRY_POLICY = dict(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(TransientHttpError),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


class HttpClient:
    """Cliente HTTP asíncrono con retry automático."""

    def __init__(self, timeout: float = 30.0, base_url: str = ""):
        """Inicializa el cliente HTTP.

        Args:
            timeout: Timeout en segundos para las requests.
            base_url: Prefijo para URLs relativas.
        """
        self.timeout = timeout
        self.base_url = base_url
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Entrada del context manager."""
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=True,
            http2=True
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Salida del context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _url(self, url: str) -> str:
        if url.startswith(("http://", "https://")) or not self.base_url:
            return url
        return self.base_url + url

    def _require_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise HttpClientError("Cliente no inicializado. Usar como context manager.")
        return self._client

    @retry(**_RETRY_POLICY)
    async def get(self, url: str, accept_status: Iterable[int] = (), **kwargs) -> httpx.Response:
        """Realiza una petición GET con retry automático.

        Args:
            url: URL a solicitar (absoluta o relativa a base_url).
            accept_status: Códigos de error que se devuelven sin lanzar.
            **kwargs: Argumentos adicionales para httpx.

        Returns:
            Respuesta HTTP.

        Raises:
            RateLimitError: Si se alcanza el límite de rate (429).
            TransientHttpError: Error de conexión o 5xx tras agotar reintentos.
            HttpClientError: Para otros errores HTTP.
        """
        client = self._require_client()
        full_url = self._url(url)

        try:
            response = await client.get(full_url, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"Error de conexión para {full_url}: {e}")
            raise TransientHttpError(f"Error de conexión: {e}")

        if response.status_code in accept_status:
            return response

        # Manejar rate limit específicamente
        if response.status_code == 429:
            logger.warning(f"Rate limit alcanzado para {full_url}")
            raise RateLimitError(f"Rate limit alcanzado: {response.text}")

        if response.status_code >= 500:
            logger.error(f"Error HTTP {response.status_code} para {full_url}")
            raise TransientHttpError(f"Error HTTP {response.status_code}")

        if response.status_code >= 400:
            logger.error(f"Error HTTP {response.status_code} para {full_url}: {response.text}")
            raise HttpClientError(f"Error HTTP {response.status_code}: {response.text}")

        return response

    @retry(**_RETRY_POLICY)
    async def download(
        self,
        url: str,
        target_path: Path,
        on_chunk: Optional[Callable[[int, Optional[int]], None]] = None,
    ) -> int:
        """Descarga un archivo con streaming a un temporal y lo renombra al final.

        Args:
            url: URL de descarga.
            target_path: Ruta final del archivo.
            on_chunk: Callback (bytes del chunk, tamaño total o None).

        Returns:
            Número de bytes escritos.

        Raises:
            TransientHttpError: Error de conexión o 5xx tras agotar reintentos.
            HttpClientError: Para otros errores HTTP.
        """
        client = self._require_client()
        full_url = self._url(url)
        temp_path = target_path.with_name(target_path.name + ".part")
        written = 0

        try:
            async with client.stream('GET', full_url) as response:
                if response.status_code == 429:
                    raise RateLimitError(f"Rate limit alcanzado: {await response.aread()}")
                if response.status_code >= 500:
                    raise TransientHttpError(f"Error HTTP {response.status_code}")
                if response.status_code >= 400:
                    raise HttpClientError(f"Error HTTP {response.status_code}")

                total = response.headers.get('content-length')
                total_size = int(total) if total and total.isdigit() else None

                with open(temp_path, 'wb') as f:
                    async for chunk in response.aiter_bytes(chunk_size=8192):
                        f.write(chunk)
                        written += len(chunk)
                        if on_chunk:
                            on_chunk(len(chunk), total_size)

        except httpx.RequestError as e:
            logger.error(f"Error de conexión para {full_url}: {e}")
            temp_path.unlink(missing_ok=True)
            raise TransientHttpError(f"Error de conexión: {e}")
        except HttpClientError:
            temp_path.unlink(missing_ok=True)
            raise

        os.replace(temp_path, target_path)
        logger.debug(f"Descargados {written} bytes de {full_url}")
        return written
