"""Módulo de progreso para descargas de paquetes.

Este módulo proporciona el delegado de progreso que usa el fetcher al
descargar un paquete, con una implementación CLI basada en tqdm y otra
silenciosa para tests y modo quiet.
"""

from abc import ABC, abstractmethod
from typing import Optional

from tqdm import tqdm


class ProgressDelegate(ABC):
    """Interface abstracta para delegados de progreso."""

    @abstractmethod
    def on_start(self, total_size: Optional[int], operation: str = "Downloading") -> None:
        """Llamado al inicio de la operación.

        Args:
            total_size: Tamaño total en bytes, None si el servidor no lo indica
            operation: Descripción de la operación
        """
        pass

    @abstractmethod
    def on_chunk(self, chunk_size: int, current_progress: int) -> None:
        """Llamado por cada chunk recibido.

        Args:
            chunk_size: Tamaño del chunk actual en bytes
            current_progress: Progreso acumulado en bytes
        """
        pass

    @abstractmethod
    def on_end(self, success: bool, message: str = "") -> None:
        """Llamado al finalizar la operación."""
        pass


class ProgressPrinter(ProgressDelegate):
    """Barra de progreso para CLI usando tqdm."""

    def __init__(self):
        self.progress_bar: Optional[tqdm] = None

    def on_start(self, total_size: Optional[int], operation: str = "Downloading") -> None:
        self.progress_bar = tqdm(
            total=total_size,
            desc=operation,
            unit="B",
            unit_scale=True,
            unit_divisor=1024,
            leave=False,
            dynamic_ncols=True
        )

    def on_chunk(self, chunk_size: int, current_progress: int) -> None:
        if self.progress_bar:
            self.progress_bar.update(chunk_size)

    def on_end(self, success: bool, message: str = "") -> None:
        if self.progress_bar:
            self.progress_bar.set_description("OK" if success else "Error")
            self.progress_bar.close()
            self.progress_bar = None


class SilentProgressDelegate(ProgressDelegate):
    """Delegado silencioso que no muestra progreso."""

    def on_start(self, total_size: Optional[int], operation: str = "Downloading") -> None:
        pass

    def on_chunk(self, chunk_size: int, current_progress: int) -> None:
        pass

    def on_end(self, success: bool, message: str = "") -> None:
        pass


class DownloadProgress:
    """Adapta el callback de HttpClient.download a un ProgressDelegate.

    El tamaño total solo se conoce con el primer chunk, así que on_start
    se difiere hasta entonces.
    """

    def __init__(self, delegate: ProgressDelegate, operation: str):
        self.delegate = delegate
        self.operation = operation
        self.current_progress = 0
        self._started = False

    def __call__(self, chunk_size: int, total_size: Optional[int]) -> None:
        if not self._started:
            self.delegate.on_start(total_size, self.operation)
            self._started = True
        self.current_progress += chunk_size
        self.delegate.on_chunk(chunk_size, self.current_progress)

    def finish(self, success: bool, message: str = "") -> None:
        if self._started:
            self.delegate.on_end(success, message)
