"""Rutas de la caché de firmware.

Define la estructura en disco de la caché (un directorio por target) y
del archivo local de paquetes.
"""

from pathlib import Path
from typing import List


CACHE_README = "This folder contains nanoFramework firmware files. Can safely be removed."

SIDECAR_EXTENSION = ".json"


class CachePaths:
    """Configuración centralizada de rutas de la caché."""

    def __init__(self, root_path: Path):
        """Inicializa las rutas de la caché.

        Args:
            root_path: Raíz de la caché (FlasherSettings.cache_root).
        """
        self.ROOT = Path(root_path).expanduser().resolve()
        self.README = self.ROOT / "README.txt"

    def ensure_root(self) -> Path:
        """Crea la raíz con su README si no existe."""
        self.ROOT.mkdir(parents=True, exist_ok=True)
        if not self.README.exists():
            self.README.write_text(CACHE_README, encoding="utf-8")
        return self.ROOT

    def location_for(self, target_name: str) -> Path:
        """Directorio de un target dentro de la caché."""
        return self.ROOT / target_name

    def __str__(self) -> str:
        return f"CachePaths(root={self.ROOT})"


class ArchivePaths:
    """Estructura del archivo local: un subdirectorio por target.

    Cada paquete `{target}-{version}[-preview].zip` va acompañado de un
    sidecar `.json` con su nombre, versión, plataforma y canal.
    """

    def __init__(self, root_path: Path):
        self.ROOT = Path(root_path).expanduser().resolve()

    def location_for(self, target_name: str) -> Path:
        return self.ROOT / target_name

    def package_path(self, target_name: str, file_name: str) -> Path:
        return self.location_for(target_name) / file_name

    def sidecar_path(self, package_path: Path) -> Path:
        return package_path.with_name(package_path.name + SIDECAR_EXTENSION)

    def package_for_sidecar(self, sidecar_path: Path) -> Path:
        return sidecar_path.with_name(sidecar_path.name[: -len(SIDECAR_EXTENSION)])

    def sidecars(self, target_name: str = None) -> List[Path]:
        """Sidecars de un target, o de todo el archivo si no se indica."""
        if not self.ROOT.is_dir():
            return []
        if target_name:
            location = self.location_for(target_name)
            if not location.is_dir():
                return []
            return sorted(location.glob(f"{target_name}-*{SIDECAR_EXTENSION}"))
        return sorted(self.ROOT.glob(f"*/*{SIDECAR_EXTENSION}"))

    def __str__(self) -> str:
        return f"ArchivePaths(root={self.ROOT})"
