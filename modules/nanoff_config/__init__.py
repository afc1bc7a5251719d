"""Módulo de configuración del flasher.

Modelos Pydantic para la configuración inyectada y para el descriptor
de despliegue de archivos.
"""

from modules.nanoff_config.validators import (
    ArchivePackageInfo,
    ConfigValidator,
    DeploymentFile,
    FileDeploymentConfiguration,
    FlasherSettings,
)

__all__ = [
    "ArchivePackageInfo",
    "ConfigValidator",
    "DeploymentFile",
    "FileDeploymentConfiguration",
    "FlasherSettings",
]

__version__ = "1.0.0"
