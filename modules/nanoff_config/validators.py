"""Validadores de configuración del flasher.

Este módulo contiene los modelos Pydantic que validan la configuración
inyectada en resolver, fetcher y gestor de archivo (raíz de la caché,
repositorios, timeouts) y los descriptores JSON de despliegue de archivos
y de configuración de red en el dispositivo.
"""

import base64
import json
from ipaddress import IPv4Address
from pathlib import Path
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator, model_validator, ValidationError, ConfigDict

from core.entities.network import (
    AuthenticationType,
    EncryptionType,
    RadioType,
    WirelessAPOptions,
    WirelessClientOptions,
)


DEFAULT_CACHE_ROOT = Path.home() / ".nanoFramework" / "fw_cache"
DEFAULT_REPOSITORY_BASE_URL = "https://api.cloudsmith.io/v1/packages/net-nanoframework/"


class FlasherSettings(BaseModel):
    """Configuración del flasher.

    Se construye una vez por invocación y se pasa por referencia a los
    componentes que la necesitan; no hay estado global.
    """

    cache_root: Path = Field(
        default=DEFAULT_CACHE_ROOT,
        description="Raíz de la caché local de paquetes de firmware"
    )

    archive_path: Optional[Path] = Field(
        default=None,
        description="Directorio de archivo local; si existe no se usa la red"
    )

    repository_base_url: str = Field(
        default=DEFAULT_REPOSITORY_BASE_URL,
        description="URL base de la API del índice de paquetes"
    )

    stable_repository: str = Field(default="nanoframework-images")
    preview_repository: str = Field(default="nanoframework-images-dev")
    community_repository: str = Field(default="nanoframework-images-community-targets")

    http_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout en segundos para peticiones HTTP"
    )

    stale_package_days: int = Field(
        default=60,
        ge=1,
        description="Antigüedad a partir de la cual se avisa que el paquete puede estar desactualizado"
    )

    tool_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Timeout en segundos para herramientas externas"
    )

    tools_path: Optional[Path] = Field(
        default=None,
        description="Directorio con los ejecutables de los fabricantes"
    )

    model_config = ConfigDict(validate_assignment=True)

    @field_validator('repository_base_url')
    @classmethod
    def validate_repository_base_url(cls, v):
        """Validar URL base del índice.

        Args:
            v: URL a validar

        Returns:
            str: URL terminada en '/'

        Raises:
            ValueError: Si no es una URL http(s)
        """
        if not v.startswith(("http://", "https://")):
            raise ValueError("La URL del repositorio debe ser http(s)")

        return v if v.endswith("/") else v + "/"

    @field_validator('cache_root', 'archive_path', 'tools_path')
    @classmethod
    def expand_path(cls, v):
        if v is None:
            return v
        return Path(v).expanduser()

    def repository_for(self, preview: bool, community: bool = False) -> str:
        """Nombre del repositorio para un canal."""
        if community:
            return self.community_repository
        return self.preview_repository if preview else self.stable_repository


class DeploymentFile(BaseModel):
    """Entrada del descriptor de despliegue.

    Sin SourceFilePath la entrada significa borrar el destino.
    """

    destination_file_path: str = Field(..., alias="DestinationFilePath", min_length=1)
    source_file_path: Optional[str] = Field(default=None, alias="SourceFilePath")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('source_file_path')
    @classmethod
    def empty_source_means_delete(cls, v):
        if v is not None and not v.strip():
            return None
        return v

    @property
    def is_delete(self) -> bool:
        return self.source_file_path is None


class FileDeploymentConfiguration(BaseModel):
    """Descriptor JSON de despliegue de archivos en el dispositivo."""

    serial_port: Optional[str] = Field(default=None, alias="serialport")
    files: List[DeploymentFile] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class EthernetSettings(BaseModel):
    """Ajustes IP de una interfaz en el descriptor de despliegue de red.

    Sin DHCP hacen falta dirección, máscara y puerta de enlace.
    """

    dhcp_enabled: bool = Field(default=True, alias="dhcpenabled")
    automatic_dns: bool = Field(default=True, alias="automaticdns")
    ipv4_address: Optional[IPv4Address] = Field(default=None, alias="ipv4address")
    ipv4_netmask: Optional[IPv4Address] = Field(default=None, alias="ipv4netmask")
    ipv4_gateway: Optional[IPv4Address] = Field(default=None, alias="ipv4gateway")
    ipv4_dns_address1: Optional[IPv4Address] = Field(default=None, alias="ipv4dnsaddress1")
    ipv4_dns_address2: Optional[IPv4Address] = Field(default=None, alias="ipv4dnsaddress2")
    mac_address: Optional[bytes] = Field(default=None, alias="macaddress")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator(
        'ipv4_address', 'ipv4_netmask', 'ipv4_gateway', 'ipv4_dns_address1', 'ipv4_dns_address2',
        mode='before',
    )
    @classmethod
    def empty_address_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator('mac_address', mode='before')
    @classmethod
    def parse_mac_address(cls, v):
        """Acepta 'AA:BB:CC:DD:EE:FF' o 'AABBCCDDEEFF'."""
        if v is None or isinstance(v, bytes):
            return v
        text = str(v).strip()
        if not text:
            return None

        parts = text.split(':') if ':' in text else [text[i:i + 2] for i in range(0, len(text), 2)]
        if len(parts) != 6 or any(len(part) != 2 for part in parts):
            raise ValueError('MAC address has to be 6 bytes, 12 hex characters')
        return bytes(int(part, 16) for part in parts)

    @model_validator(mode='after')
    def static_needs_addresses(self):
        if not self.dhcp_enabled:
            missing = [
                name for name in ('ipv4_address', 'ipv4_netmask', 'ipv4_gateway')
                if getattr(self, name) is None
            ]
            if missing:
                raise ValueError(f"static addressing needs {', '.join(missing)}")
        return self


class WirelessClientSettings(EthernetSettings):
    """Ajustes de la interfaz Wi-Fi en modo estación."""

    ssid: str = Field(..., alias="ssid", min_length=1)
    password: Optional[str] = Field(default=None, alias="password")
    authentication: Optional[AuthenticationType] = Field(default=None, alias="authentication")
    encryption: EncryptionType = Field(default=EncryptionType.NONE, alias="encryption")
    configuration_option: Optional[WirelessClientOptions] = Field(default=None, alias="configurationoption")
    radio_type: Optional[RadioType] = Field(default=None, alias="radiotype")

    @field_validator('authentication', 'configuration_option', 'radio_type', mode='before')
    @classmethod
    def lower_case_option(cls, v):
        if isinstance(v, str):
            return v.strip().lower() or None
        return v

    @field_validator('encryption', mode='before')
    @classmethod
    def unknown_encryption_is_none(cls, v):
        # un tipo desconocido se trata como sin cifrado
        if v is None:
            return EncryptionType.NONE
        if isinstance(v, str):
            value = v.strip().lower()
            known = {member.value for member in EncryptionType}
            return value if value in known else EncryptionType.NONE.value
        return v


class WirelessAccessPointSettings(WirelessClientSettings):
    """Ajustes del punto de acceso; siempre con dirección estática."""

    max_connections: int = Field(default=4, ge=1, le=255, alias="maxconnections")
    access_point_options: WirelessAPOptions = Field(default=WirelessAPOptions.NONE, alias="accesspointoptions")

    @field_validator('access_point_options', mode='before')
    @classmethod
    def lower_case_ap_option(cls, v):
        if v is None:
            return WirelessAPOptions.NONE
        if isinstance(v, str):
            return v.strip().lower() or WirelessAPOptions.NONE.value
        return v

    @model_validator(mode='after')
    def access_point_needs_address(self):
        if self.ipv4_address is None or self.ipv4_netmask is None:
            raise ValueError("access point needs ipv4address and ipv4netmask")
        return self


class NetworkDeploymentConfiguration(BaseModel):
    """Descriptor JSON de despliegue de red: interfaces y certificados."""

    serial_port: Optional[str] = Field(default=None, alias="serialport")
    wireless_client: Optional[WirelessClientSettings] = Field(default=None, alias="wirelessclient")
    wireless_access_point: Optional[WirelessAccessPointSettings] = Field(default=None, alias="wirelessaccesspoint")
    ethernet: Optional[EthernetSettings] = Field(default=None, alias="ethernet")
    device_certificates: Optional[str] = Field(default=None, alias="devicecertificates")
    device_certificates_path: Optional[str] = Field(default=None, alias="devicecertificatespath")
    ca_certificates: Optional[str] = Field(default=None, alias="cacertificates")
    ca_certificates_path: Optional[str] = Field(default=None, alias="cacertificatespath")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('device_certificates', 'ca_certificates')
    @classmethod
    def validate_base64(cls, v):
        if v is None or not v.strip():
            return None
        base64.b64decode(v, validate=True)
        return v

    @field_validator('device_certificates_path', 'ca_certificates_path')
    @classmethod
    def empty_path_is_none(cls, v):
        if v is not None and not v.strip():
            return None
        return v

    @model_validator(mode='after')
    def one_certificate_source(self):
        if self.device_certificates and self.device_certificates_path:
            raise ValueError("DeviceCertificates and DeviceCertificatesPath are both set, only one can be used")
        if self.ca_certificates and self.ca_certificates_path:
            raise ValueError("CACertificates and CACertificatesPath are both set, only one can be used")
        return self


class ArchivePackageInfo(BaseModel):
    """Sidecar JSON que acompaña a cada paquete del archivo local."""

    name: str = Field(..., alias="Name", min_length=1)
    version: str = Field(..., alias="Version", min_length=1)
    platform: Optional[str] = Field(default=None, alias="Platform")
    is_preview: bool = Field(default=False, alias="IsPreview")

    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


class ConfigValidator:
    """Carga y valida configuraciones.

    Proporciona métodos estáticos para validar configuraciones
    y manejar errores de validación.
    """

    @staticmethod
    def load_file_deployment(config_file: Path) -> FileDeploymentConfiguration:
        """Cargar un descriptor de despliegue de archivos.

        Las claves se aceptan sin distinguir mayúsculas/minúsculas.

        Args:
            config_file: Ruta al archivo JSON

        Returns:
            FileDeploymentConfiguration: Descriptor validado

        Raises:
            ValidationError: Si el descriptor no es válido
            OSError: Si el archivo no se puede leer
        """
        raw = json.loads(Path(config_file).read_text(encoding="utf-8"))
        return FileDeploymentConfiguration.model_validate(_normalize_keys(raw))

    @staticmethod
    def load_network_deployment(config_file: Path) -> NetworkDeploymentConfiguration:
        """Cargar un descriptor de despliegue de red.

        Las claves se aceptan sin distinguir mayúsculas/minúsculas.

        Raises:
            ValidationError: Si el descriptor no es válido
            OSError: Si el archivo no se puede leer
        """
        raw = json.loads(Path(config_file).read_text(encoding="utf-8"))
        return NetworkDeploymentConfiguration.model_validate(_lower_keys(raw))

    @staticmethod
    def load_archive_package_info(sidecar_file: Path) -> ArchivePackageInfo:
        """Cargar el sidecar de un paquete del archivo.

        Raises:
            ValidationError: Si el sidecar no es válido
            OSError: Si el archivo no se puede leer
        """
        return ArchivePackageInfo.model_validate_json(Path(sidecar_file).read_text(encoding="utf-8"))

    @staticmethod
    def get_validation_errors(settings_data: dict) -> list[str]:
        """Obtener lista de errores de validación sin lanzar excepción.

        Args:
            settings_data: Diccionario con datos de configuración

        Returns:
            list[str]: Lista de mensajes de error, vacía si es válida
        """
        try:
            FlasherSettings(**settings_data)
            return []
        except ValidationError as e:
            return [str(error) for error in e.errors()]


_CANONICAL_KEYS = {
    "serialport": "serialport",
    "files": "files",
    "destinationfilepath": "DestinationFilePath",
    "sourcefilepath": "SourceFilePath",
}


def _normalize_keys(value):
    if isinstance(value, dict):
        return {
            _CANONICAL_KEYS.get(str(k).lower(), k): _normalize_keys(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_normalize_keys(item) for item in value]
    return value


def _lower_keys(value):
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_lower_keys(item) for item in value]
    return value
