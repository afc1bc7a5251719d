"""Despliegue de configuración de red en un dispositivo en ejecución.

Orden: Wi-Fi estación, punto de acceso, Ethernet, certificados del
dispositivo y certificados raíz. Cada bloque se lee del dispositivo, se
completa con el descriptor y se vuelve a escribir. El primer fallo
detiene el despliegue con E2002.
"""

import base64
import copy
import logging
from pathlib import Path
from typing import List, Optional

from adapters.interfaces.services import DebugEngine
from core.entities.network import (
    AddressMode,
    AuthenticationType,
    CertificateStore,
    DeviceNetworkConfiguration,
    NetworkConfigurationBlock,
    NetworkInterfaceType,
    WirelessConfigurationBlock,
)
from modules.nanoff_config.validators import (
    EthernetSettings,
    NetworkDeploymentConfiguration,
    WirelessAccessPointSettings,
    WirelessClientSettings,
)
from modules.nanoff_flash.errors import FlashError
from modules.nanoff_flash.exit_codes import ExitCode


logger = logging.getLogger(__name__)


PEM_CERTIFICATE_MARKER = b"-----BEGIN CERTIFICATE-----"


def null_terminated_pem(certificates: bytes) -> bytes:
    """Los bundles PEM se guardan terminados en NUL en el dispositivo."""
    if PEM_CERTIFICATE_MARKER in certificates and not certificates.endswith(b"\x00"):
        return certificates + b"\x00"
    return certificates


def apply_ip_settings(block: NetworkConfigurationBlock, settings: EthernetSettings) -> None:
    if settings.dhcp_enabled:
        block.startup_address_mode = AddressMode.DHCP
        block.ipv4_address = None
        block.ipv4_netmask = None
        block.ipv4_gateway = None
    else:
        block.startup_address_mode = AddressMode.STATIC
        block.ipv4_address = settings.ipv4_address
        block.ipv4_netmask = settings.ipv4_netmask
        block.ipv4_gateway = settings.ipv4_gateway

    block.automatic_dns = settings.automatic_dns
    if settings.automatic_dns:
        block.ipv4_dns_address1 = None
        block.ipv4_dns_address2 = None
    else:
        block.ipv4_dns_address1 = settings.ipv4_dns_address1
        block.ipv4_dns_address2 = settings.ipv4_dns_address2

    if settings.mac_address is not None:
        block.mac_address = settings.mac_address


def apply_wireless_settings(block: WirelessConfigurationBlock, settings: WirelessClientSettings) -> None:
    block.ssid = settings.ssid
    block.password = settings.password or ""
    block.encryption = settings.encryption
    if settings.authentication is not None:
        block.authentication = settings.authentication
    if settings.configuration_option is not None:
        block.client_options = settings.configuration_option
    if settings.radio_type is not None:
        block.radio = settings.radio_type


class NetworkDeploymentManager:
    """Aplica un NetworkDeploymentConfiguration sobre un DebugEngine conectado."""

    def __init__(self, engine: DebugEngine, base_path: Optional[Path] = None):
        self.engine = engine
        self.base_path = Path(base_path) if base_path else None

    async def deploy(self, configuration: NetworkDeploymentConfiguration) -> List[str]:
        """Despliega la configuración de red.

        Returns:
            Nombres de los bloques actualizados, en orden.

        Raises:
            FlashError: E2002 si el dispositivo sigue inicializándose, le falta
                un bloque o rechaza una actualización.
        """
        if await self.engine.is_device_in_initialize_state():
            raise FlashError("Device is still initializing, can't update its configuration.", None, ExitCode.E2002)

        device_configuration = await self.engine.get_network_configuration()
        updated: List[str] = []

        if configuration.wireless_client is not None:
            updated += await self._deploy_wireless_client(device_configuration, configuration.wireless_client)

        if configuration.wireless_access_point is not None:
            updated += await self._deploy_access_point(device_configuration, configuration.wireless_access_point)

        if configuration.ethernet is not None:
            index, block = self._network_block(device_configuration, NetworkInterfaceType.ETHERNET)
            apply_ip_settings(block, configuration.ethernet)
            await self._update_network(block, index, "ethernet network")
            updated.append("ethernet network")

        device_certificates = self._certificates(
            configuration.device_certificates, configuration.device_certificates_path
        )
        if device_certificates is not None:
            await self._update_certificates(CertificateStore.DEVICE, device_certificates)
            updated.append("device certificates")

        ca_certificates = self._certificates(configuration.ca_certificates, configuration.ca_certificates_path)
        if ca_certificates is not None:
            await self._update_certificates(CertificateStore.CA_ROOT, ca_certificates)
            updated.append("CA certificates")

        logger.info(f"Configuración de red desplegada: {', '.join(updated) or 'nada que actualizar'}")
        return updated

    async def _deploy_wireless_client(
        self,
        device_configuration: DeviceNetworkConfiguration,
        settings: WirelessClientSettings,
    ) -> List[str]:
        if not device_configuration.wireless_client:
            raise FlashError("Device has no wireless configuration.", None, ExitCode.E2002)

        # hoy solo hay una interfaz Wi-Fi
        wireless = copy.copy(device_configuration.wireless_client[0])
        apply_wireless_settings(wireless, settings)

        index, block = self._network_block(device_configuration, NetworkInterfaceType.WIRELESS_80211)
        apply_ip_settings(block, settings)

        await self._update_network(block, index, "wireless network")
        await self._update_wireless(wireless, "wireless client")
        return ["wireless network", "wireless client"]

    async def _deploy_access_point(
        self,
        device_configuration: DeviceNetworkConfiguration,
        settings: WirelessAccessPointSettings,
    ) -> List[str]:
        if not device_configuration.wireless_ap:
            raise FlashError("Device has no wireless AP configuration.", None, ExitCode.E2002)

        access_point = copy.copy(device_configuration.wireless_ap[0])
        apply_wireless_settings(access_point, settings)
        access_point.ap_options = settings.access_point_options
        access_point.max_connections = settings.max_connections
        if settings.authentication is None:
            access_point.authentication = AuthenticationType.NONE

        index, block = self._network_block(device_configuration, NetworkInterfaceType.WIRELESS_AP)
        block.startup_address_mode = AddressMode.STATIC
        block.ipv4_address = settings.ipv4_address
        block.ipv4_netmask = settings.ipv4_netmask
        # sin puerta de enlace se usa la dirección del propio punto de acceso
        block.ipv4_gateway = settings.ipv4_gateway or settings.ipv4_address
        block.ipv4_dns_address1 = settings.ipv4_dns_address1
        block.ipv4_dns_address2 = settings.ipv4_dns_address2
        if settings.mac_address is not None:
            block.mac_address = settings.mac_address

        await self._update_network(block, index, "access point network")
        await self._update_wireless(access_point, "access point")
        return ["access point network", "access point"]

    @staticmethod
    def _network_block(device_configuration: DeviceNetworkConfiguration, interface_type: NetworkInterfaceType):
        found = device_configuration.find_network(interface_type)
        if found is None:
            raise FlashError(
                f"Device has no network configuration for {interface_type.value}.", None, ExitCode.E2002
            )
        index, block = found
        return index, copy.copy(block)

    def _certificates(self, encoded: Optional[str], path: Optional[str]) -> Optional[bytes]:
        if encoded:
            return null_terminated_pem(base64.b64decode(encoded))
        if path:
            source = Path(path)
            if self.base_path is not None and not source.is_absolute():
                source = self.base_path / source
            try:
                return null_terminated_pem(source.read_bytes())
            except OSError as e:
                raise FlashError(f"Can't read certificates from {source}.", e, ExitCode.E2002)
        return None

    async def _update_network(self, block: NetworkConfigurationBlock, index: int, what: str) -> None:
        logger.info(f"Actualizando {what}...")
        if not await self.engine.update_network_configuration(block, index):
            raise FlashError(f"Error uploading {what} configuration.", None, ExitCode.E2002)

    async def _update_wireless(self, block: WirelessConfigurationBlock, what: str) -> None:
        logger.info(f"Actualizando {what}...")
        if not await self.engine.update_wireless_configuration(block, 0):
            raise FlashError(f"Error uploading {what} configuration.", None, ExitCode.E2002)

    async def _update_certificates(self, store: CertificateStore, certificates: bytes) -> None:
        logger.info(f"Actualizando certificados ({store.value}, {len(certificates)} bytes)...")
        if not await self.engine.update_certificates(store, certificates):
            raise FlashError(f"Error uploading {store.value} certificates.", None, ExitCode.E2002)
