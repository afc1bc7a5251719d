"""Network configuration blocks stored on a nanoFramework device."""

from dataclasses import dataclass, field
from enum import Enum
from ipaddress import IPv4Address
from typing import List, Optional


class NetworkInterfaceType(Enum):
    ETHERNET = "ethernet"
    WIRELESS_80211 = "wireless80211"
    WIRELESS_AP = "wirelessap"


class AddressMode(Enum):
    DHCP = "dhcp"
    STATIC = "static"


class AuthenticationType(Enum):
    NONE = "none"
    EAP = "eap"
    PEAP = "peap"
    WCN = "wcn"
    OPEN = "open"
    SHARED = "shared"
    WEP = "wep"
    WPA = "wpa"
    WPA2 = "wpa2"


class EncryptionType(Enum):
    NONE = "none"
    WEP = "wep"
    WPA = "wpa"
    WPA2 = "wpa2"
    WPA_PSK = "wpa_psk"
    WPA2_PSK2 = "wpa2_psk2"
    CERTIFICATE = "certificate"


class RadioType(Enum):
    IEEE_802_11A = "802.11a"
    IEEE_802_11B = "802.11b"
    IEEE_802_11G = "802.11g"
    IEEE_802_11N = "802.11n"


class WirelessClientOptions(Enum):
    NONE = "none"
    DISABLE = "disable"
    ENABLE = "enable"
    AUTOCONNECT = "autoconnect"
    SMARTCONFIG = "smartconfig"


class WirelessAPOptions(Enum):
    NONE = "none"
    DISABLE = "disable"
    ENABLE = "enable"
    AUTOSTART = "autostart"
    HIDDENSSID = "hiddenssid"


class CertificateStore(Enum):
    """Certificate bundles kept in the device configuration."""
    DEVICE = "device"
    CA_ROOT = "ca_root"


@dataclass
class NetworkConfigurationBlock:
    """IP settings of one network interface, as stored on the device."""
    interface_type: NetworkInterfaceType
    startup_address_mode: AddressMode = AddressMode.DHCP
    ipv4_address: Optional[IPv4Address] = None
    ipv4_netmask: Optional[IPv4Address] = None
    ipv4_gateway: Optional[IPv4Address] = None
    automatic_dns: bool = True
    ipv4_dns_address1: Optional[IPv4Address] = None
    ipv4_dns_address2: Optional[IPv4Address] = None
    mac_address: Optional[bytes] = None


@dataclass
class WirelessConfigurationBlock:
    """Wi-Fi settings of the station or access point interface."""
    ssid: str = ""
    password: str = ""
    authentication: AuthenticationType = AuthenticationType.NONE
    encryption: EncryptionType = EncryptionType.NONE
    radio: Optional[RadioType] = None
    client_options: Optional[WirelessClientOptions] = None
    ap_options: Optional[WirelessAPOptions] = None
    max_connections: Optional[int] = None


@dataclass
class DeviceNetworkConfiguration:
    """Configuration blocks read from the device in one go."""
    network: List[NetworkConfigurationBlock] = field(default_factory=list)
    wireless_client: List[WirelessConfigurationBlock] = field(default_factory=list)
    wireless_ap: List[WirelessConfigurationBlock] = field(default_factory=list)

    def find_network(self, interface_type: NetworkInterfaceType) -> Optional[tuple]:
        """First block for an interface type as (block index, block), or None."""
        for index, block in enumerate(self.network):
            if block.interface_type == interface_type:
                return index, block
        return None
