"""Tests para la validación de la configuración del flasher."""

import json
from ipaddress import IPv4Address
from pathlib import Path

import pytest
from pydantic import ValidationError

from core.entities.network import EncryptionType, RadioType
from modules.nanoff_config.validators import (
    ArchivePackageInfo,
    ConfigValidator,
    DeploymentFile,
    FlasherSettings,
    NetworkDeploymentConfiguration,
    WirelessClientSettings,
)


class TestFlasherSettings:
    """Tests para FlasherSettings."""

    def test_defaults(self):
        """Test valores por defecto."""
        settings = FlasherSettings()

        assert settings.cache_root == Path.home() / ".nanoFramework" / "fw_cache"
        assert settings.archive_path is None
        assert settings.stale_package_days == 60
        assert settings.repository_base_url.endswith("/")

    def test_repository_urls(self):
        """Test repositorio por canal."""
        settings = FlasherSettings()

        assert settings.repository_for(False) == "nanoframework-images"
        assert settings.repository_for(True) == "nanoframework-images-dev"
        assert settings.repository_for(False, community=True) == "nanoframework-images-community-targets"

    def test_base_url_normalized(self):
        """Test barra final en la URL base."""
        settings = FlasherSettings(repository_base_url="https://packages.example.com/v1")

        assert settings.repository_base_url == "https://packages.example.com/v1/"

    def test_invalid_base_url(self):
        """Test URL no http(s)."""
        with pytest.raises(ValidationError):
            FlasherSettings(repository_base_url="ftp://packages.example.com")

    def test_invalid_timeout(self):
        """Test timeout no positivo."""
        with pytest.raises(ValidationError):
            FlasherSettings(http_timeout=0)

    def test_validate_assignment(self):
        """Test validación al asignar."""
        settings = FlasherSettings()

        with pytest.raises(ValidationError):
            settings.tool_timeout = -1

    def test_home_expanded(self):
        """Test expansión de ~ en las rutas."""
        settings = FlasherSettings(cache_root="~/fw")

        assert settings.cache_root == Path.home() / "fw"

    def test_get_validation_errors(self):
        """Test errores sin lanzar excepción."""
        assert ConfigValidator.get_validation_errors({}) == []
        assert len(ConfigValidator.get_validation_errors({"stale_package_days": 0})) == 1


class TestFileDeploymentDescriptor:
    """Tests para el descriptor de despliegue de archivos."""

    def test_load_case_insensitive_keys(self, tmp_path):
        """Test claves sin distinguir mayúsculas."""
        descriptor = tmp_path / "deploy.json"
        descriptor.write_text(json.dumps({
            "SerialPort": "COM3",
            "Files": [
                {"DestinationFilePath": "I:\\config.json", "SourceFilePath": "config.json"},
                {"destinationfilepath": "I:\\old.txt"},
            ],
        }))

        configuration = ConfigValidator.load_file_deployment(descriptor)

        assert configuration.serial_port == "COM3"
        assert len(configuration.files) == 2
        assert not configuration.files[0].is_delete
        assert configuration.files[1].is_delete

    def test_empty_source_means_delete(self):
        """Test origen vacío como borrado."""
        entry = DeploymentFile(DestinationFilePath="I:\\a.txt", SourceFilePath="  ")

        assert entry.is_delete

    def test_destination_required(self, tmp_path):
        """Test entrada sin destino."""
        descriptor = tmp_path / "deploy.json"
        descriptor.write_text(json.dumps({"files": [{"SourceFilePath": "a.txt"}]}))

        with pytest.raises(ValidationError):
            ConfigValidator.load_file_deployment(descriptor)


class TestArchivePackageInfo:
    """Tests para el sidecar del archivo local."""

    def test_round_trip(self, tmp_path):
        """Test escritura y lectura del sidecar."""
        sidecar = tmp_path / "ESP32_REV0-1.9.0.12.zip.json"
        sidecar.write_text(ArchivePackageInfo(name="ESP32_REV0", version="1.9.0.12", platform="esp32").to_json())

        info = ConfigValidator.load_archive_package_info(sidecar)

        assert info.name == "ESP32_REV0"
        assert info.platform == "esp32"
        assert info.is_preview is False


class TestNetworkDeploymentDescriptor:
    """Tests para el descriptor de despliegue de red."""

    def test_load_case_insensitive_keys(self, tmp_path):
        """Test claves en cualquier combinación de mayúsculas."""
        descriptor = tmp_path / "network.json"
        descriptor.write_text(json.dumps({
            "SerialPort": "COM5",
            "WirelessClient": {"Ssid": "lab", "Password": "secret", "Encryption": "WPA2", "RadioType": "802.11N"},
            "Ethernet": {"DhcpEnabled": False, "IPv4Address": "10.0.0.2", "IPv4NetMask": "255.0.0.0",
                         "IPv4Gateway": "10.0.0.1", "MacAddress": "240AC4123456"},
        }))

        configuration = ConfigValidator.load_network_deployment(descriptor)

        assert configuration.serial_port == "COM5"
        assert configuration.wireless_client.encryption == EncryptionType.WPA2
        assert configuration.wireless_client.radio_type == RadioType.IEEE_802_11N
        assert configuration.ethernet.ipv4_gateway == IPv4Address("10.0.0.1")
        assert configuration.ethernet.mac_address == bytes.fromhex("240AC4123456")

    def test_unknown_encryption_is_none(self):
        """Test cifrado desconocido tratado como ninguno."""
        settings = WirelessClientSettings.model_validate({"ssid": "lab", "encryption": "rot13"})

        assert settings.encryption == EncryptionType.NONE

    @pytest.mark.parametrize("data", [
        {"ethernet": {"dhcpenabled": False, "ipv4address": "10.0.0.2"}},
        {"ethernet": {"macaddress": "24:0A:C4"}},
        {"ethernet": {"ipv4address": "300.1.1.1"}},
        {"wirelessclient": {"ssid": "lab", "authentication": "kerberos"}},
        {"wirelessaccesspoint": {"ssid": "ap"}},
        {"devicecertificates": "not base64!"},
        {"cacertificates": "TUlJQg==", "cacertificatespath": "ca.pem"},
    ])
    def test_invalid_descriptors(self, data):
        """Test descriptores rechazados al validar."""
        with pytest.raises(ValidationError):
            NetworkDeploymentConfiguration.model_validate(data)
