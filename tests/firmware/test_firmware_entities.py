"""Tests para las entidades de firmware y dispositivo."""

import pytest

from core.entities.device import DeviceConnection, TransportKind, flash_size_label
from core.entities.firmware import (
    FirmwareVersion,
    PackageChannel,
    PackageDescriptor,
    SupportedPlatform,
    package_file_name,
)


class TestFirmwareVersion:
    """Tests para FirmwareVersion."""

    def test_parse_four_parts(self):
        """Test versión con revisión."""
        version = FirmwareVersion.from_string("1.9.0.12")

        assert (version.major, version.minor, version.patch, version.revision) == (1, 9, 0, 12)
        assert str(version) == "1.9.0.12"

    def test_parse_prerelease(self):
        """Test versión con prerelease."""
        version = FirmwareVersion.from_string("1.9.1-preview.3")

        assert version.prerelease == "preview.3"
        assert str(version) == "1.9.1-preview.3"

    def test_invalid(self):
        """Test versión mal formada."""
        with pytest.raises(ValueError):
            FirmwareVersion.from_string("1.9")
        assert FirmwareVersion.try_parse("latest") is None
        assert FirmwareVersion.try_parse(None) is None

    def test_ordering(self):
        """Test orden numérico, no lexicográfico."""
        assert FirmwareVersion.from_string("1.9.0.12") > FirmwareVersion.from_string("1.9.0.9")
        assert FirmwareVersion.from_string("1.10.0") > FirmwareVersion.from_string("1.9.99")
        assert FirmwareVersion.from_string("1.9.1-preview.1") < FirmwareVersion.from_string("1.9.1")


class TestPackageDescriptor:
    """Tests para PackageDescriptor."""

    def test_from_index_record(self):
        """Test descriptor desde un registro del índice."""
        record = {
            "name": "ST_STM32F769I_DISCOVERY",
            "version": "1.9.0.12",
            "cdn_url": "https://dl.cloudsmith.io/x.zip",
            "uploaded_at": "2024-05-01T10:00:00Z",
            "tags": {"info": ["nanoframework", "stm32"]},
        }

        descriptor = PackageDescriptor.from_index_record(record, is_preview=True)

        assert descriptor.platform == SupportedPlatform.STM32
        assert descriptor.channel == PackageChannel.PREVIEW
        assert descriptor.published_date.year == 2024
        assert descriptor.archive_file_name == "ST_STM32F769I_DISCOVERY-1.9.0.12-preview.zip"
        assert not descriptor.is_archived

    def test_record_without_tags(self):
        """Test registro sin etiquetas ni fecha."""
        descriptor = PackageDescriptor.from_index_record({"name": "X", "version": "1.0.0"}, is_community=True)

        assert descriptor.platform is None
        assert descriptor.published_date is None
        assert descriptor.channel == PackageChannel.COMMUNITY


class TestPlatformsAndLabels:
    """Tests para plataformas, nombres de archivo y etiquetas."""

    @pytest.mark.parametrize("value,expected", [
        ("esp32", SupportedPlatform.ESP32),
        ("STM32", SupportedPlatform.STM32),
        ("cc13x2", SupportedPlatform.TI_CC13X2),
        ("efm32", SupportedPlatform.EFM32),
    ])
    def test_parse_platform(self, value, expected):
        """Test plataformas aceptadas en la línea de comandos."""
        assert SupportedPlatform.parse(value) == expected

    def test_parse_unknown_platform(self):
        """Test plataforma desconocida."""
        with pytest.raises(ValueError):
            SupportedPlatform.parse("avr")

    def test_package_file_name(self):
        """Test nombre del paquete."""
        assert package_file_name("ESP32_REV0", "1.9.0.12", False) == "ESP32_REV0-1.9.0.12.zip"

    def test_flash_size_label(self):
        """Test etiquetas de tamaño de flash."""
        assert flash_size_label(0x400000) == "4MB"
        assert flash_size_label(0x80000) == "512KB"

    def test_connection_str(self):
        """Test representación de una conexión."""
        assert str(DeviceConnection(TransportKind.JTAG, "066CFF", "STM32F76x")) == "jtag:066CFF (STM32F76x)"
