"""Tests para la elección del target ESP32 y las comprobaciones de encaje."""

import pytest

from core.entities.device import Esp32DeviceInfo, PSRamAvailability
from modules.nanoff_flash.errors import InvalidArgumentsError
from modules.nanoff_flash.target_guess import fit_check, guess_esp32_target, is_supported_chip


def make_info(chip_type="ESP32", chip_name="ESP32-D0WD-V3 (revision v3.0)",
              features="WiFi, BT, Dual Core, 240MHz", crystal="40MHz",
              psram=PSRamAvailability.NO):
    return Esp32DeviceInfo(
        chip_type=chip_type,
        chip_name=chip_name,
        features=features,
        crystal=crystal,
        mac_address="24:0A:C4:12:34:56",
        flash_manufacturer_id=0x20,
        flash_device_id=0x4016,
        flash_size=0x400000,
        psram_available=psram,
    )


class TestGuessEsp32Target:
    """Tests para guess_esp32_target."""

    @pytest.mark.parametrize("chip_name,psram,crystal,expected", [
        ("ESP32-D0WD-V3 (revision v3.0)", PSRamAvailability.NO, "40MHz", "ESP32_REV3"),
        ("ESP32-D0WD-V3 (revision v3.0)", PSRamAvailability.YES, "40MHz", "ESP32_PSRAM_REV3"),
        ("ESP32-D0WDQ6 (revision v1.0)", PSRamAvailability.YES, "40MHz", "ESP32_PSRAM_REV0"),
        ("ESP32-D0WDQ6 (revision v1.0)", PSRamAvailability.UNDETERMINED, "40MHz", "ESP32_REV0"),
        ("ESP32-D0WD-V3 (revision v3.0)", PSRamAvailability.NO, "26MHz", "ESP32_PSRAM_XTAL26_REV0"),
        ("ESP32-PICO-D4 (revision v1.0)", PSRamAvailability.NO, "40MHz", "ESP32_PICO"),
    ])
    def test_esp32_table(self, chip_name, psram, crystal, expected):
        """Test tabla de decisión de la serie ESP32."""
        info = make_info(chip_name=chip_name, psram=psram, crystal=crystal)

        assert guess_esp32_target(info).target_name == expected

    @pytest.mark.parametrize("chip_type,chip_name,expected", [
        ("ESP32-C3", "ESP32-C3 (revision v0.2)", "ESP32_C3"),
        ("ESP32-C3", "ESP32-C3 (revision v0.4)", "ESP32_C3_REV3"),
        ("ESP32-C6", "ESP32-C6 (revision v0.0)", "ESP32_C6"),
        ("ESP32-H2", "ESP32-H2 (revision v0.1)", "ESP32_H2"),
        ("ESP32-S3", "ESP32-S3 (QFN56) (revision v0.2)", "ESP32_S3"),
    ])
    def test_other_series(self, chip_type, chip_name, expected):
        """Test series C3, C6, H2 y S3."""
        info = make_info(chip_type=chip_type, chip_name=chip_name)

        assert guess_esp32_target(info).target_name == expected

    @pytest.mark.parametrize("chip_type,chip_name", [
        ("ESP32-C3", "ESP32-C3 (revision v0.1)"),
        ("ESP32-C6", "ESP32-C6 (revision v0.2)"),
        ("ESP32-S3", "ESP32-S3 (revision v1.0)"),
        ("ESP32-S2", "ESP32-S2FH4 (revision v0.0)"),
        ("ESP8266", "ESP8266EX"),
    ])
    def test_unsupported_revisions(self, chip_type, chip_name):
        """Test revisiones sin target conocido."""
        with pytest.raises(InvalidArgumentsError):
            guess_esp32_target(make_info(chip_type=chip_type, chip_name=chip_name))

    def test_supported_chips(self):
        """Test lista de series soportadas."""
        assert is_supported_chip("ESP32-S3")
        assert not is_supported_chip("ESP8266")


class TestFitCheck:
    """Tests para fit_check."""

    def test_rev3_target_on_older_revision(self):
        """Test aviso de target REV3 en un chip de revisión anterior."""
        info = make_info(chip_name="ESP32-D0WDQ6 (revision v1.0)")

        warnings = fit_check("ESP32_PSRAM_REV3", info)

        assert len(warnings) == 1
        assert "revision 3" in warnings[0]

    def test_ble_target_without_bluetooth(self):
        """Test aviso de target BLE en un chip sin Bluetooth."""
        info = make_info(features="WiFi, Dual Core, 240MHz")

        warnings = fit_check("ESP32_BLE_REV0", info)

        assert len(warnings) == 1
        assert "Bluetooth" in warnings[0]

    def test_matching_target(self):
        """Test sin avisos cuando el target encaja."""
        assert fit_check("ESP32_BLE_REV3", make_info()) == []
