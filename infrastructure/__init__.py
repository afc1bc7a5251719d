"""Infrastructure layer for nanoff-py.

This package contains the adapters that drive the vendor flashing tools
(esptool, STM32 Programmer CLI, J-Link Commander, DSLite) as subprocesses.
"""

__version__ = "0.1.0"
