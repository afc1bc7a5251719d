"""Interfaces package for adapters.

Define las interfaces de sesiones de flasheo, herramientas externas y
motor de depuración."""

from .services import (
    DebugEngine,
    DebugEngineFactory,
    DeviceSession,
    RebootMode,
    SessionState,
    StorageResult,
    ToolResult,
    ToolRunner,
)
