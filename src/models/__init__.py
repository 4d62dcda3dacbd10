"""
Models package - Enums shared by the lifecycle supervisor and logger
"""

from .enums import LogLevel, LogCategory, ShutdownTrigger, SupervisorState

__all__ = [
    'LogLevel',
    'LogCategory',
    'ShutdownTrigger',
    'SupervisorState',
]
