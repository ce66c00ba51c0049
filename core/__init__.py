"""
Core Module Package.

This package contains the infrastructure components
that all other pipeline modules depend on.

Components:
- clock: Testable time abstraction
- exceptions: Custom exception hierarchy
"""

from .clock import ClockProtocol, MockClock, SystemClock
from .exceptions import PipelineException
