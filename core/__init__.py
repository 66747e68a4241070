"""
Core Module Package.

This package contains the core infrastructure components
that all other modules depend on.

Components:
- clock: Unified time abstraction
- exceptions: Custom exception hierarchy
- settings: Aggregate engine settings (import core.settings directly)
"""

from core.clock import ClockFactory, ClockProtocol, MockClock, SystemClock
from core.exceptions import ConfigurationError, ParametricEngineError
