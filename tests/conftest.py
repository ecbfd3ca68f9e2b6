"""
Pytest configuration and fixtures for Script Bridge tests.
"""

import os
import threading
import time

import pytest
from hypothesis import Verbosity, settings

from script_bridge.core.config import BridgeConfig
from script_bridge.sandbox.host import SandboxHost
from script_bridge.sandbox.runtimes import LocalScriptInterpreter
from script_bridge.session.manager import SessionManager

# Configure hypothesis settings for property-based testing
settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None,  # Disable deadline for slow operations
)

settings.register_profile(
    "ci",
    max_examples=200,
    verbosity=Verbosity.normal,
    deadline=None,
)

settings.register_profile(
    "dev",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)

# Load profile from environment or use default
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))


class CountingLoader:
    """Runtime loader that counts loads, optionally slow or failing."""

    def __init__(self, delay: float = 0.0, failures: int = 0):
        self.delay = delay
        self.failures = failures
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, descriptor):
        with self._lock:
            self.calls += 1
            attempt = self.calls
        if self.delay:
            time.sleep(self.delay)
        if attempt <= self.failures:
            raise RuntimeError("runtime download failed")
        return LocalScriptInterpreter()


@pytest.fixture
def make_loader():
    """Factory for counting runtime loaders."""
    return CountingLoader


@pytest.fixture
def host():
    return SandboxHost()


@pytest.fixture
def bridge_config():
    config = BridgeConfig()
    config.session.timeout_seconds = 10.0
    config.session.abort_grace_seconds = 1.0
    return config


@pytest.fixture
def manager(bridge_config):
    return SessionManager(bridge_config)


@pytest.fixture
def sample_interactive_code():
    """Script that asks two questions and prints their sum."""
    return """a = int(input("first: "))
b = int(input("second: "))
print("sum:", a + b)
"""


@pytest.fixture
def sample_failing_code():
    """Script that prints, then divides by zero."""
    return """print("before")
total = 1 / 0
print("after")
"""
