"""
Shared pytest configuration.
"""


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: tests that need a live TeamSpeak 3 server"
    )
