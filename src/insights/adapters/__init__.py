"""Health data source adapters for Murmur.

Each adapter implements the HealthDataSource ABC and answers sample,
workout and statistics queries over a time range.

Available adapters:
    AppleHealthExportSource - Apple Health ``export.xml`` file import
    FakeHealthDataSource    - Deterministic in-memory source for tests and demo data
"""

from src.insights.adapters.apple_health import AppleHealthExportSource
from src.insights.adapters.fake import FakeHealthDataSource

__all__ = [
    "AppleHealthExportSource",
    "FakeHealthDataSource",
]

# Registry: source_id → adapter class
SOURCE_REGISTRY: dict[str, type] = {
    "apple_health_export": AppleHealthExportSource,
    "fake": FakeHealthDataSource,
}


def get_source(source_id: str) -> "type":
    """Return the adapter class for a given source slug.

    Args:
        source_id: e.g. 'apple_health_export', 'fake'

    Returns:
        The adapter class (not an instance).

    Raises:
        KeyError: If the source_id is not registered.
    """
    if source_id not in SOURCE_REGISTRY:
        raise KeyError(
            f"No health data source registered for '{source_id}'. "
            f"Available: {list(SOURCE_REGISTRY)}"
        )
    return SOURCE_REGISTRY[source_id]
