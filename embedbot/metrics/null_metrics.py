"""No-op metrics implementation that provides safe no-op methods."""

from typing import Optional


class NoopMetrics:
    """Metrics provider that does nothing but implements full interface safely."""

    def define_counter(self, name: str, description: str, labels: Optional[list] = None) -> None:
        pass

    def inc(self, name: str, value: int = 1, labels: Optional[dict] = None) -> None:
        pass

    def define_histogram(self, name: str, description: str, labels: Optional[list] = None) -> None:
        pass

    def observe(self, name: str, value: float, labels: Optional[dict] = None) -> None:
        pass
