"""HTTP client driver."""

from conveyor.drivers.http_client.http_client import HttpClientDriver

__all__ = ["HttpClientDriver"]
