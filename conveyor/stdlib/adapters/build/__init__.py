"""Build tool adapters."""

from conveyor.stdlib.adapters.build.maven_adapter import MavenAdapter, MavenParams

__all__ = ["MavenAdapter", "MavenParams"]
