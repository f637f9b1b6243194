"""Static analysis adapters."""

from conveyor.stdlib.adapters.analysis.sonarqube_adapter import SonarQubeAdapter, SonarQubeParams

__all__ = ["SonarQubeAdapter", "SonarQubeParams"]
