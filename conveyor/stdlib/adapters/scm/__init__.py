"""Source control adapters."""

from conveyor.stdlib.adapters.scm.git_adapter import GitAdapter, GitParams

__all__ = ["GitAdapter", "GitParams"]
