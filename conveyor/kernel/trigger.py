"""Push trigger: start a Run when a watched branch receives a commit."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from fnmatch import fnmatchcase
from typing import Any

from conveyor.kernel.domain.dag import PipelineDefinition
from conveyor.kernel.domain.run import Run
from conveyor.kernel.logging import get_logger
from conveyor.kernel.orchestration.executor import PipelineExecutor

logger = get_logger(__name__)

_REF_PREFIX = "refs/heads/"


def normalize_branch(branch: str) -> str:
    """Strip the ``refs/heads/`` prefix webhooks send.

    >>> normalize_branch("refs/heads/main")
    'main'
    """
    return branch.removeprefix(_REF_PREFIX)


class PushTrigger:
    """Starts a Run per push to a branch in the watch list.

    Watch list entries may be glob patterns (``release/*``).
    """

    def __init__(
        self,
        executor: PipelineExecutor,
        definition: PipelineDefinition,
        watch_branches: Iterable[str],
        document: Mapping[str, Any] | None = None,
    ) -> None:
        self.executor = executor
        self.definition = definition
        self.watch_branches = tuple(watch_branches)
        self.document = document

    def watches(self, branch: str) -> bool:
        name = normalize_branch(branch)
        return any(fnmatchcase(name, pattern) for pattern in self.watch_branches)

    async def on_push(self, branch: str, commit_hash: str) -> Run | None:
        """Run the pipeline for ``commit_hash`` if ``branch`` is watched.

        Returns
        -------
        Run | None
            The finished Run, or None when the branch is not watched
        """
        if not self.watches(branch):
            logger.info(
                f"Ignoring push to '{normalize_branch(branch)}' ({commit_hash[:7]}): not watched"
            )
            return None
        logger.info(f"Push to '{normalize_branch(branch)}' ({commit_hash[:7]}) triggers a run")
        return await self.executor.run(
            self.definition,
            commit_hash,
            branch=normalize_branch(branch),
            document=self.document,
        )
