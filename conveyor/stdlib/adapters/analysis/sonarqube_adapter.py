"""SonarQube static analysis adapter.

Runs the scanner against the checked-out sources, waits for the server's
background task to finish and reads the quality gate verdict. A gate in
``ERROR`` fails the stage with ``QualityGateFailed``; the stage is always
gating, so nothing downstream of it runs.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import Field

from conveyor.kernel.config.models import ENDPOINT_ANALYSIS
from conveyor.kernel.domain.run import MetricValue
from conveyor.kernel.exceptions import (
    AnalysisUnavailableError,
    HttpClientError,
    QualityGateFailedError,
)
from conveyor.kernel.logging import get_logger
from conveyor.kernel.ports.adapter import AdapterOutcome, Capability
from conveyor.stdlib.adapters.base import (
    SOURCE_DIR,
    AdapterParams,
    ConveyorAdapter,
    require_credential,
)

if TYPE_CHECKING:
    from conveyor.drivers.http_client import HttpClientDriver
    from conveyor.kernel.credentials import CredentialHandle
    from conveyor.kernel.ports.adapter import InvocationContext

logger = get_logger(__name__)

GATE_ERROR = "ERROR"
TASK_DONE = frozenset({"SUCCESS", "FAILED", "CANCELED"})
DEFAULT_MEASURES = (
    "coverage",
    "blocker_violations",
    "critical_violations",
    "bugs",
    "vulnerabilities",
    "code_smells",
)


class SonarQubeParams(AdapterParams):
    """Parameters of the ``sonarqube`` adapter."""

    project_key: str
    server_url: str | None = None
    token_credential: str | None = "sonar-token"
    scanner_command: list[str] = ["sonar-scanner"]
    sources: str = "."
    properties: dict[str, str] = Field(default_factory=dict)
    report_task_path: str = ".scannerwork/report-task.txt"
    measures: list[str] = Field(default_factory=lambda: list(DEFAULT_MEASURES))
    poll_interval: float = Field(default=5.0, ge=0)
    max_polls: int = Field(default=120, ge=1)


class SonarQubeAdapter(ConveyorAdapter, tool_id="sonarqube", capability=Capability.ANALYSIS):
    """Analyze the snapshot and enforce the server's quality gate."""

    Params = SonarQubeParams

    async def ainvoke(
        self,
        params: Mapping[str, Any],
        credentials: Mapping[str, CredentialHandle],
        context: InvocationContext,
    ) -> AdapterOutcome:
        p: SonarQubeParams = self.parse_params(params)
        server = context.endpoint(ENDPOINT_ANALYSIS, p.server_url)
        handle = require_credential(credentials, p.token_credential)
        token = handle.reveal() if handle else None
        source = context.workspace / SOURCE_DIR

        await self._scan(p, server, token, source, context)
        task_id = _read_report_task(source / p.report_task_path).get("ceTaskId")
        if not task_id:
            raise AnalysisUnavailableError(f"No ceTaskId in {p.report_task_path}")

        http = self.http_factory(
            base_url=server,
            basic_auth_username=token,
            basic_auth_password="" if token else None,
        )
        try:
            async with http:
                analysis_id = await self._wait_for_task(http, task_id, p, context)
                gate = await self._quality_gate(http, analysis_id)
                metrics = await self._measures(http, p)
        except HttpClientError as e:
            raise AnalysisUnavailableError(f"SonarQube at {server} unavailable: {e}") from e

        status = str(gate.get("status", "NONE"))
        metrics["quality_gate"] = status
        failed = [
            f"{c.get('metricKey')} {c.get('comparator', '')} {c.get('errorThreshold', '')}".strip()
            for c in gate.get("conditions", [])
            if c.get("status") == GATE_ERROR
        ]
        if failed:
            metrics["failed_conditions"] = "; ".join(failed)
        metrics["dashboard_url"] = f"{server.rstrip('/')}/dashboard?id={p.project_key}"

        if status == GATE_ERROR:
            raise QualityGateFailedError(
                f"Quality gate failed for '{p.project_key}': {', '.join(failed) or status}",
                metrics=metrics,
            )
        logger.info(f"Quality gate {status} for '{p.project_key}'")
        return AdapterOutcome.success(metrics=metrics)

    async def _scan(
        self,
        p: SonarQubeParams,
        server: str,
        token: str | None,
        source: Path,
        context: InvocationContext,
    ) -> None:
        properties = {
            "sonar.projectKey": p.project_key,
            "sonar.host.url": server,
            "sonar.sources": p.sources,
            "sonar.scm.revision": context.commit_hash,
            **p.properties,
        }
        args = [*p.scanner_command, *(f"-D{k}={v}" for k, v in properties.items())]
        env = {"SONAR_TOKEN": token} if token else None
        result = await self.runner.run(args, cwd=source, env=env, context=context)
        if not result.ok:
            raise AnalysisUnavailableError(
                f"{p.scanner_command[0]} exited with {result.returncode}: {result.tail(5)}"
            )

    async def _wait_for_task(
        self,
        http: HttpClientDriver,
        task_id: str,
        p: SonarQubeParams,
        context: InvocationContext,
    ) -> str:
        for _ in range(p.max_polls):
            context.check_cancelled()
            response = await http.aget("/api/ce/task", params={"id": task_id})
            task = response["body"].get("task", {})
            status = task.get("status")
            if status in TASK_DONE:
                if status != "SUCCESS" or not task.get("analysisId"):
                    raise AnalysisUnavailableError(
                        f"Analysis task {task_id} ended {status}: {task.get('errorMessage', '')}"
                    )
                return str(task["analysisId"])
            logger.debug("Analysis task {} is {}", task_id, status)
            await asyncio.sleep(p.poll_interval)
        raise AnalysisUnavailableError(
            f"Analysis task {task_id} did not finish after {p.max_polls} polls"
        )

    async def _quality_gate(self, http: HttpClientDriver, analysis_id: str) -> dict[str, Any]:
        response = await http.aget(
            "/api/qualitygates/project_status", params={"analysisId": analysis_id}
        )
        return response["body"].get("projectStatus", {})

    async def _measures(self, http: HttpClientDriver, p: SonarQubeParams) -> dict[str, MetricValue]:
        if not p.measures:
            return {}
        response = await http.aget(
            "/api/measures/component",
            params={"component": p.project_key, "metricKeys": ",".join(p.measures)},
        )
        measures = response["body"].get("component", {}).get("measures", [])
        return {
            m["metric"]: _number(m["value"])
            for m in measures
            if "metric" in m and m.get("value") is not None
        }


def _read_report_task(path: Path) -> dict[str, str]:
    """Parse the scanner's ``key=value`` report file."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise AnalysisUnavailableError(f"Scanner report not found at {path}") from e
    entries: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            entries[key.strip()] = value.strip()
    return entries


def _number(value: Any) -> MetricValue:
    """Coerce a measure value to int or float when it looks numeric.

    >>> _number("81.5"), _number("3"), _number("OK")
    (81.5, 3, 'OK')
    """
    text = str(value)
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return text
