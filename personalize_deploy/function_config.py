from typing import Any, Optional

from loguru import logger
from personalize_deploy.models import (
    PollResult,
    StatusPollingConfig,
    Verdict,
    WorkflowConfig,
)
from personalize_deploy.waiter import poll_until_ready


def function_update_verdict(description: dict) -> Verdict:
    status = description.get("LastUpdateStatus") or "InProgress"
    if status == "Successful":
        return Verdict.ready(status)
    if status == "Failed":
        return Verdict.failed(status, description.get("LastUpdateStatusReason"))
    return Verdict.not_ready(status)


class FunctionConfigUpdater:
    """Writes key/value pairs into a Lambda function's environment variables"""

    def __init__(self, client: Any, config: Optional[StatusPollingConfig] = None):
        self.client = client
        self.config = config or WorkflowConfig().function_update
        self.logger = logger

    async def wait_for_update(self, function_name: str) -> PollResult:
        async def fetch() -> dict:
            return await self.client.get_function_configuration(
                FunctionName=function_name
            )

        return await poll_until_ready(
            fetch,
            function_update_verdict,
            self.config,
            label=f"function {function_name}",
        )

    async def update_environment(self, function_name: str, key: str, value: str) -> dict:
        """Set one environment variable, keeping the others, and wait for the update to land.

        Lambda rejects a configuration write while another update is in
        flight, so the current one is waited out first. The write carries the
        revision that was read so a concurrent edit fails instead of being
        overwritten.
        """
        current = (await self.wait_for_update(function_name)).description
        variables = dict(current.get("Environment", {}).get("Variables", {}))
        variables[key] = value

        params = {"FunctionName": function_name, "Environment": {"Variables": variables}}
        if current.get("RevisionId"):
            params["RevisionId"] = current["RevisionId"]

        self.logger.info(f"Setting {key} on {function_name}")
        await self.client.update_function_configuration(**params)
        await self.wait_for_update(function_name)
        return variables
