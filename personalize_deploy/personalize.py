"""Solution, training and campaign steps of the recommender lifecycle.

Each step starts an asynchronous Personalize operation, then blocks on the
status waiter until the resource is ACTIVE. Identifiers produced by a step
are returned on a new ``DeploymentContext`` for the next one.
"""

from typing import Any, Awaitable, Callable, Optional

from loguru import logger
from personalize_deploy.models import (
    DeploymentContext,
    PollResult,
    Verdict,
    WorkflowConfig,
)
from personalize_deploy.waiter import poll_until_ready

READY_STATUS = "ACTIVE"
FAILURE_SUFFIXES = ("FAILED", "STOPPED")


def status_verdict(status: str, failure_reason: Optional[str] = None) -> Verdict:
    """Map a Personalize status string onto a verdict.

    Unrecognised statuses are treated as still in progress.
    """
    if status == READY_STATUS:
        return Verdict.ready(status)
    if status.endswith(FAILURE_SUFFIXES):
        return Verdict.failed(status, failure_reason)
    return Verdict.not_ready(status)


def solution_verdict(description: dict) -> Verdict:
    solution = description["solution"]
    return status_verdict(solution["status"], solution.get("failureReason"))


def solution_version_verdict(description: dict) -> Verdict:
    version = description["solutionVersion"]
    return status_verdict(version["status"], version.get("failureReason"))


def campaign_verdict(description: dict) -> Verdict:
    campaign = description["campaign"]
    update = campaign.get("latestCampaignUpdate")
    if update:
        return status_verdict(update["status"], update.get("failureReason"))
    return status_verdict(campaign["status"], campaign.get("failureReason"))


def _require(ctx: DeploymentContext, field: str) -> str:
    value = getattr(ctx, field)
    if not value:
        raise ValueError(f"{field} must be set before this step")
    return value


class PersonalizeWorkflow:
    def __init__(
        self,
        client: Any,
        config: Optional[WorkflowConfig] = None,
        on_status_change: Optional[Callable[[Verdict], Awaitable[Any]]] = None,
    ):
        self.client = client
        self.config = config or WorkflowConfig()
        self.on_status_change = on_status_change
        self.logger = logger

    async def wait_for_solution(self, solution_arn: str) -> PollResult:
        async def fetch() -> dict:
            return await self.client.describe_solution(solutionArn=solution_arn)

        return await poll_until_ready(
            fetch,
            solution_verdict,
            self.config.solution,
            on_status_change=self.on_status_change,
            label=f"solution {solution_arn}",
        )

    async def wait_for_solution_version(self, solution_version_arn: str) -> PollResult:
        async def fetch() -> dict:
            return await self.client.describe_solution_version(
                solutionVersionArn=solution_version_arn
            )

        return await poll_until_ready(
            fetch,
            solution_version_verdict,
            self.config.training,
            on_status_change=self.on_status_change,
            label=f"training {solution_version_arn}",
        )

    async def wait_for_campaign(self, campaign_arn: str) -> PollResult:
        async def fetch() -> dict:
            return await self.client.describe_campaign(campaignArn=campaign_arn)

        return await poll_until_ready(
            fetch,
            campaign_verdict,
            self.config.hosting,
            on_status_change=self.on_status_change,
            label=f"campaign {campaign_arn}",
        )

    async def create_solution(self, ctx: DeploymentContext) -> DeploymentContext:
        response = await self.client.create_solution(
            name=ctx.solution_name,
            datasetGroupArn=ctx.dataset_group_arn,
            recipeArn=ctx.recipe_arn,
        )
        solution_arn = response["solutionArn"]
        self.logger.info(f"Created solution {solution_arn}")
        await self.wait_for_solution(solution_arn)
        return ctx.advance(solution_arn=solution_arn)

    async def train(self, ctx: DeploymentContext) -> DeploymentContext:
        solution_arn = _require(ctx, "solution_arn")
        response = await self.client.create_solution_version(
            solutionArn=solution_arn,
            trainingMode=self.config.training_mode,
        )
        solution_version_arn = response["solutionVersionArn"]
        self.logger.info(f"Training solution version {solution_version_arn}")
        result = await self.wait_for_solution_version(solution_version_arn)
        self.logger.info(f"Training finished in {result.elapsed_time:.0f}s")
        return ctx.advance(solution_version_arn=solution_version_arn)

    async def deploy_campaign(self, ctx: DeploymentContext) -> DeploymentContext:
        solution_version_arn = _require(ctx, "solution_version_arn")
        response = await self.client.create_campaign(
            name=ctx.campaign_name,
            solutionVersionArn=solution_version_arn,
            minProvisionedTPS=self.config.min_provisioned_tps,
        )
        campaign_arn = response["campaignArn"]
        self.logger.info(f"Deploying campaign {campaign_arn}")
        await self.wait_for_campaign(campaign_arn)
        return ctx.advance(campaign_arn=campaign_arn)

    async def update_campaign(self, ctx: DeploymentContext) -> DeploymentContext:
        """Roll an existing campaign onto the context's solution version"""
        campaign_arn = _require(ctx, "campaign_arn")
        solution_version_arn = _require(ctx, "solution_version_arn")
        await self.client.update_campaign(
            campaignArn=campaign_arn,
            solutionVersionArn=solution_version_arn,
            minProvisionedTPS=self.config.min_provisioned_tps,
        )
        self.logger.info(f"Updating campaign {campaign_arn} to {solution_version_arn}")
        await self.wait_for_campaign(campaign_arn)
        return ctx

    async def run(
        self, ctx: DeploymentContext, function_updater: Optional[Any] = None
    ) -> DeploymentContext:
        if not ctx.solution_arn:
            ctx = await self.create_solution(ctx)
        ctx = await self.train(ctx)

        if ctx.campaign_arn:
            ctx = await self.update_campaign(ctx)
        else:
            ctx = await self.deploy_campaign(ctx)

        if function_updater is not None and ctx.function_name:
            await function_updater.update_environment(
                ctx.function_name, self.config.campaign_env_key, ctx.campaign_arn
            )
        return ctx
