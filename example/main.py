import asyncio
import os

import aioboto3
from personalize_deploy.function_config import FunctionConfigUpdater
from personalize_deploy.models import DeploymentContext, Verdict, WorkflowConfig
from personalize_deploy.personalize import PersonalizeWorkflow
from personalize_deploy.stack import get_stack_outputs, require_output
from personalize_deploy.waiter import ResourceFailedError, WaitTimeoutError


async def status_changed(verdict: Verdict):
    print(f"Status changed to: {verdict.status}")


async def main():
    stack_name = os.environ.get("STACK_NAME", "retail-demo")
    session = aioboto3.Session(profile_name=os.environ.get("AWS_PROFILE", "default"))

    async with session.client("cloudformation") as cloudformation:
        outputs = await get_stack_outputs(cloudformation, stack_name)

    ctx = DeploymentContext(
        dataset_group_arn=require_output(outputs, stack_name, "DatasetGroupArn"),
        solution_name=f"{stack_name}-solution",
        campaign_name=f"{stack_name}-campaign",
        function_name=outputs.get("RecommendationFunctionName"),
    )
    config = WorkflowConfig()

    async with session.client("personalize") as personalize, session.client("lambda") as lambda_:
        workflow = PersonalizeWorkflow(personalize, config, on_status_change=status_changed)
        updater = FunctionConfigUpdater(lambda_, config.function_update)

        try:
            ctx = await workflow.create_solution(ctx)
            ctx = await workflow.train(ctx)
            ctx = await workflow.deploy_campaign(ctx)
            print(f"Campaign ARN: {ctx.campaign_arn}")

            if ctx.function_name:
                await updater.update_environment(
                    ctx.function_name, config.campaign_env_key, ctx.campaign_arn
                )
                print(f"Updated {ctx.function_name} with the campaign ARN")
        except WaitTimeoutError as e:
            print(f"Still provisioning, stopped waiting: {e}")
        except ResourceFailedError as e:
            print(f"Provisioning failed: {e}")
            print(e.description)


if __name__ == "__main__":
    asyncio.run(main())
