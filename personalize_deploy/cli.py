import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger
from personalize_deploy.deploy import CommandFailedError, DeployAborted, DeployPipeline
from personalize_deploy.function_config import FunctionConfigUpdater
from personalize_deploy.models import (
    DeployConfig,
    DeploymentContext,
    StatusPollingConfig,
    WorkflowConfig,
)
from personalize_deploy.personalize import PersonalizeWorkflow
from personalize_deploy.stack import StackOutputMissingError
from personalize_deploy.waiter import ResourceFailedError, WaitTimeoutError


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="personalize-deploy",
        description="Deploy the recommender stack and manage its Personalize resources.",
    )
    parser.add_argument("--profile", type=str, default="default", help="AWS profile to use.")
    parser.add_argument("--region", type=str, default="us-east-1", help="AWS region.")
    sub = parser.add_subparsers(dest="command", required=True)

    deploy = sub.add_parser("deploy", help="SAM build/package/deploy and publish the web UI.")
    deploy.add_argument("source_bucket", help="S3 bucket to build to and deploy from.")
    deploy.add_argument("stack_name", help="CloudFormation stack name.")
    deploy.add_argument("--template", type=str, default="template.yaml", help="SAM template.")
    deploy.add_argument("--webui-dir", type=str, default="webui", help="Web UI project directory.")
    deploy.add_argument("--yes", action="store_true", help="Do not ask before building the web UI.")

    train = sub.add_parser("train", help="Train a solution version and host it in a campaign.")
    train.add_argument("--dataset-group-arn", required=True)
    train.add_argument("--solution-name", required=True)
    train.add_argument("--campaign-name", required=True)
    train.add_argument("--recipe-arn", default=None)
    train.add_argument("--solution-arn", default=None, help="Retrain an existing solution.")
    train.add_argument("--campaign-arn", default=None, help="Update an existing campaign.")
    train.add_argument("--function-name", default=None, help="Lambda to receive the campaign ARN.")
    train.add_argument("--interval", type=float, default=60.0, help="Seconds between status checks.")
    train.add_argument("--training-timeout", type=float, default=4 * 60 * 60.0)
    train.add_argument("--hosting-timeout", type=float, default=3 * 60 * 60.0)
    return parser.parse_args(argv)


async def _deploy(args: argparse.Namespace) -> None:
    config = DeployConfig(
        source_bucket=args.source_bucket,
        stack_name=args.stack_name,
        profile=args.profile,
        region=args.region,
        template_file=Path(args.template),
        webui_dir=Path(args.webui_dir),
    )
    if args.yes:
        pipeline = DeployPipeline(config, confirm=lambda prompt: True)
    else:
        pipeline = DeployPipeline(config)
    await pipeline.run()


def _workflow_config(args: argparse.Namespace) -> WorkflowConfig:
    return WorkflowConfig(
        training=StatusPollingConfig(interval=args.interval, timeout=args.training_timeout),
        hosting=StatusPollingConfig(interval=args.interval, timeout=args.hosting_timeout),
    )


async def _train(args: argparse.Namespace) -> DeploymentContext:
    workflow_config = _workflow_config(args)
    ctx = DeploymentContext(
        dataset_group_arn=args.dataset_group_arn,
        solution_name=args.solution_name,
        campaign_name=args.campaign_name,
        solution_arn=args.solution_arn,
        campaign_arn=args.campaign_arn,
        function_name=args.function_name,
    )
    if args.recipe_arn:
        ctx = ctx.advance(recipe_arn=args.recipe_arn)

    session = aioboto3.Session(profile_name=args.profile, region_name=args.region)
    async with session.client("personalize") as personalize, session.client("lambda") as lambda_:
        workflow = PersonalizeWorkflow(personalize, workflow_config)
        updater = FunctionConfigUpdater(lambda_, workflow_config.function_update)
        ctx = await workflow.run(ctx, function_updater=updater)

    logger.success(f"Campaign ready: {ctx.campaign_arn}")
    return ctx


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        if args.command == "deploy":
            asyncio.run(_deploy(args))
        else:
            asyncio.run(_train(args))
    except (
        CommandFailedError,
        DeployAborted,
        StackOutputMissingError,
        ResourceFailedError,
        WaitTimeoutError,
    ) as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except (BotoCoreError, ClientError) as e:
        logger.error(f"AWS request failed: {e}")
        return 1
    except (ValueError, FileNotFoundError) as e:
        # ValueError also covers pydantic validation errors
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
