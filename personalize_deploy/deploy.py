"""Build, package and deploy the SAM application, then publish the web UI.

Stages run in order and the first stage that exits non-zero stops the
pipeline. Once the stack is up, the web UI is built with npm and mirrored to
the stack's web bucket.
"""

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

import aioboto3
from loguru import logger
from personalize_deploy.models import DeployConfig
from personalize_deploy.s3_sync import SyncReport, sync_directory
from personalize_deploy.stack import get_stack_outputs, require_output

CommandRunner = Callable[..., Awaitable[int]]


class CommandFailedError(Exception):
    def __init__(self, stage: str, command: Sequence[str], returncode: int):
        self.stage = stage
        self.command = list(command)
        self.returncode = returncode
        super().__init__(f"{stage} failed with exit code {returncode}: {' '.join(command)}")


class DeployAborted(Exception):
    pass


async def run_command(*command: str, cwd: Optional[Path] = None) -> int:
    """Runs a command with inherited stdio and returns its exit code"""
    process = await asyncio.create_subprocess_exec(*command, cwd=cwd)
    return await process.wait()


def ask_to_continue(prompt: str) -> bool:
    while True:
        choice = input(f"{prompt} (y/n)? ").strip().lower()
        if choice in ("y", "yes"):
            return True
        if choice in ("n", "no"):
            return False
        print("Please answer y or n")


def default_session(config: DeployConfig) -> Any:
    return aioboto3.Session(profile_name=config.profile, region_name=config.region)


class DeployPipeline:
    def __init__(
        self,
        config: DeployConfig,
        runner: CommandRunner = run_command,
        confirm: Callable[[str], bool] = ask_to_continue,
        session_factory: Callable[[DeployConfig], Any] = default_session,
    ):
        self.config = config
        self.runner = runner
        self.confirm = confirm
        self.session_factory = session_factory
        self.logger = logger

    async def _run_stage(self, stage: str, *command: str, cwd: Optional[Path] = None) -> None:
        self.logger.info(f"Running {stage}...")
        returncode = await self.runner(*command, cwd=cwd)
        if returncode != 0:
            self.logger.error(f"{stage} exited with {returncode}")
            raise CommandFailedError(stage, command, returncode)

    def build_commands(self) -> Dict[str, Sequence[str]]:
        cfg = self.config
        return {
            "SAM build": (
                "sam", "build",
                "--use-container",
                "--template", str(cfg.template_file),
                "--profile", cfg.profile,
            ),
            "SAM package": (
                "sam", "package",
                "--output-template-file", str(cfg.package_file),
                "--s3-bucket", cfg.source_bucket,
                "--profile", cfg.profile,
            ),
            "SAM deploy": (
                "sam", "deploy",
                "--template-file", str(cfg.package_file),
                "--stack-name", cfg.stack_name,
                "--capabilities", "CAPABILITY_NAMED_IAM",
                "--profile", cfg.profile,
                "--parameter-overrides",
                f"BucketName={cfg.source_bucket}",
                f"ProjectName={cfg.stack_name}",
            ),
        }

    async def deploy_stack(self) -> None:
        for stage, command in self.build_commands().items():
            await self._run_stage(stage, *command)

    async def stack_outputs(self) -> Dict[str, str]:
        session = self.session_factory(self.config)
        async with session.client("cloudformation", region_name=self.config.region) as client:
            return await get_stack_outputs(client, self.config.stack_name)

    async def confirm_webui_config(self, outputs: Dict[str, str]) -> None:
        config_file = self.config.webui_dir / "src" / "config.tsx"
        self.logger.info(f"Edit {config_file} with these stack outputs:")
        for key in self.config.webui_outputs:
            self.logger.info(f"  {key} = {outputs.get(key, '<missing>')}")
        prompt = f"Finished editing {config_file}, continue"
        if not await asyncio.to_thread(self.confirm, prompt):
            raise DeployAborted("Stopped before building the web UI")

    async def build_webui(self) -> None:
        await self._run_stage("npm install", "npm", "install", cwd=self.config.webui_dir)
        await self._run_stage("web UI build", "npm", "run", "build", cwd=self.config.webui_dir)

    async def upload_webui(self, web_bucket: str) -> SyncReport:
        self.logger.info("Uploading web assets...")
        session = self.session_factory(self.config)
        async with session.client("s3", region_name=self.config.region) as client:
            return await sync_directory(
                client, self.config.web_build_dir, web_bucket, self.config.web_prefix
            )

    async def run(self) -> SyncReport:
        cfg = self.config
        self.logger.info(f"Using '{cfg.profile}' as AWS profile")
        self.logger.info(f"Using '{cfg.source_bucket}' as source s3 bucket")
        self.logger.info(f"Using '{cfg.stack_name}' as CloudFormation stack name")

        await self.deploy_stack()

        outputs = await self.stack_outputs()
        await self.confirm_webui_config(outputs)
        web_bucket = require_output(outputs, cfg.stack_name, cfg.web_bucket_output)
        self.logger.info(f"Web bucket: {web_bucket}")

        await self.build_webui()
        report = await self.upload_webui(web_bucket)
        self.logger.success("Done!")
        return report
