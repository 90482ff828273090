from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, field_validator


class Readiness(str, Enum):
    ready = "ready"
    not_ready = "not_ready"
    failed = "failed"


class Verdict(BaseModel):
    """Outcome of evaluating one resource description"""

    readiness: Readiness
    status: str
    detail: Optional[str] = None

    @classmethod
    def ready(cls, status: str) -> "Verdict":
        return cls(readiness=Readiness.ready, status=status)

    @classmethod
    def not_ready(cls, status: str) -> "Verdict":
        return cls(readiness=Readiness.not_ready, status=status)

    @classmethod
    def failed(cls, status: str, detail: Optional[str] = None) -> "Verdict":
        return cls(readiness=Readiness.failed, status=status, detail=detail or status)


class PollResult(BaseModel):
    verdict: Verdict
    description: dict
    elapsed_time: float
    attempts: int


class StatusPollingConfig(BaseModel):
    interval: float = 60.0
    max_interval: float = 300.0
    backoff_factor: float = 1.0
    timeout: float = 3 * 60 * 60.0  # 3 hours

    @field_validator("backoff_factor")
    @classmethod
    def _no_shrinking_interval(cls, value: float) -> float:
        if value < 1.0:
            raise ValueError("backoff_factor must be >= 1.0")
        return value


class WorkflowConfig(BaseModel):
    """Per-operation polling budgets and resource settings for a Personalize run"""

    solution: StatusPollingConfig = StatusPollingConfig(interval=30.0, timeout=60 * 60.0)
    training: StatusPollingConfig = StatusPollingConfig(timeout=4 * 60 * 60.0)
    hosting: StatusPollingConfig = StatusPollingConfig(timeout=3 * 60 * 60.0)
    function_update: StatusPollingConfig = StatusPollingConfig(
        interval=2.0, max_interval=10.0, timeout=5 * 60.0
    )
    training_mode: str = "FULL"
    min_provisioned_tps: int = 1
    campaign_env_key: str = "CAMPAIGN_ARN"


class DeploymentContext(BaseModel):
    """Identifiers handed from one orchestration step to the next"""

    dataset_group_arn: str
    recipe_arn: str = "arn:aws:personalize:::recipe/aws-user-personalization"
    solution_name: str
    campaign_name: str
    function_name: Optional[str] = None
    solution_arn: Optional[str] = None
    solution_version_arn: Optional[str] = None
    campaign_arn: Optional[str] = None

    def advance(self, **identifiers: str) -> "DeploymentContext":
        return self.model_copy(update=identifiers)


class DeployConfig(BaseModel):
    source_bucket: str
    stack_name: str
    profile: str = "default"
    region: str = "us-east-1"
    template_file: Path = Path("template.yaml")
    package_file: Path = Path("package.tmp.yaml")
    webui_dir: Path = Path("webui")
    web_prefix: str = "web"
    web_bucket_output: str = "WebBucketName"
    webui_outputs: tuple = ("Apitree", "AnonymousPoolId", "StreamName")

    @field_validator("source_bucket", "stack_name")
    @classmethod
    def _required(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("profile", mode="before")
    @classmethod
    def _default_profile(cls, value: Optional[str]) -> str:
        return value or "default"

    @property
    def web_build_dir(self) -> Path:
        return self.webui_dir / "build"
