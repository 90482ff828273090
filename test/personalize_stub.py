import json
from collections import Counter
from typing import Dict, List, Optional

from aiohttp import web
from loguru import logger

REGION = "us-east-1"
ACCOUNT = "123456789012"


class PersonalizeStubServer:
    """Serves scripted Personalize and Lambda responses for botocore clients.

    Each describe call pops the next status of its resource kind; the last
    status repeats once the script runs out.
    """

    def __init__(self, statuses: Optional[Dict[str, List[str]]] = None):
        self.statuses = {
            "solution": ["ACTIVE"],
            "solution_version": ["ACTIVE"],
            "campaign": ["ACTIVE"],
            "function": ["Successful"],
        }
        self.statuses.update({kind: list(seq) for kind, seq in (statuses or {}).items()})
        self.calls = Counter()
        self.requests: List[dict] = []
        self.functions: Dict[str, dict] = {}
        self.campaign_updates = 0
        self.function_status: Dict[str, str] = {}
        self.app = web.Application()
        self.app.router.add_post("/", self.handle_personalize)
        self.app.router.add_get(
            "/2015-03-31/functions/{name}/configuration", self.handle_get_function
        )
        self.app.router.add_put(
            "/2015-03-31/functions/{name}/configuration", self.handle_update_function
        )
        self.runner = None
        self.logger = logger

    def _next_status(self, kind: str) -> str:
        script = self.statuses[kind]
        return script.pop(0) if len(script) > 1 else script[0]

    def _arn(self, kind: str, name: str) -> str:
        return f"arn:aws:personalize:{REGION}:{ACCOUNT}:{kind}/{name}"

    @staticmethod
    def _with_failure(record: dict) -> dict:
        if record["status"].endswith("FAILED"):
            record["failureReason"] = "stubbed failure"
        return record

    async def handle_personalize(self, request: web.Request) -> web.Response:
        operation = request.headers["X-Amz-Target"].split(".")[-1]
        params = json.loads(await request.text() or "{}")
        self.calls[operation] += 1
        self.requests.append({"operation": operation, **params})
        self.logger.info(f"Personalize {operation}")

        if operation == "CreateSolution":
            body = {"solutionArn": self._arn("solution", params["name"])}
        elif operation == "DescribeSolution":
            body = {
                "solution": self._with_failure(
                    {"solutionArn": params["solutionArn"], "status": self._next_status("solution")}
                )
            }
        elif operation == "CreateSolutionVersion":
            body = {"solutionVersionArn": f"{params['solutionArn']}/v{self.calls[operation]}"}
        elif operation == "DescribeSolutionVersion":
            body = {
                "solutionVersion": self._with_failure(
                    {
                        "solutionVersionArn": params["solutionVersionArn"],
                        "status": self._next_status("solution_version"),
                    }
                )
            }
        elif operation == "CreateCampaign":
            body = {"campaignArn": self._arn("campaign", params["name"])}
        elif operation == "UpdateCampaign":
            self.campaign_updates += 1
            body = {"campaignArn": params["campaignArn"]}
        elif operation == "DescribeCampaign":
            status = self._next_status("campaign")
            campaign = {"campaignArn": params["campaignArn"], "status": "ACTIVE"}
            if self.campaign_updates:
                campaign["latestCampaignUpdate"] = self._with_failure({"status": status})
            else:
                campaign["status"] = status
                self._with_failure(campaign)
            body = {"campaign": campaign}
        else:
            return web.json_response(
                {"__type": "InvalidInputException", "message": f"unsupported {operation}"},
                status=400,
            )
        return web.json_response(body, content_type="application/x-amz-json-1.1")

    def _function(self, name: str) -> dict:
        if name not in self.functions:
            self.functions[name] = {
                "FunctionName": name,
                "FunctionArn": f"arn:aws:lambda:{REGION}:{ACCOUNT}:function:{name}",
                "Environment": {"Variables": {}},
            }
        self.functions[name].setdefault("RevisionId", "rev-1")
        return self.functions[name]

    async def handle_get_function(self, request: web.Request) -> web.Response:
        self.calls["GetFunctionConfiguration"] += 1
        function = dict(self._function(request.match_info["name"]))
        function["LastUpdateStatus"] = self._next_status("function")
        self.function_status[function["FunctionName"]] = function["LastUpdateStatus"]
        if function["LastUpdateStatus"] == "Failed":
            function["LastUpdateStatusReason"] = "stubbed failure"
        return web.json_response(function)

    @staticmethod
    def _lambda_error(status: int, error_type: str, message: str) -> web.Response:
        return web.json_response(
            {"Type": "User", "message": message},
            status=status,
            headers={"x-amzn-ErrorType": error_type},
        )

    async def handle_update_function(self, request: web.Request) -> web.Response:
        self.calls["UpdateFunctionConfiguration"] += 1
        params = json.loads(await request.text())
        name = request.match_info["name"]
        function = self._function(name)
        self.requests.append({"operation": "UpdateFunctionConfiguration", **params})

        if self.function_status.get(name) == "InProgress":
            return self._lambda_error(
                409,
                "ResourceConflictException",
                "The operation cannot be performed at this time. An update is in progress.",
            )
        if params.get("RevisionId") and params["RevisionId"] != function["RevisionId"]:
            return self._lambda_error(
                412, "PreconditionFailedException", "The RevisionId provided does not match."
            )

        if "Environment" in params:
            function["Environment"] = params["Environment"]
        revision = int(function["RevisionId"].split("-")[1]) + 1
        function["RevisionId"] = f"rev-{revision}"
        self.function_status[name] = "InProgress"
        return web.json_response({**function, "LastUpdateStatus": "InProgress"})

    async def start(self) -> str:
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "127.0.0.1", 0)
        await site.start()
        port = self.runner.addresses[0][1]
        self.logger.info(f"Stub server started on port {port}")
        return f"http://127.0.0.1:{port}"

    async def stop(self) -> None:
        if self.runner is not None:
            await self.runner.cleanup()
