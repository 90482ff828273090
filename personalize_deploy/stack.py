from typing import Any, Dict

from loguru import logger


class StackOutputMissingError(KeyError):
    def __init__(self, stack_name: str, key: str):
        self.stack_name = stack_name
        self.key = key
        super().__init__(f"Stack {stack_name} has no output named {key}")


async def get_stack_outputs(client: Any, stack_name: str) -> Dict[str, str]:
    """Fetches the OutputKey -> OutputValue map of a CloudFormation stack"""
    response = await client.describe_stacks(StackName=stack_name)
    stacks = response.get("Stacks", [])
    if not stacks:
        return {}
    return {
        output["OutputKey"]: output["OutputValue"]
        for output in stacks[0].get("Outputs", [])
    }


def require_output(outputs: Dict[str, str], stack_name: str, key: str) -> str:
    try:
        return outputs[key]
    except KeyError:
        logger.error(f"Output {key} missing from stack {stack_name}")
        raise StackOutputMissingError(stack_name, key) from None
