"""Minimal demonstration of FeatherAgent with a calculator tool.

Requires OPENROUTER_API_KEY (or a config.yaml) to reach the model endpoint.
"""

import asyncio

from feather_core import AgentConfig, FeatherAgent, ToolDef, ToolParam, TraceRecorder
from feather_core.infrastructure.logging.logger import logger


async def calculate(args):
    logger.info("Executing calculator tool", extra={"extra": {"args": args}})
    num1, num2, op = args.get("num1"), args.get("num2"), args.get("operation")
    if not isinstance(num1, (int, float)) or not isinstance(num2, (int, float)):
        raise ValueError("Both numbers must be valid numeric values")
    if op == "add":
        return {"result": num1 + num2}
    if op == "subtract":
        return {"result": num1 - num2}
    if op == "multiply":
        return {"result": num1 * num2}
    if op == "divide":
        if num2 == 0:
            raise ValueError("Division by zero is not allowed")
        return {"result": num1 / num2}
    raise ValueError(f"Unsupported operation: {op}")


calculator_tool = ToolDef.from_params(
    name="calculator",
    description="Performs basic arithmetic operations between two numbers",
    params={
        "num1": ToolParam("num1", "The first number in the calculation", True, {"type": "number"}),
        "num2": ToolParam("num2", "The second number in the calculation", True, {"type": "number"}),
        "operation": ToolParam(
            "operation",
            "The arithmetic operation to perform",
            True,
            {"type": "string", "enum": ["add", "subtract", "multiply", "divide"]},
        ),
    },
    handler=calculate,
)


async def main() -> None:
    recorder = TraceRecorder()

    # 不自动执行：由调用方自己处理模型给出的工具调用
    manual = FeatherAgent(
        AgentConfig(
            system_prompt="You are a math tutor who can do calculations using the calculator tool.",
            agent_id="math-tutor-manual",
            force_tool=True,
            auto_execute_tools=False,
        ),
        tools=[calculator_tool],
        event_sink=recorder,
    )
    res = await manual.run("What is 1294 multiplied by 9966?")
    if not res.success:
        print("Agent error:", res.error)
        return
    for call in res.function_calls or []:
        value = await calculate(call.arguments)
        print(f"{call.name}({call.arguments}) -> {value}")

    # 链式模式：模型自行多次调用工具，最后调用 finish
    chained = FeatherAgent(
        AgentConfig(
            system_prompt="You are a careful math tutor. Use the calculator for every step.",
            agent_id="math-tutor-chain",
            chain_run=True,
            max_chain_iterations=4,
            cognition=True,
        ),
        tools=[calculator_tool],
        event_sink=recorder,
    )
    res = await chained.run("Compute (12 + 30) * 7, then divide the result by 3.")
    print("Chain result:", res.output if res.success else res.error)


if __name__ == "__main__":
    asyncio.run(main())
