"""系统提示词构建工具。

每次调用模型前，Agent 都会用 build_system_prompt 重新生成 system 消息：
1. 用动态变量替换模板中的 {{name}} 占位符；
2. 链式模式下追加轮数预算说明（最后一轮追加强制结束警告）；
3. 追加 cognition 或结构化输出的格式说明（二者互斥）。

各段说明文本保存在本目录下的 *.md 模板中。
"""

import json
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from feather_core.domain.models import ResponseFormat
from feather_core.infrastructure.logging.logger import logger
from feather_core.tools.definitions import FINISH_TOOL_NAME


PROMPTS_DIR = Path(__file__).resolve().parent
PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][\w-]*)\s*\}\}")

DynamicVariables = Mapping[str, Callable[[], Any]]


@lru_cache(maxsize=None)
def load_prompt(name: str) -> str:
    """按名称加载 prompts 目录下的说明模板。"""

    return (PROMPTS_DIR / f"{name}.md").read_text(encoding="utf-8").strip()


def render_dynamic_variables(template: str, providers: Optional[DynamicVariables]) -> str:
    """替换 {{name}} 占位符。

    没有对应 provider 的占位符保持原样；provider 抛异常时替换为
    "[name: no dynamic variable available]"，不会中断构建。
    """

    if not providers:
        return template
    resolved: Dict[str, str] = {}

    def _resolve(name: str) -> str:
        if name not in resolved:
            try:
                value = providers[name]()
                resolved[name] = value if isinstance(value, str) else str(value)
            except Exception:  # noqa: BLE001 - 动态变量失败只降级为占位文本
                logger.warning(
                    "Dynamic variable provider failed",
                    exc_info=True,
                    extra={"extra": {"variable": name}},
                )
                resolved[name] = f"[{name}: no dynamic variable available]"
        return resolved[name]

    def _replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name not in providers:
            return match.group(0)
        return _resolve(name)

    return PLACEHOLDER_PATTERN.sub(_replace, template)


def render_structured_instructions(response_format: ResponseFormat) -> str:
    lines = []
    for name, spec in response_format.properties.items():
        line = f"- {name} ({_type_label(spec)})"
        description = spec.get("description") if isinstance(spec, dict) else None
        if description:
            line += f": {description}"
        lines.append(line)
    required = response_format.required
    return load_prompt("structured").format(
        name=response_format.name,
        properties="\n".join(lines) or "- (none)",
        required=", ".join(required) if required else "(none)",
        example=json.dumps(_skeleton(response_format.schema), indent=2, ensure_ascii=False),
    )


def build_system_prompt(
    template: str,
    *,
    dynamic_variables: Optional[DynamicVariables] = None,
    cognition: bool = False,
    response_format: Optional[ResponseFormat] = None,
    chain_run: bool = False,
    iteration: int = 1,
    max_iterations: int = 1,
) -> str:
    prompt = render_dynamic_variables(template, dynamic_variables)
    sections = [prompt]
    if chain_run:
        sections.append(
            load_prompt("chain").format(
                iteration=iteration,
                max_iterations=max_iterations,
                finish_tool=FINISH_TOOL_NAME,
            )
        )
        if iteration >= max_iterations:
            sections.append(load_prompt("chain_final").format(finish_tool=FINISH_TOOL_NAME))
    if cognition:
        sections.append(load_prompt("cognition"))
    elif response_format is not None:
        sections.append(render_structured_instructions(response_format))
    return "\n\n".join(sections)


def _type_label(spec: Any) -> str:
    if not isinstance(spec, dict):
        return "any"
    kind = spec.get("type")
    if isinstance(kind, list):
        return " | ".join(str(k) for k in kind)
    if kind:
        return str(kind)
    if "enum" in spec:
        return "enum"
    return "any"


def _skeleton(spec: Any) -> Any:
    if not isinstance(spec, dict):
        return "..."
    if spec.get("enum"):
        return spec["enum"][0]
    kind = spec.get("type")
    if isinstance(kind, list):
        kind = next((k for k in kind if k != "null"), None)
    if kind == "object" or "properties" in spec:
        return {name: _skeleton(sub) for name, sub in (spec.get("properties") or {}).items()}
    if kind == "array":
        return [_skeleton(spec["items"])] if isinstance(spec.get("items"), dict) else []
    if kind in ("number", "integer"):
        return 0
    if kind == "boolean":
        return False
    return "..."
