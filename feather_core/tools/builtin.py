"""内置工具。

目前只有联网搜索：通过 Perplexity 的 chat/completions 接口获取带实时信息的回答。
"""

from typing import Any, Dict, Optional

import httpx

from feather_core.config.settings import settings as default_settings
from feather_core.domain.exceptions import ApiError, NetworkError, ValidationError
from feather_core.infrastructure.logging.logger import logger
from .definitions import ToolDef, ToolParam


SEARCH_SYSTEM_PROMPT = "Give a clear, direct answer to the user's question."


def internet_search_tool(settings=None) -> ToolDef:
    cfg = settings or default_settings

    async def _run(args: Dict[str, Any]) -> Dict[str, str]:
        query = args.get("query")
        if not isinstance(query, str) or not query.strip():
            raise ValueError("Query must be a non-empty string")
        logger.info("Executing internet search tool", extra={"extra": {"query": query}})
        return {"result": await _query_perplexity(cfg, query.strip())}

    return ToolDef.from_params(
        name="search_internet",
        description="Search the internet for up-to-date information",
        params={
            "query": ToolParam(
                name="query",
                description="The search query to look up information about",
                required=True,
                schema={"type": "string"},
            )
        },
        handler=_run,
    )


async def _query_perplexity(cfg, query: str) -> str:
    api_key: Optional[str] = getattr(cfg, "perplexity_api_key", None)
    if not api_key:
        raise ValidationError(code="MISSING_API_KEY", message="PERPLEXITY_API_KEY not set")
    payload = {
        "model": cfg.perplexity_model,
        "messages": [
            {"role": "system", "content": SEARCH_SYSTEM_PROMPT},
            {"role": "user", "content": query},
        ],
    }
    try:
        async with httpx.AsyncClient(timeout=cfg.http_timeout, trust_env=False) as client:
            resp = await client.post(
                f"{cfg.perplexity_base_url}/chat/completions",
                json=payload,
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
            )
    except httpx.RequestError as e:
        raise NetworkError(code="NETWORK_ERROR", message=str(e))
    if resp.status_code >= 400:
        raise ApiError(
            code="API_ERROR",
            message=f"Search request failed with status {resp.status_code}",
            http_status=resp.status_code,
        )
    data = resp.json()
    choices = data.get("choices") or []
    if not choices:
        raise ApiError(code="API_ERROR", message="Search returned no choices")
    return (choices[0].get("message") or {}).get("content") or ""
