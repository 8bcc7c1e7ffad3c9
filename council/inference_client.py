from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from .config import Settings
from .errors import CouncilError
from .role_config import Role, RoleConfig
from .run_agent import AgentResult
from .tools.agent_tool import ToolContext, ToolRegistry

logger = logging.getLogger(__name__)


class InferenceAPIError(CouncilError):
    """Raised when the inference gateway returns an error."""


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


class GatewayInferenceClient:
    """Async client for an OpenAI-compatible chat-completions gateway with tool calling."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None,
        timeout_seconds: float = 300.0,
        max_tool_rounds: int = 12,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )
        self._max_tool_rounds = max_tool_rounds

    @classmethod
    def from_settings(cls, settings: Settings) -> GatewayInferenceClient:
        return cls(
            base_url=settings.ai_gateway_base_url,
            api_key=settings.ai_gateway_api_key,
            timeout_seconds=settings.agent_timeout,
            max_tool_rounds=settings.agent_max_tool_rounds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = await self._client.post(path, json=body)
            resp.raise_for_status()
        except httpx.RequestError as e:
            raise InferenceAPIError(f"Gateway request failed (POST {path}): {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise InferenceAPIError(f"Gateway API error {status} (POST {path}): {e.response.text}") from e
        payload = resp.json()
        if not isinstance(payload, dict):
            raise InferenceAPIError(f"Unexpected gateway response: {payload!r}")
        return payload

    async def run_agent(
        self,
        *,
        role: Role,
        config: RoleConfig,
        prompt: str,
        tools: ToolRegistry,
        ctx: ToolContext,
    ) -> AgentResult:
        model = config.get("model")
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": config.get("system", "")},
            {"role": "user", "content": prompt},
        ]
        schemas = tools.schemas()

        for round_number in range(1, self._max_tool_rounds + 1):
            body: dict[str, Any] = {"model": model, "messages": messages}
            if schemas:
                body["tools"] = schemas
            payload = await self._request("/chat/completions", body)

            choices = payload.get("choices") or []
            if not choices:
                raise InferenceAPIError(f"Gateway returned no choices for {role.value}")
            message = choices[0].get("message") or {}
            tool_calls = message.get("tool_calls") or []
            content = message.get("content") or ""

            if not tool_calls:
                return AgentResult(
                    agent=role.value,
                    success=True,
                    raw_output=content,
                    tool_rounds=round_number - 1,
                    model_used=payload.get("model") or model,
                )

            messages.append(
                {"role": "assistant", "content": content or None, "tool_calls": tool_calls}
            )
            for call in tool_calls:
                function = call.get("function") or {}
                name = function.get("name", "")
                result = await tools.invoke(name, _parse_arguments(function.get("arguments")), ctx)
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.get("id"),
                        "content": json.dumps(result.to_dict(), default=str),
                    }
                )

        logger.warning("[%s] stopped after %d tool rounds", role.value, self._max_tool_rounds)
        return AgentResult(
            agent=role.value,
            success=False,
            raw_output="",
            error=f"Exceeded {self._max_tool_rounds} tool rounds",
            tool_rounds=self._max_tool_rounds,
            model_used=model,
        )
