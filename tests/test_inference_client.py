import json

import httpx
import pytest

from council.inference_client import GatewayInferenceClient, InferenceAPIError
from council.role_config import Role, resolve_role
from council.sandbox import SandboxHandle
from council.tools.agent_tool import RunState, ToolContext
from council.tools.sandbox_tools import build_council_tools

from .fakes import FakeProvider, FakeSession


def _ctx(provider: FakeProvider) -> ToolContext:
    return ToolContext(sandbox=SandboxHandle(FakeSession("sbx-1", provider)), agent_name="reviewer", state=RunState())


def _client(responses: list[httpx.Response], requests: list[dict], max_tool_rounds: int = 4):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        return responses.pop(0)

    return GatewayInferenceClient(
        base_url="https://gateway.test/v1",
        api_key="key",
        max_tool_rounds=max_tool_rounds,
        transport=httpx.MockTransport(handler),
    )


def _tool_call_response(call_id: str, name: str, arguments: dict) -> httpx.Response:
    message = {
        "role": "assistant",
        "content": None,
        "tool_calls": [
            {"id": call_id, "type": "function", "function": {"name": name, "arguments": json.dumps(arguments)}}
        ],
    }
    return httpx.Response(200, json={"model": "anthropic/claude-sonnet-4.5", "choices": [{"message": message}]})


@pytest.mark.asyncio
async def test_tool_round_then_final_answer() -> None:
    provider = FakeProvider()
    provider.files["README.md"] = "# app"
    requests: list[dict] = []
    responses = [
        _tool_call_response("call-1", "readFiles", {"paths": ["README.md"]}),
        _tool_call_response("call-2", "submitVote", {"decision": "approve", "confidence": 0.8}),
        httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": "LGTM"}}]}),
    ]
    client = _client(responses, requests)
    ctx = _ctx(provider)

    result = await client.run_agent(
        role=Role.REVIEWER,
        config=resolve_role(Role.REVIEWER),
        prompt="Review it",
        tools=build_council_tools(),
        ctx=ctx,
    )
    await client.aclose()

    assert result.success
    assert result.raw_output == "LGTM"
    assert result.tool_rounds == 2
    assert ctx.state.votes["reviewer"].confidence == 0.8

    first = requests[0]
    assert first["model"] == "anthropic/claude-sonnet-4.5"
    assert first["messages"][0]["role"] == "system"
    assert {t["function"]["name"] for t in first["tools"]} >= {"readFiles", "submitVote"}

    tool_message = requests[1]["messages"][-1]
    assert tool_message["role"] == "tool"
    assert tool_message["tool_call_id"] == "call-1"
    assert json.loads(tool_message["content"])["output"] == [{"path": "README.md", "content": "# app"}]


@pytest.mark.asyncio
async def test_stops_after_max_tool_rounds() -> None:
    requests: list[dict] = []
    responses = [_tool_call_response(f"call-{i}", "readFiles", {"paths": []}) for i in range(2)]
    client = _client(responses, requests, max_tool_rounds=2)

    result = await client.run_agent(
        role=Role.PLANNER,
        config=resolve_role(Role.PLANNER),
        prompt="Plan",
        tools=build_council_tools(),
        ctx=_ctx(FakeProvider()),
    )

    assert not result.success
    assert "2 tool rounds" in result.error
    assert len(requests) == 2


@pytest.mark.asyncio
async def test_http_error_is_wrapped() -> None:
    client = _client([httpx.Response(502, text="bad gateway")], [])

    with pytest.raises(InferenceAPIError, match="502"):
        await client.run_agent(
            role=Role.PLANNER,
            config=resolve_role(Role.PLANNER),
            prompt="Plan",
            tools=build_council_tools(),
            ctx=_ctx(FakeProvider()),
        )


def test_role_model_can_be_overridden(monkeypatch) -> None:
    monkeypatch.setenv("COUNCIL_ROLE_PLANNER_MODEL", "openai/gpt-5")
    assert resolve_role(Role.PLANNER)["model"] == "openai/gpt-5"
    assert resolve_role(Role.REVIEWER)["model"] == "anthropic/claude-sonnet-4.5"
