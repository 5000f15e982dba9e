import json
from pathlib import Path
from typing import Any

import pytest

from deepcode.config import Config
from deepcode.tools.executor import (
    ToolExecutor,
    build_default_registry,
    parse_tool_arguments,
    parse_tool_call,
)
from deepcode.tools.registry import Tool, ToolContext, ToolRegistry, ToolResult


class EchoTool(Tool):
    name = "echo"
    description = "Echo the text argument"
    parameters = {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    }

    def __init__(self) -> None:
        self.seen: list[dict[str, Any]] = []

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        self.seen.append(arguments)
        return self.success(arguments["text"], {"session": context.session_id})


class ExplodingTool(Tool):
    name = "explode"
    description = "Always raises"
    parameters = {"type": "object", "properties": {}}

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        raise RuntimeError("boom")


def _call(call_id: str, name: str, arguments: Any = "") -> dict[str, Any]:
    return {"id": call_id, "type": "function", "function": {"name": name, "arguments": arguments}}


def _executor(tmp_path: Path, *tools: Tool) -> ToolExecutor:
    registry = ToolRegistry()
    for tool in tools:
        registry.register(tool)
    return ToolExecutor(tmp_path, registry=registry)


@pytest.mark.asyncio
async def test_execute_tool_calls_in_order_with_serialized_results(tmp_path: Path):
    executor = _executor(tmp_path, EchoTool())

    executions = await executor.execute_tool_calls(
        "s1",
        [_call("c1", "echo", '{"text": "first"}'), _call("c2", "echo", '{"text": "second"}')],
    )

    assert [item.tool_call_id for item in executions] == ["c1", "c2"]
    payload = json.loads(executions[0].content)
    assert list(payload) == ["ok", "name", "output", "metadata"]
    assert payload == {"ok": True, "name": "echo", "output": "first", "metadata": {"session": "s1"}}
    assert executions[0].content == json.dumps(payload, indent=2)


@pytest.mark.asyncio
async def test_unknown_tool_reports_error(tmp_path: Path):
    executions = await _executor(tmp_path).execute_tool_calls("s1", [_call("c1", "teleport")])

    assert json.loads(executions[0].content) == {
        "ok": False,
        "name": "teleport",
        "error": "Unknown tool: teleport",
    }


@pytest.mark.asyncio
async def test_invalid_json_arguments_report_parse_error(tmp_path: Path):
    executions = await _executor(tmp_path, EchoTool()).execute_tool_calls("s1", [_call("c1", "echo", "{oops")])

    payload = json.loads(executions[0].content)
    assert payload["ok"] is False
    assert payload["error"].startswith("Failed to parse tool arguments: ")


@pytest.mark.asyncio
async def test_non_object_arguments_are_rejected(tmp_path: Path):
    executions = await _executor(tmp_path, EchoTool()).execute_tool_calls("s1", [_call("c1", "echo", "[1, 2]")])

    assert json.loads(executions[0].content)["error"] == "Tool arguments must be a JSON object."


@pytest.mark.asyncio
async def test_missing_required_argument_is_reported_before_execution(tmp_path: Path):
    tool = EchoTool()

    executions = await _executor(tmp_path, tool).execute_tool_calls("s1", [_call("c1", "echo", "")])

    assert json.loads(executions[0].content)["error"] == 'Missing required "text" string.'
    assert tool.seen == []


@pytest.mark.asyncio
async def test_raised_exception_becomes_failed_result(tmp_path: Path):
    executions = await _executor(tmp_path, ExplodingTool()).execute_tool_calls("s1", [_call("c1", "explode")])

    assert json.loads(executions[0].content) == {"ok": False, "name": "explode", "error": "boom"}


@pytest.mark.asyncio
async def test_malformed_calls_are_dropped(tmp_path: Path):
    executor = _executor(tmp_path, EchoTool())

    executions = await executor.execute_tool_calls(
        "s1",
        [
            "not-a-dict",
            {"id": 7, "function": {"name": "echo"}},
            {"id": "c2"},
            {"id": "c3", "function": {"name": None}},
            _call("c4", "echo", '{"text": "kept"}'),
        ],
    )

    assert [item.tool_call_id for item in executions] == ["c4"]


def test_parse_tool_call_defaults_non_string_arguments():
    call = parse_tool_call({"id": "c1", "function": {"name": "bash", "arguments": {"command": "ls"}}})

    assert call is not None
    assert call.arguments == ""
    assert call.to_dict() == {"id": "c1", "type": "function", "function": {"name": "bash", "arguments": ""}}


def test_parse_tool_arguments_empty_string_is_empty_object():
    assert parse_tool_arguments("") == {}


def test_default_registry_respects_enabled_tools():
    config = Config()
    config.tools.enabled = ["read", "edit"]

    registry = build_default_registry(config)

    assert registry.list_tools() == ["read", "edit"]
    definitions = registry.get_definitions()
    assert definitions[0]["type"] == "function"
    assert definitions[0]["function"]["parameters"]["required"] == ["file_path"]
