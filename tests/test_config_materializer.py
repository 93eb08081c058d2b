"""Generator options: header merge, method/field normalization, on-disk document."""

from __future__ import annotations

import json

import pytest

from garak_service.scan_graph.errors import ConfigWriteError
from garak_service.scan_graph.nodes.config_materializer import build_generator_options
from garak_service.scan_graph.nodes.config_materializer import config_materializer_node
from garak_service.scan_graph.nodes.config_materializer import normalize_response_field
from garak_service.scan_graph.nodes.config_materializer import write_generator_options
from garak_service.scan_graph.settings import ScanCredentials
from garak_service.scan_graph.state import build_initial_state


def _request(**overrides):
    request = {
        "name": "t1",
        "uri": "https://x/api",
        "method": "POST",
        "headers": {"X-Trace": "abc"},
        "body_template": {"messages": [{"role": "user", "content": "$INPUT"}], "stream": False},
        "response_field": "text",
    }
    request.update(overrides)
    return request


def test_response_field_gets_root_marker():
    assert normalize_response_field("output") == "$.output"


def test_response_field_normalization_is_idempotent():
    once = normalize_response_field("choices[0].text")
    assert normalize_response_field(once) == once
    assert normalize_response_field("$.data.reply") == "$.data.reply"
    assert normalize_response_field("$['reply']") == "$['reply']"


def test_generator_options_shape():
    request = _request(method="POST")
    options = build_generator_options(request, request_timeout=30)
    generator = options["rest"]["RestGenerator"]

    assert generator == {
        "uri": "https://x/api",
        "method": "post",
        "headers": {"X-Trace": "abc"},
        "req_template_json_object": request["body_template"],
        "response_json": True,
        "response_json_field": "$.text",
        "request_timeout": 30,
    }


def test_api_key_merged_without_mutating_input_headers():
    headers = {"Content-Type": "application/json"}
    request = _request(headers=headers)

    options = build_generator_options(request, api_key="sk-123")

    assert options["rest"]["RestGenerator"]["headers"] == {
        "Content-Type": "application/json",
        "Authorization": "Bearer sk-123",
    }
    assert headers == {"Content-Type": "application/json"}


def test_body_template_serializes_identically(tmp_path):
    request = _request()
    path = write_generator_options(tmp_path / "cfg" / "scan_generator_options.json", build_generator_options(request))

    written = json.loads(path.read_text())
    template = written["rest"]["RestGenerator"]["req_template_json_object"]
    assert json.dumps(template) == json.dumps(request["body_template"])


def test_write_failure_is_config_write_error(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x")

    with pytest.raises(ConfigWriteError, match="Failed to write generator options file"):
        write_generator_options(blocker / "options.json", {"rest": {}})


@pytest.mark.asyncio
async def test_node_writes_options_and_marks_running(make_settings):
    settings = make_settings()
    state = build_initial_state("scan-abc", _request(api_key="sk-1"), settings)
    config = {"configurable": {"settings": settings, "credentials": ScanCredentials(api_key="sk-1")}}

    next_state = await config_materializer_node(state, config)

    assert next_state["status"] == "running"
    assert next_state["errors"] == []
    written = json.loads((settings.config_dir / "scan-abc_generator_options.json").read_text())
    assert written["rest"]["RestGenerator"]["headers"]["Authorization"] == "Bearer sk-1"
    assert settings.temp_dir.is_dir()
    assert "api_key" not in next_state["request"]


@pytest.mark.asyncio
async def test_node_records_config_write_failure(make_settings, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("x")
    settings = make_settings(config_dir=blocker / "config")
    state = build_initial_state("scan-def", _request(), settings)

    next_state = await config_materializer_node(state, {"configurable": {"settings": settings}})

    assert next_state["error_kind"] == "config_write"
    assert next_state["errors"][0].startswith("Failed to write generator options file")
