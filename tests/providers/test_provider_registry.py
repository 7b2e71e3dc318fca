from __future__ import annotations

import json

import pytest

from cbroute.errors import ConfigurationError
from cbroute.providers import ProviderRegistry, descriptor_from_mapping
from cbroute.types import ModelRate


def _row(**overrides) -> dict:
    row = {
        "id": "OpenAI",
        "type": "openai",
        "base_url": "https://api.openai.com/v1/",
        "models": {"gpt-4o-mini": {"input_per_1k": 0.00015, "output_per_1k": 0.0006}},
    }
    row.update(overrides)
    return row


def test_descriptor_normalizes_id_and_base_url():
    descriptor = descriptor_from_mapping(_row(task_tags=["coding"], nominal_latency_ms=250))

    assert descriptor.provider_id == "openai"
    assert descriptor.base_url == "https://api.openai.com/v1"
    assert descriptor.rate_for("gpt-4o-mini") == ModelRate(0.00015, 0.0006)
    assert descriptor.task_tags == frozenset({"coding"})
    assert descriptor.nominal_latency_ms == 250.0
    assert descriptor.supports_streaming is True
    assert descriptor.supports_function_calling is False


@pytest.mark.parametrize(
    "overrides",
    [
        {"id": " "},
        {"type": "azure"},
        {"base_url": ""},
        {"models": ["gpt-4o-mini"]},
    ],
)
def test_invalid_rows_are_configuration_errors(overrides):
    with pytest.raises(ConfigurationError):
        descriptor_from_mapping(_row(**overrides))


def test_duplicate_provider_ids_are_rejected():
    with pytest.raises(ConfigurationError):
        ProviderRegistry.from_rows([_row(), _row(id="openai")])


def test_registration_order_drives_lookup_and_model_search():
    registry = ProviderRegistry.from_rows(
        [
            _row(id="first", models={"shared": {}}),
            _row(id="second", models={"shared": {}, "only-second": {}}),
        ]
    )

    assert registry.ids() == ["first", "second"]
    assert registry.find_model("shared").provider_id == "first"
    assert registry.find_model("only-second").provider_id == "second"
    assert registry.find_model("missing") is None
    assert registry.get("SECOND").provider_id == "second"
    assert registry.order_of("second") == 1


def test_api_key_precedence_is_request_then_inline_then_env(monkeypatch):
    monkeypatch.setenv("TEST_OPENAI_KEY", "sk-env")
    registry = ProviderRegistry.from_rows(
        [_row(api_key_env="TEST_OPENAI_KEY"), _row(id="inline", api_key="sk-inline")]
    )
    env_backed = registry.get("openai")
    inline = registry.get("inline")

    assert registry.api_key_for(env_backed) == "sk-env"
    assert registry.api_key_for(env_backed, {"openai": "sk-byok"}) == "sk-byok"
    assert registry.api_key_for(inline) == "sk-inline"
    assert "sk-inline" not in repr(inline)


def test_reload_swaps_the_whole_table():
    registry = ProviderRegistry.from_rows([_row()])

    registry.reload([descriptor_from_mapping(_row(id="replacement"))])

    assert registry.ids() == ["replacement"]
    assert registry.get("openai") is None


def test_from_file_loads_json_list(tmp_path):
    path = tmp_path / "providers.json"
    path.write_text(json.dumps([_row()]), encoding="utf-8")
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"providers": []}), encoding="utf-8")

    assert ProviderRegistry.from_file(path).ids() == ["openai"]
    with pytest.raises(ConfigurationError):
        ProviderRegistry.from_file(bad)
    with pytest.raises(ConfigurationError):
        ProviderRegistry.from_file(tmp_path / "missing.json")
