"""Tests for azext_hcimigrate.telemetry."""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from azext_hcimigrate import telemetry

# Captured before the autouse conftest fixture stubs it out.
_post = telemetry._post

CONNECTION_STRING = (
    "InstrumentationKey=11111111-2222-3333-4444-555555555555;"
    "IngestionEndpoint=https://eastus-8.in.applicationinsights.azure.com/"
)


@pytest.fixture(autouse=True)
def _reset_telemetry():
    telemetry.reset()
    yield
    telemetry.reset()


@pytest.fixture
def enabled(monkeypatch):
    monkeypatch.setenv("APPINSIGHTS_CONNECTION_STRING", CONNECTION_STRING)
    monkeypatch.setenv("AZURE_CORE_COLLECT_TELEMETRY", "yes")


def _properties(post_mock):
    event = post_mock.call_args[0][0]
    return event["data"]["baseData"]["properties"]


class TestSettings:

    def test_parse_connection_string(self):
        settings = telemetry.parse_connection_string(CONNECTION_STRING)
        assert settings.endpoint == "https://eastus-8.in.applicationinsights.azure.com/v2/track"
        assert settings.instrumentation_key == "11111111-2222-3333-4444-555555555555"

    @pytest.mark.parametrize("value", ["", "garbage", "InstrumentationKey=abc"])
    def test_incomplete_connection_string(self, value):
        assert telemetry.parse_connection_string(value) == ("", "")

    def test_disabled_without_connection_string(self, monkeypatch):
        monkeypatch.delenv("APPINSIGHTS_CONNECTION_STRING", raising=False)
        monkeypatch.setenv("AZURE_CORE_COLLECT_TELEMETRY", "yes")
        assert not telemetry.is_enabled()

    @pytest.mark.parametrize("value", ["no", "false", "0", "OFF"])
    def test_cli_opt_out(self, monkeypatch, value):
        monkeypatch.setenv("APPINSIGHTS_CONNECTION_STRING", CONNECTION_STRING)
        monkeypatch.setenv("AZURE_CORE_COLLECT_TELEMETRY", value)
        assert not telemetry.is_enabled()

    def test_enabled(self, enabled):
        assert telemetry.is_enabled()

    def test_result_is_cached_until_reset(self, enabled, monkeypatch):
        assert telemetry.is_enabled()
        monkeypatch.setenv("AZURE_CORE_COLLECT_TELEMETRY", "no")
        assert telemetry.is_enabled()
        telemetry.reset()
        assert not telemetry.is_enabled()


class TestRedact:

    def test_resource_ids_masked(self):
        clean = telemetry.redact({
            "subscription_id": "00000000-0000-0000-0000-000000000001",
            "protected_item_id": "/subscriptions/x/...",
            "replication_vault_id": None,
            "project_name": "proj",
            "target_vm_cpu_cores": 4,
        })
        assert clean == {
            "subscription_id": "***",
            "protected_item_id": "***",
            "replication_vault_id": None,
            "project_name": "proj",
            "target_vm_cpu_cores": 4,
        }

    def test_non_scalars_become_type_names(self):
        assert telemetry.redact({"tags": {"env": "x"}}) == {"tags": "dict"}

    def test_private_keys_dropped(self):
        assert telemetry.redact({"_internal": 1}) == {}


class TestTrackCommand:

    def test_sends_event(self, enabled):
        with patch("azext_hcimigrate.telemetry._post", return_value=True) as post:
            sent = telemetry.track_command(
                "hcimigrate init", tenant_id="t1", duration_ms=1500,
                parameters={"subscription_id": "s", "location": "eastus", "instance_type": "VMwareToAzStackHCI"},
            )
        assert sent is True
        event, endpoint = post.call_args[0]
        assert endpoint.endswith("/v2/track")
        assert event["iKey"] == "11111111-2222-3333-4444-555555555555"
        assert event["data"]["baseData"]["name"] == "hcimigrate_command"
        props = _properties(post)
        assert props["commandName"] == "hcimigrate init"
        assert props["success"] == "true"
        assert props["location"] == "eastus"
        assert props["instanceType"] == "VMwareToAzStackHCI"
        assert props["durationMs"] == "1500"
        assert json.loads(props["parameters"])["subscription_id"] == "***"

    def test_nothing_sent_when_disabled(self, monkeypatch):
        monkeypatch.delenv("APPINSIGHTS_CONNECTION_STRING", raising=False)
        with patch("azext_hcimigrate.telemetry._post") as post:
            assert telemetry.track_command("hcimigrate list") is False
        post.assert_not_called()

    def test_error_truncated(self, enabled):
        with patch("azext_hcimigrate.telemetry._post") as post:
            telemetry.track_command("hcimigrate replicate", tenant_id="t", success=False, error="x" * 5000)
        props = _properties(post)
        assert props["success"] == "false"
        assert len(props["error"]) == telemetry.MAX_ERROR_LENGTH


class TestTrackDecorator:

    def test_success_recorded(self):
        @telemetry.track("hcimigrate status")
        def handler(cmd, json_output=False):
            return {"ok": json_output}

        with patch("azext_hcimigrate.telemetry.track_command") as tc:
            assert handler(MagicMock(), json_output=True) == {"ok": True}
        assert tc.call_args[0][0] == "hcimigrate status"
        assert tc.call_args[1]["success"] is True
        assert tc.call_args[1]["parameters"] == {"json_output": True}
        assert tc.call_args[1]["duration_ms"] >= 0

    def test_failure_recorded_and_reraised(self):
        @telemetry.track("hcimigrate replicate")
        def handler(cmd, instance_type=None):
            raise ValueError("boom")

        with patch("azext_hcimigrate.telemetry.track_command") as tc:
            with pytest.raises(ValueError, match="boom"):
                handler(MagicMock(), instance_type="HyperVToAzStackHCI")
        assert tc.call_args[1]["success"] is False
        assert tc.call_args[1]["error"] == "ValueError: boom"
        assert tc.call_args[1]["parameters"] == {"instance_type": "HyperVToAzStackHCI"}

    def test_telemetry_failure_never_breaks_command(self):
        @telemetry.track("hcimigrate list")
        def handler(cmd):
            return "done"

        with patch("azext_hcimigrate.telemetry.track_command", side_effect=RuntimeError("offline")):
            assert handler(MagicMock()) == "done"


class TestPost:

    @patch("azext_hcimigrate.telemetry.requests.post")
    def test_posts_batch(self, post):
        post.return_value = MagicMock(status_code=200)
        assert _post({"name": "e"}, "https://example.invalid/v2/track") is True
        assert post.call_args[1]["json"] == [{"name": "e"}]

    @patch("azext_hcimigrate.telemetry.requests.post", side_effect=requests.ConnectionError("offline"))
    def test_network_error_returns_false(self, _):
        assert _post({}, "https://example.invalid/v2/track") is False
