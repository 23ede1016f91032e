"""Tests for remote bootstrap script templating.

Tests cover:
- Slot discovery and rendering
- Single-pass substitution (values are never re-expanded)
- Installer payload round trip through base64
- Platform templates
"""

import base64
import re
import shlex
from dataclasses import replace

import pytest

from azdo_agent.exceptions import InvalidConfiguration
from azdo_agent.models import Secrets
from azdo_agent.remote_script import (
    EXIT_MARKER,
    LINUX_TEMPLATE,
    SLOT_PATTERN,
    WINDOWS_TEMPLATE,
    RemoteScriptBuilder,
    RemoteScriptTemplate,
    build_remote_script,
    encode_installer,
    powershell_quote,
    remote_exit_status,
    strip_exit_marker,
)

ALL_SLOTS = {
    "INSTALL_SCRIPT_B64",
    "AZDO_PAT",
    "AGENT_VERSION",
    "AGENT_HOME",
    "WORK_DIR",
    "ORG_URL",
    "POOL_NAME",
    "AGENT_NAME",
}


def _extract_payload(script: str) -> str:
    match = re.search(r"INSTALL_SCRIPT_B64=(\S+)", script)
    assert match is not None
    return match.group(1)


class TestRemoteScriptTemplate:
    """Test the typed template value object."""

    def test_from_text_discovers_slots(self):
        template = RemoteScriptTemplate.from_text("echo %%A%% %%B_2%% %%A%%")
        assert template.slots == frozenset({"A", "B_2"})

    def test_render_replaces_every_occurrence(self):
        template = RemoteScriptTemplate.from_text("%%A%%-%%B%%-%%A%%")
        assert template.render({"A": "x", "B": "y"}) == "x-y-x"

    def test_render_missing_slot_raises(self):
        template = RemoteScriptTemplate.from_text("%%A%% %%B%%")
        with pytest.raises(ValueError, match="No value for template slot"):
            template.render({"A": "x"})

    def test_render_unknown_slot_raises(self):
        template = RemoteScriptTemplate.from_text("%%A%%")
        with pytest.raises(ValueError, match="Unknown template slot"):
            template.render({"A": "x", "C": "z"})

    def test_substituted_value_is_not_rescanned(self):
        """A value containing another slot token is emitted literally."""
        template = RemoteScriptTemplate.from_text("first=%%A%% second=%%B%%")
        rendered = template.render({"A": "%%B%%", "B": "secret"})
        assert rendered == "first=%%B%% second=secret"

    def test_self_referencing_value_is_not_expanded(self):
        template = RemoteScriptTemplate.from_text("%%A%%")
        assert template.render({"A": "%%A%%%%A%%"}) == "%%A%%%%A%%"

    def test_result_independent_of_value_order(self):
        template = RemoteScriptTemplate.from_text("%%A%% %%B%% %%C%%")
        values = {"A": "%%C%%", "B": "2", "C": "3"}
        forward = template.render(values)
        backward = template.render(dict(reversed(list(values.items()))))
        assert forward == backward == "%%C%% 2 3"

    def test_values_with_regex_metacharacters(self):
        """Backslashes and group references in values are literal text."""
        template = RemoteScriptTemplate.from_text("home=%%A%%")
        assert template.render({"A": r"C:\azdo\1\g<0>"}) == r"home=C:\azdo\1\g<0>"


class TestPlatformTemplates:
    """Test the shipped bootstrap templates."""

    @pytest.mark.parametrize("template", [LINUX_TEMPLATE, WINDOWS_TEMPLATE])
    def test_templates_have_exactly_the_expected_slots(self, template):
        assert template.slots == ALL_SLOTS

    def test_linux_template_exports_token_via_environment(self):
        assert "export AZDO_PAT=%%AZDO_PAT%%" in LINUX_TEMPLATE.text
        install_line = LINUX_TEMPLATE.text.splitlines()[-1]
        assert install_line.startswith("/tmp/install-agent-linux.sh")
        assert "AZDO_PAT" not in install_line

    def test_windows_template_sets_env_and_runs_script(self):
        assert "$env:AZDO_PAT = %%AZDO_PAT%%" in WINDOWS_TEMPLATE.text
        assert "-OrganizationUrl" in WINDOWS_TEMPLATE.text

    @pytest.mark.parametrize("template", [LINUX_TEMPLATE, WINDOWS_TEMPLATE])
    def test_templates_report_exit_status(self, template):
        assert f"{EXIT_MARKER}=" in template.text


class TestEncodeInstaller:
    """Test installer payload encoding."""

    def test_single_line(self):
        payload = encode_installer(b"x" * 5000)
        assert "\n" not in payload

    def test_round_trip_binary_content(self):
        original = bytes(range(256)) * 3
        assert base64.b64decode(encode_installer(original)) == original


class TestRemoteScriptBuilder:
    """Test assembling the run-command payload."""

    def test_linux_payload_round_trips_installer(self, linux_request, linux_options, linux_secrets):
        installer = b"#!/usr/bin/env bash\nset -e\necho \"\xc3\xa9\"\n"
        script = build_remote_script(linux_request, linux_options, linux_secrets, installer)

        assert base64.b64decode(_extract_payload(script)) == installer

    def test_windows_payload_round_trips_installer(
        self, windows_request, windows_options, windows_secrets
    ):
        installer = b"Write-Host 'hi'\r\n"
        script = build_remote_script(windows_request, windows_options, windows_secrets, installer)

        match = re.search(r"FromBase64String\('([^']*)'\)", script)
        assert match is not None
        assert base64.b64decode(match.group(1)) == installer

    def test_linux_script_contents(self, linux_request, linux_options, linux_secrets):
        script = build_remote_script(linux_request, linux_options, linux_secrets, b"echo hi")

        assert script.count("tok123") == 1
        assert SLOT_PATTERN.search(script) is None
        assert "export AGENT_VERSION=3.233.1\n" in script
        assert "export AGENT_HOME=/home/azdoagent/azdo/linux-agent\n" in script
        assert "export WORK_DIR=_work\n" in script
        assert (
            "/tmp/install-agent-linux.sh https://dev.azure.com/contoso SelfHostedPool agent1"
            in script
        )

    def test_admin_password_never_in_script(
        self, windows_request, windows_options, windows_secrets
    ):
        script = build_remote_script(windows_request, windows_options, windows_secrets, b"x")
        assert windows_secrets.admin_password not in script

    def test_token_containing_slot_token_is_not_expanded(self, linux_request, linux_options):
        secrets = Secrets(access_token="abc%%POOL_NAME%%def")  # noqa: S106
        script = build_remote_script(linux_request, linux_options, secrets, b"x")

        assert "export AZDO_PAT=abc%%POOL_NAME%%def\n" in script
        assert script.count("SelfHostedPool") == 1

    def test_render_failure_becomes_invalid_configuration(
        self, linux_request, linux_options, linux_secrets, monkeypatch
    ):
        broken = RemoteScriptTemplate.from_text("%%EXTRA%%")
        monkeypatch.setitem(RemoteScriptBuilder.TEMPLATES, linux_request.platform, broken)

        with pytest.raises(InvalidConfiguration, match="REMOTE_SCRIPT"):
            RemoteScriptBuilder.build(linux_request, linux_options, linux_secrets, b"x")

    def test_linux_values_are_shell_quoted(self, linux_request, linux_options):
        secrets = Secrets(access_token='a$(reboot)`id`"b')  # noqa: S106
        request = replace(linux_request, pool_name="Pool $HOME")

        script = build_remote_script(request, linux_options, secrets, b"x")

        assert "export AZDO_PAT='a$(reboot)`id`\"b'\n" in script
        install_line = script.splitlines()[-1]
        assert shlex.split(install_line)[1:] == [
            "https://dev.azure.com/contoso",
            "Pool $HOME",
            "agent1",
        ]

    def test_windows_values_are_single_quoted(self, windows_request, windows_options):
        secrets = Secrets(
            access_token="it's$tok", admin_password="P@ssw0rd-Long-1"  # noqa: S106
        )

        script = build_remote_script(windows_request, windows_options, secrets, b"x")

        assert "$env:AZDO_PAT = 'it''s$tok'" in script
        assert "-AgentName 'win-agent1'" in script


class TestPowershellQuote:
    def test_plain(self):
        assert powershell_quote("BuildPool") == "'BuildPool'"

    def test_embedded_quote_doubled(self):
        assert powershell_quote("O'Brien $pool") == "'O''Brien $pool'"

    def test_empty(self):
        assert powershell_quote("") == "''"


class TestExitStatus:
    """Test reading the status line printed by the bootstrap templates."""

    def test_success(self):
        output = "Enable succeeded: \n[stdout]\nok\nAZDO_BOOTSTRAP_EXIT=0\n\n[stderr]\n"
        assert remote_exit_status(output) == 0

    def test_failure_with_windows_line_endings(self):
        assert remote_exit_status("Installing\r\nAZDO_BOOTSTRAP_EXIT=3\r\n") == 3

    def test_missing(self):
        assert remote_exit_status("Enable succeeded: \n[stdout]\n\n[stderr]\n") is None

    def test_marker_must_start_a_line(self):
        assert remote_exit_status("echo AZDO_BOOTSTRAP_EXIT=0") is None

    def test_strip_removes_only_the_status_line(self):
        output = "[stdout]\nAgent running\nAZDO_BOOTSTRAP_EXIT=0\n\n[stderr]\n"
        assert strip_exit_marker(output) == "[stdout]\nAgent running\n\n[stderr]"
