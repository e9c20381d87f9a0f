from __future__ import annotations

from pathlib import Path

import pytest

from conftest import CMDLINE_LOCKED, LSPCI_NO_GPU, populate_upper_layer
from cos_gpu_installer import cli


def test_no_device_exits_zero(host, commands):
    commands.on("lspci", result=lambda argv, cwd: (0, LSPCI_NO_GPU))
    assert cli.run(host) == 0


def test_already_installed_exits_zero(host, commands):
    populate_upper_layer(host)
    assert cli.run(host) == 0


def test_fatal_error_exits_non_zero(host, commands, capsys):
    Path(host.host_os_release).write_text("ID=ubuntu\n")
    assert cli.run(host) == 1
    assert "Container-Optimized OS only" in capsys.readouterr().out


def test_unexpected_error_exits_non_zero(host, monkeypatch, capsys):
    class Boom:
        def __init__(self, config, fetch_retry=None):
            pass

        def run(self):
            raise RuntimeError("kaboom")

    monkeypatch.setattr(cli, "Workflow", Boom)
    assert cli.run(host) == 1
    out = capsys.readouterr().out
    assert "Installation failed: kaboom" in out
    assert "Traceback" in out


def test_reboot_waits_for_node_restart(host, commands, monkeypatch):
    Path(host.proc_cmdline).write_text(CMDLINE_LOCKED)
    waited = []
    monkeypatch.setattr(cli, "wait_for_reboot", lambda: waited.append(True))

    assert cli.run(host) == 0
    assert waited == [True]


def test_main_reads_environment(monkeypatch):
    seen = []

    def fake_run(config, fetch_retry=None):
        seen.append(config)
        return 0

    monkeypatch.setattr(cli, "run", fake_run)
    monkeypatch.setenv("BASE_DIR", "/srv/nvidia")
    monkeypatch.setenv("DEVICE_PLUGIN_ENABLED", "true")
    monkeypatch.delenv("LAKITU_KERNEL_SHA1", raising=False)

    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    assert excinfo.value.code == 0
    assert seen[0].base_dir == "/srv/nvidia"
    assert seen[0].device_plugin_enabled is True
    assert seen[0].kernel_commit_override is None
