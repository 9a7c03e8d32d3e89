import stat
import sys
from pathlib import Path

import pytest

from tronrelay import nodetools
from tronrelay.nodetools import (
    NodeScriptError,
    find_git_root,
    start_tron_node,
    stop_tron_node,
    tron_node_ip_address,
)


def _make_repo(root: Path) -> Path:
    (root / ".git").mkdir(parents=True)
    (root / "scripts").mkdir()
    return root


def _write_script(path: Path, body: str) -> None:
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def test_find_git_root_from_nested_directory(tmp_path):
    repo = _make_repo(tmp_path / "repo")
    nested = repo / "a" / "b" / "c"
    nested.mkdir(parents=True)
    assert find_git_root(nested) == repo.resolve()


def test_find_git_root_accepts_git_file(tmp_path):
    repo = tmp_path / "worktree"
    repo.mkdir()
    (repo / ".git").write_text("gitdir: elsewhere\n")
    sub = repo / "sub"
    sub.mkdir()
    assert find_git_root(sub) == repo.resolve()


def test_find_git_root_defaults_to_working_directory(tmp_path, monkeypatch):
    repo = _make_repo(tmp_path / "repo")
    inner = repo / "inner"
    inner.mkdir()
    monkeypatch.chdir(inner)
    assert find_git_root() == repo.resolve()


def test_find_git_root_prefers_closest(tmp_path):
    outer = _make_repo(tmp_path / "outer")
    inner = outer / "inner"
    inner.mkdir()
    (inner / ".git").mkdir()
    assert find_git_root(inner / ".") == inner.resolve()


def test_start_tron_node_passes_genesis_address(tmp_path, monkeypatch):
    repo = _make_repo(tmp_path / "repo")
    record = repo / "args.txt"
    _write_script(repo / nodetools.START_SCRIPT, f'echo "$1" > "{record}"\n')
    monkeypatch.chdir(repo)
    assert start_tron_node("TGenesisAddressPlaceholder") is None
    assert record.read_text().strip() == "TGenesisAddressPlaceholder"


def test_start_tron_node_reports_exit_code(tmp_path, monkeypatch, capsys):
    repo = _make_repo(tmp_path / "repo")
    _write_script(repo / nodetools.START_SCRIPT, "echo boom\nexit 3\n")
    monkeypatch.chdir(repo)
    with pytest.raises(NodeScriptError) as info:
        start_tron_node("addr")
    assert info.value.exit_code == 3
    assert "boom" in info.value.output
    assert "bad exit code: 3" in str(info.value)
    assert "boom" in capsys.readouterr().out


def test_start_tron_node_missing_script(tmp_path, monkeypatch):
    repo = _make_repo(tmp_path / "repo")
    monkeypatch.chdir(repo)
    with pytest.raises(NodeScriptError) as info:
        start_tron_node("addr")
    assert info.value.exit_code is None
    assert str(info.value).startswith("Failed to start java-tron")


def test_stop_tron_node_runs_down_script(tmp_path, monkeypatch):
    repo = _make_repo(tmp_path / "repo")
    marker = repo / "stopped"
    _write_script(repo / nodetools.STOP_SCRIPT, f'touch "{marker}"\n')
    monkeypatch.chdir(repo)
    assert stop_tron_node() is None
    assert marker.exists()


def test_stop_tron_node_reports_exit_code(tmp_path, monkeypatch):
    repo = _make_repo(tmp_path / "repo")
    _write_script(repo / nodetools.STOP_SCRIPT, "exit 2\n")
    monkeypatch.chdir(repo)
    with pytest.raises(NodeScriptError) as info:
        stop_tron_node()
    assert info.value.exit_code == 2
    assert "stop" in str(info.value)


def test_ip_address_on_darwin(monkeypatch):
    monkeypatch.setattr(sys, "platform", "darwin")
    assert tron_node_ip_address() == "127.0.0.1"


def test_ip_address_elsewhere(monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    assert tron_node_ip_address() == "172.255.0.101"