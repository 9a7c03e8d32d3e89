"""Helpers for running a local Tron node and locating the repository it is scripted from."""

from __future__ import annotations

import os
import subprocess
import sys
from datetime import timedelta
from pathlib import Path

# Local node endpoints as seen from inside containers.
DEFAULT_INTERNAL_FULL_NODE_URL = "http://host.docker.internal:16667/wallet"
DEFAULT_INTERNAL_SOLIDITY_NODE_URL = "http://host.docker.internal:16668/walletsolidity"
FULL_NODE_PORT = "16667"
SOLIDITY_NODE_PORT = "16668"

# Transaction manager settings for the local devnet and the public testnets.
DEVNET_FEE_LIMIT = 1_000_000_000
DEVNET_MAX_WAIT_TIME = 30  # seconds
DEVNET_POLL_FREQUENCY = 1  # seconds
DEVNET_OCR_TRANSMISSION_FREQUENCY = timedelta(seconds=5)
TESTNET_FEE_LIMIT = 10_000_000_000
TESTNET_MAX_WAIT_TIME = 90  # seconds
TESTNET_POLL_FREQUENCY = 5  # seconds
TESTNET_OCR_TRANSMISSION_FREQUENCY = timedelta(seconds=10)

# Network names.
SHASTA = "shasta"
NILE = "nile"
DEVNET = "devnet"

START_SCRIPT = "scripts/java-tron.sh"
STOP_SCRIPT = "scripts/java-tron.down.sh"


class NodeScriptError(Exception):
    """A node script could not be found or run, or exited with a failure."""

    def __init__(self, message: str, *, exit_code: int | None = None, output: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


def find_git_root(start: str | os.PathLike[str] | None = None) -> Path:
    """The closest directory at or above start (default: the working directory) holding .git."""
    current = Path(start if start is not None else os.getcwd()).resolve()
    for directory in (current, *current.parents):
        if (directory / ".git").exists():
            return directory
    raise NodeScriptError("no Git repository found")


def _run_script(relative_path: str, args: list[str], action: str) -> None:
    try:
        root = find_git_root()
    except NodeScriptError as exc:
        raise NodeScriptError(f"failed to find Git root: {exc}") from exc

    script = root / relative_path
    try:
        result = subprocess.run(
            [str(script), *args],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            check=False,
        )
    except OSError as exc:
        raise NodeScriptError(f"Failed to {action} java-tron: {exc}") from exc

    if result.returncode != 0:
        output = result.stdout.decode(errors="replace")
        print(f"Failed to {action} java-tron, dumping output:\n{output}")
        raise NodeScriptError(
            f"Failed to {action} java-tron, bad exit code: {result.returncode}",
            exit_code=result.returncode,
            output=output,
        )


def start_tron_node(genesis_address: str) -> None:
    """Start the local Tron node, funding the given genesis address."""
    _run_script(START_SCRIPT, [genesis_address], "start")


def stop_tron_node() -> None:
    """Stop the local Tron node."""
    _run_script(STOP_SCRIPT, [], "stop")


def tron_node_ip_address() -> str:
    """The address at which the local node is reachable on this platform."""
    if sys.platform == "darwin":
        return "127.0.0.1"
    return "172.255.0.101"