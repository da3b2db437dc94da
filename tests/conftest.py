"""
Shared pytest fixtures for the logging tools tests.

- FakeOc: in-memory stand-in for oc_cli.OcClient with canned pods, journal
  output, pod logs and node labels
- journal_export / log_lines: build collection output of an exact size
"""

import os
import sys
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from oc_cli import OcCommandError, PodRef


def journal_export(records: int, size: int) -> bytes:
    """`journalctl -o export` style output with exactly `records` entries and `size` bytes."""
    if records == 0:
        return b""
    entries = [b"__CURSOR=s=%d\n\n" % i for i in range(records)]
    padding = size - sum(len(e) for e in entries)
    filler = b"MESSAGE=\n"
    assert padding >= len(filler), "size too small for the requested records"
    message = b"MESSAGE=" + b"x" * (padding - len(filler)) + b"\n"
    first = entries[0]
    entries[0] = first[:-1] + message + b"\n"
    return b"".join(entries)


def log_lines(records: int, size: int) -> bytes:
    """Container log output with exactly `records` lines and `size` bytes."""
    if records == 0:
        return b""
    assert size >= records
    lines = [b"\n"] * records
    lines[0] = b"x" * (size - records) + b"\n"
    return b"".join(lines)


class FakeOc:
    """Implements the OcClient operations against canned data."""

    def __init__(self, agent_pods: Iterable[PodRef] = (), pods: Iterable[PodRef] = (),
                 journal: Optional[Dict[str, bytes]] = None,
                 logs: Optional[Dict[Tuple[str, str], bytes]] = None,
                 labels: Optional[Dict[str, Dict[str, str]]] = None,
                 es_pods: Iterable[PodRef] = (),
                 failing: Sequence[str] = (),
                 exec_returncode: int = 0):
        self.agent_pods = list(agent_pods)
        self.pods = list(pods)
        self.journal = journal or {}
        self.logs = logs or {}
        self.labels = labels or {}
        self.es_pods = list(es_pods)
        self.failing = set(failing)
        self.exec_returncode = exec_returncode
        self.calls: List[tuple] = []

    def list_pods(self, namespace=None, selector=None):
        self.calls.append(("list_pods", namespace, selector))
        if selector == "component=fluentd":
            return list(self.agent_pods)
        if selector == "component=es":
            return list(self.es_pods)
        return list(self.pods)

    def first_pod(self, namespace, selector):
        pods = self.list_pods(namespace, selector)
        if not pods:
            raise OcCommandError(["oc", "get", "pods", "-n", namespace, "-l", selector], 1,
                                 "no pods found")
        return pods[0]

    def exec_in_pod(self, pod, command, namespace, container=None, stdout=None, stderr=None):
        self.calls.append(("exec_in_pod", pod, tuple(command), namespace, container))
        if pod in self.failing:
            if stdout is not None:
                stdout.write(b"partial output that must be ignored\n")
            if stderr is not None:
                stderr.write(b"error: unable to upgrade connection: container not found\n")
            return 1
        if stdout is not None:
            stdout.write(self.journal.get(pod, b""))
        return self.exec_returncode

    def pod_logs_since(self, pod, namespace, seconds, stdout, stderr=None):
        self.calls.append(("pod_logs_since", pod, namespace, seconds))
        if pod in self.failing:
            if stderr is not None:
                stderr.write(f"error: previous terminated container in pod \"{pod}\" not found\n".encode())
            return 1
        stdout.write(self.logs.get((namespace, pod), b""))
        return 0

    def node_labels(self, node):
        self.calls.append(("node_labels", node))
        if node not in self.labels:
            raise OcCommandError(["oc", "get", "node", node, "-o", "json"], 1,
                                 f'nodes "{node}" not found')
        return dict(self.labels[node])


@pytest.fixture
def make_journal():
    return journal_export


@pytest.fixture
def make_logs():
    return log_lines


@pytest.fixture
def fake_oc_class():
    return FakeOc
