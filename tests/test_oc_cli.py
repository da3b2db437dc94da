import json
import subprocess

import pytest

from oc_cli import OcClient, OcCommandError, PodRef, parse_pod_listing


class RecordingRun:
    """Stands in for subprocess.run and records each command."""

    def __init__(self, stdout="", stderr="", returncode=0):
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        self.commands = []
        self.kwargs = []

    def __call__(self, cmd, **kwargs):
        self.commands.append(cmd)
        self.kwargs.append(kwargs)
        captured = kwargs.get("stdout") is subprocess.PIPE
        return subprocess.CompletedProcess(
            cmd, self.returncode,
            stdout=self.stdout if captured else None,
            stderr=self.stderr if kwargs.get("stderr") is subprocess.PIPE else None)


@pytest.fixture
def fake_run(monkeypatch):
    def install(**kwargs):
        runner = RecordingRun(**kwargs)
        monkeypatch.setattr(subprocess, "run", runner)
        return runner
    return install


def test_parse_pod_listing_handles_unscheduled_pods():
    output = (
        "openshift-logging logging-fluentd-abcde node-1.example.com\n"
        "myproject web-1-build <no value>\n"
        "\n"
        "default router-1-xyz node-2.example.com\n"
    )

    pods = parse_pod_listing(output)

    assert pods == [
        PodRef("openshift-logging", "logging-fluentd-abcde", "node-1.example.com"),
        PodRef("myproject", "web-1-build", None),
        PodRef("default", "router-1-xyz", "node-2.example.com"),
    ]


def test_list_pods_cluster_wide_uses_template(fake_run):
    runner = fake_run(stdout="default router-1 node-1\n")

    pods = OcClient().list_pods()

    cmd = runner.commands[0]
    assert cmd[:4] == ["oc", "get", "pods", "--all-namespaces"]
    assert "-o" in cmd and cmd[cmd.index("-o") + 1] == "template"
    assert any(arg.startswith("--template=") for arg in cmd)
    assert pods == [PodRef("default", "router-1", "node-1")]


def test_list_pods_in_namespace_with_selector(fake_run):
    runner = fake_run(stdout="")

    OcClient(oc_binary="/usr/bin/oc").list_pods("openshift-logging", "component=fluentd")

    cmd = runner.commands[0]
    assert cmd[:5] == ["/usr/bin/oc", "get", "pods", "-n", "openshift-logging"]
    assert cmd[5:7] == ["-l", "component=fluentd"]
    assert "--all-namespaces" not in cmd


def test_query_failure_raises_with_status_and_stderr(fake_run):
    fake_run(stderr="error: You must be logged in to the server (Unauthorized)\n", returncode=1)

    with pytest.raises(OcCommandError) as excinfo:
        OcClient().list_pods()

    assert excinfo.value.returncode == 1
    assert "Unauthorized" in excinfo.value.stderr
    assert "Unauthorized" in str(excinfo.value)


def test_first_pod_without_matches_raises(fake_run):
    fake_run(stdout="")

    with pytest.raises(OcCommandError) as excinfo:
        OcClient().first_pod("openshift-logging", "component=es")

    assert "component=es" in str(excinfo.value)


def test_exec_in_pod_returns_status_without_raising(fake_run):
    runner = fake_run(returncode=7)

    status = OcClient().exec_in_pod("es-pod", ["es_util", "--query=/_cat/indices"],
                                    "openshift-logging", container="elasticsearch")

    assert status == 7
    assert runner.commands[0] == [
        "oc", "exec", "-n", "openshift-logging", "-c", "elasticsearch", "es-pod",
        "--", "es_util", "--query=/_cat/indices",
    ]
    # inherits stdout and stderr
    assert runner.kwargs[0]["stdout"] is None
    assert runner.kwargs[0]["stderr"] is None


def test_pod_logs_since(fake_run, tmp_path):
    runner = fake_run()

    with open(tmp_path / "out", "wb") as out:
        status = OcClient().pod_logs_since("web-1", "myproject", 30, stdout=out)

    assert status == 0
    assert runner.commands[0] == [
        "oc", "logs", "-n", "myproject", "web-1", "--all-containers=true", "--since=30s",
    ]


def test_node_labels(fake_run):
    node = {"metadata": {"name": "node-1", "labels": {"type": "infra", "region": "infra"}}}
    fake_run(stdout=json.dumps(node))

    assert OcClient().node_labels("node-1") == {"type": "infra", "region": "infra"}


def test_node_labels_missing(fake_run):
    fake_run(stdout=json.dumps({"metadata": {"name": "node-1"}}))

    assert OcClient().node_labels("node-1") == {}


def test_debug_traces_commands(fake_run, capsys):
    fake_run(stdout="")

    OcClient(debug=True).list_pods("openshift-logging")

    err = capsys.readouterr().err
    assert "+ oc get pods -n openshift-logging" in err
