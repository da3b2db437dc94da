"""
Thin wrapper around the `oc` command line used by the logging tools.

Only the handful of operations the tools need are exposed, so the rest of
the code can be exercised against a fake client without a cluster:

- list_pods       pods with their namespace and node assignment
- exec_in_pod     run a command inside a pod/container
- pod_logs_since  aggregated pod logs for the last N seconds
- node_labels     labels of a node

Authentication is whatever the current `oc login` session provides.
"""

import json
import subprocess
import sys
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence


class Colors:
    """ANSI color codes for terminal output."""
    GREEN = '\033[92m'
    RED = '\033[91m'
    YELLOW = '\033[93m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    BOLD = '\033[1m'
    END = '\033[0m'


# namespace, name and node of every pod, one pod per line
POD_TEMPLATE = (
    '{{range .items}}'
    '{{.metadata.namespace}} {{.metadata.name}} {{.spec.nodeName}}{{"\\n"}}'
    '{{end}}'
)

NO_VALUE = '<no value>'


class OcCommandError(Exception):
    """An `oc` invocation exited with a non-zero status."""

    def __init__(self, cmd: Sequence[str], returncode: int, stderr: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        message = f"'{' '.join(self.cmd)}' exited with status {returncode}"
        if self.stderr:
            message += f": {self.stderr}"
        super().__init__(message)


@dataclass(frozen=True)
class PodRef:
    """A pod and the node it is scheduled on."""
    namespace: str
    name: str
    node: Optional[str] = None


def parse_pod_listing(output: str) -> List[PodRef]:
    """
    Parse the output of `oc get pods -o template` rendered with POD_TEMPLATE.

    Unscheduled pods render their node as '<no value>' and get node=None.
    """
    pods = []
    for line in output.splitlines():
        parts = line.split(None, 2)
        if len(parts) < 2:
            continue
        node = parts[2].strip() if len(parts) == 3 else None
        if not node or node == NO_VALUE:
            node = None
        pods.append(PodRef(namespace=parts[0], name=parts[1], node=node))
    return pods


class OcClient:
    """Runs `oc` subcommands on behalf of the logging tools."""

    def __init__(self, oc_binary: str = "oc", debug: bool = False):
        self.oc_binary = oc_binary
        self.debug = debug

    def _trace(self, cmd: List[str]):
        if self.debug:
            print(f"{Colors.CYAN}+ {' '.join(cmd)}{Colors.END}", file=sys.stderr)

    def run(self, args: Sequence[str], stdout=subprocess.PIPE, stderr=subprocess.PIPE,
            check: bool = True) -> subprocess.CompletedProcess:
        """
        Run `oc <args>` and return the completed process.

        Args:
            args: oc arguments (without the binary)
            stdout: where stdout goes; None inherits the caller's stream
            stderr: where stderr goes; None inherits the caller's stream
            check: raise OcCommandError on a non-zero exit status

        Returns:
            subprocess.CompletedProcess
        """
        cmd = [self.oc_binary] + list(args)
        self._trace(cmd)
        result = subprocess.run(cmd, stdout=stdout, stderr=stderr, text=True)
        if check and result.returncode != 0:
            stderr_text = result.stderr if isinstance(result.stderr, str) else ""
            raise OcCommandError(cmd, result.returncode, stderr_text)
        return result

    def list_pods(self, namespace: Optional[str] = None,
                  selector: Optional[str] = None) -> List[PodRef]:
        """List pods in one namespace, or cluster-wide when namespace is None."""
        args = ["get", "pods"]
        if namespace:
            args += ["-n", namespace]
        else:
            args.append("--all-namespaces")
        if selector:
            args += ["-l", selector]
        args += ["-o", "template", f"--template={POD_TEMPLATE}"]
        result = self.run(args)
        return parse_pod_listing(result.stdout)

    def first_pod(self, namespace: str, selector: str) -> PodRef:
        """Return the first pod matching selector in namespace."""
        pods = self.list_pods(namespace, selector)
        if not pods:
            raise OcCommandError(
                [self.oc_binary, "get", "pods", "-n", namespace, "-l", selector], 1,
                f"no pods found in namespace {namespace} matching {selector}")
        return pods[0]

    def exec_in_pod(self, pod: str, command: Sequence[str], namespace: str,
                    container: Optional[str] = None, stdout=None, stderr=None) -> int:
        """Run command inside pod and return its exit status."""
        args = ["exec", "-n", namespace]
        if container:
            args += ["-c", container]
        args += [pod, "--"] + list(command)
        return self.run(args, stdout=stdout, stderr=stderr, check=False).returncode

    def pod_logs_since(self, pod: str, namespace: str, seconds: int, stdout,
                       stderr=None) -> int:
        """Write the logs of every container in pod for the last `seconds` to stdout."""
        args = ["logs", "-n", namespace, pod, "--all-containers=true", f"--since={seconds}s"]
        return self.run(args, stdout=stdout, stderr=stderr, check=False).returncode

    def node_labels(self, node: str) -> Dict[str, str]:
        """Return the labels of a node."""
        result = self.run(["get", "node", node, "-o", "json"])
        data = json.loads(result.stdout)
        return data.get('metadata', {}).get('labels') or {}
