#!/usr/bin/env python3
"""
Node Log Rate Sampler

Measures how fast the cluster is producing logs over a short window, split
into host journal logs (read through the fluentd pod on every node) and
container logs (read with `oc logs` for every pod in the cluster). Prints
cluster-wide per-second rates and, optionally, a per-node breakdown.

All collection commands run in parallel, one per fluentd pod and one per
cluster pod, and the report is built once every one of them has finished.

Usage:
    python3 node_log_rates.py
    INTERVAL=60 SHOW_PER_NODE=true SORT_COLUMN=7 python3 node_log_rates.py
"""

import os
import sys
import tempfile
import threading
import traceback
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from dotenv import load_dotenv

from oc_cli import Colors, OcClient, OcCommandError, PodRef


DEFAULT_INTERVAL = 30
DEFAULT_NAMESPACE = "openshift-logging"
AGENT_SELECTOR = "component=fluentd"

JOURNAL = "journal"
FILE = "file"

TYPE_LABEL = "type"
ROLE_LABEL_PREFIX = "node-role.kubernetes.io/"
UNKNOWN_TYPE = "unknown"

# every entry of `journalctl -o export` starts with its cursor field
JOURNAL_ENTRY_PREFIX = b"__CURSOR="

# (header, width) of the numeric per-node columns, in column order 1-6
RATE_COLUMNS = [
    ("total-B/s", 12),
    ("total-r/s", 10),
    ("journal-B/s", 12),
    ("journal-r/s", 10),
    ("file-B/s", 12),
    ("file-r/s", 10),
]
NODE_WIDTH = 40
TIMESTAMP_WIDTH = 25
NUMERIC_COLUMNS = len(RATE_COLUMNS)
TOTAL_COLUMNS = NUMERIC_COLUMNS + 2

USAGE = f"""\
usage: sample-log-rates

Samples journal and container log volume on every node for INTERVAL seconds
and prints per-second rates. Any argument prints this help.

Configuration (environment or .env file):
  INTERVAL       sampling window in seconds (default: {DEFAULT_INTERVAL})
  LOGGING_NS     namespace of the fluentd pods (default: {DEFAULT_NAMESPACE})
  SHOW_PER_NODE  print the per-node table (default: false)
  SORT_COLUMN    per-node table sort column 1-{TOTAL_COLUMNS} (default: 1)
                 columns 1-{NUMERIC_COLUMNS} sort numerically, largest first;
                 columns {NUMERIC_COLUMNS + 1}-{TOTAL_COLUMNS} sort as text
  DEBUG          trace every oc command (default: false)

Per-node table columns (width):
  1 total-B/s (12)    2 total-r/s (10)    3 journal-B/s (12)
  4 journal-r/s (10)  5 file-B/s (12)     6 file-r/s (10)
  7 node ({NODE_WIDTH}, left aligned)         8 type

Totals table columns (width):
  timestamp ({TIMESTAMP_WIDTH}, ISO-8601 with offset) followed by columns 1-6

B/s is bytes per second, r/s records (journal entries or log lines) per
second. All rates are truncated to whole numbers.
"""


class ConfigError(Exception):
    """Invalid sampler configuration."""


class EmptySampleError(ZeroDivisionError):
    """No records were collected, so there is no average record size."""


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(name: str, value: Optional[str], *, default: int, minimum: int,
            maximum: Optional[int] = None) -> int:
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ConfigError(f"{name} must be a valid integer (got: {value})")
    if maximum is None and parsed < minimum:
        raise ConfigError(f"{name} must be at least {minimum} (got: {parsed})")
    if maximum is not None and not minimum <= parsed <= maximum:
        raise ConfigError(f"{name} must be between {minimum} and {maximum} (got: {parsed})")
    return parsed


@dataclass(frozen=True)
class Settings:
    interval: int = DEFAULT_INTERVAL
    namespace: str = DEFAULT_NAMESPACE
    show_per_node: bool = False
    sort_column: int = 1
    debug: bool = False


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Read the sampler configuration from environment variables."""
    if env is None:
        env = os.environ
    return Settings(
        interval=_to_int("INTERVAL", env.get("INTERVAL"), default=DEFAULT_INTERVAL, minimum=1),
        namespace=(env.get("LOGGING_NS") or "").strip() or DEFAULT_NAMESPACE,
        show_per_node=_to_bool(env.get("SHOW_PER_NODE"), default=False),
        sort_column=_to_int("SORT_COLUMN", env.get("SORT_COLUMN"), default=1,
                            minimum=1, maximum=TOTAL_COLUMNS),
        debug=_to_bool(env.get("DEBUG"), default=False),
    )


# =========================================================================
# DATA MODEL
# =========================================================================

@dataclass(frozen=True)
class SampleRecord:
    """What one collection task saw for one pod."""
    namespace: str
    pod: str
    node: str
    source: str
    records: int = 0
    bytes: int = 0


@dataclass
class NodeAggregate:
    """Journal and container log totals for one node."""
    node: str
    node_type: str = UNKNOWN_TYPE
    journal_bytes: int = 0
    journal_records: int = 0
    file_bytes: int = 0
    file_records: int = 0

    @property
    def total_bytes(self) -> int:
        return self.journal_bytes + self.file_bytes

    @property
    def total_records(self) -> int:
        return self.journal_records + self.file_records

    def add(self, sample: SampleRecord):
        if sample.source == JOURNAL:
            self.journal_bytes += sample.bytes
            self.journal_records += sample.records
        else:
            self.file_bytes += sample.bytes
            self.file_records += sample.records


@dataclass(frozen=True)
class RunSummary:
    """Cluster-wide totals of one sampling run."""
    interval: int
    node_count: int
    journal_bytes: int
    journal_records: int
    file_bytes: int
    file_records: int
    timestamp: datetime

    @property
    def total_bytes(self) -> int:
        return self.journal_bytes + self.file_bytes

    @property
    def total_records(self) -> int:
        return self.journal_records + self.file_records

    def rates(self) -> Tuple[int, int, int, int, int, int]:
        """Per-second rates in per-node column order."""
        return per_second(
            (self.total_bytes, self.total_records, self.journal_bytes,
             self.journal_records, self.file_bytes, self.file_records),
            self.interval)

    @property
    def avg_record_size(self) -> int:
        if self.total_records == 0:
            raise EmptySampleError(
                f"no log records collected in {self.interval} seconds, "
                "average record size is undefined")
        return self.total_bytes // self.total_records


def per_second(totals: Iterable[int], interval: int) -> Tuple[int, ...]:
    return tuple(total // interval for total in totals)


# =========================================================================
# COLLECTION
# =========================================================================

@dataclass
class CollectionTask:
    """One background collection; each task owns its own output file."""
    source: str
    namespace: str
    pod: str
    node: str
    output_path: str
    returncode: Optional[int] = None

    @property
    def error_path(self) -> str:
        return f"{self.output_path}.err"


def journal_command(interval: int) -> List[str]:
    """Journal export of the last interval seconds, run inside a fluentd pod."""
    return ["journalctl", "-m", f"--since=-{interval}s", "-o", "export"]


def plan_tasks(agent_pods: Iterable[PodRef], cluster_pods: Iterable[PodRef],
               workdir: str) -> List[CollectionTask]:
    """One journal task per scheduled agent pod, one file task per scheduled pod."""
    tasks = []
    for source, pods in ((JOURNAL, agent_pods), (FILE, cluster_pods)):
        for pod in pods:
            if not pod.node:
                continue
            output_path = os.path.join(workdir, f"{source}.{pod.namespace}.{pod.name}")
            tasks.append(CollectionTask(source, pod.namespace, pod.name, pod.node, output_path))
    return tasks


def run_task(client: OcClient, task: CollectionTask, interval: int):
    """Run one collection command, writing its stdout to the task's file."""
    try:
        with open(task.output_path, 'wb') as out, open(task.error_path, 'wb') as err:
            if task.source == JOURNAL:
                task.returncode = client.exec_in_pod(
                    task.pod, journal_command(interval), task.namespace, stdout=out, stderr=err)
            else:
                task.returncode = client.pod_logs_since(
                    task.pod, task.namespace, interval, stdout=out, stderr=err)
    except OSError as e:
        print(f"{Colors.RED}✗ {task.source} collection for {task.namespace}/{task.pod} "
              f"failed: {e}{Colors.END}", file=sys.stderr)


def collect(client: OcClient, tasks: List[CollectionTask], interval: int):
    """Start every task in its own thread and wait for all of them."""
    threads = []
    for task in tasks:
        thread = threading.Thread(
            target=run_task,
            args=(client, task, interval),
            name=f"{task.source}:{task.namespace}/{task.pod}"
        )
        thread.start()
        threads.append(thread)

    for thread in threads:
        thread.join()


def read_sample(task: CollectionTask) -> SampleRecord:
    """
    Count records and bytes in a finished task's output.

    A failed task or missing/empty output counts as zero records and zero
    bytes; the pod's node still shows up in the report.
    """
    records = size = 0
    if task.returncode == 0 and os.path.exists(task.output_path):
        with open(task.output_path, 'rb') as f:
            for line in f:
                size += len(line)
                if task.source == JOURNAL:
                    if line.startswith(JOURNAL_ENTRY_PREFIX):
                        records += 1
                elif line.endswith(b"\n"):
                    records += 1
    return SampleRecord(task.namespace, task.pod, task.node, task.source, records, size)


# =========================================================================
# CLASSIFICATION AND AGGREGATION
# =========================================================================

def classify_node(labels: Mapping[str, str]) -> str:
    """
    Node type from its labels.

    The 'type' label wins; otherwise the roles named by
    node-role.kubernetes.io/<role> keys, comma separated; otherwise 'unknown'.
    """
    node_type = (labels.get(TYPE_LABEL) or "").strip()
    if node_type:
        return node_type
    roles = sorted(
        key[len(ROLE_LABEL_PREFIX):] for key in labels
        if key.startswith(ROLE_LABEL_PREFIX) and key[len(ROLE_LABEL_PREFIX):]
    )
    if roles:
        return ",".join(roles)
    return UNKNOWN_TYPE


def node_types(client: OcClient, nodes: Iterable[str]) -> Dict[str, str]:
    """Classify nodes from their labels; unreadable labels classify as 'unknown'."""
    types = {}
    for node in nodes:
        try:
            types[node] = classify_node(client.node_labels(node))
        except OcCommandError as e:
            print(f"{Colors.YELLOW}⚠ Could not read labels of node {node}: {e}{Colors.END}",
                  file=sys.stderr)
            types[node] = UNKNOWN_TYPE
    return types


def aggregate(samples: Iterable[SampleRecord],
              types: Optional[Mapping[str, str]] = None) -> Dict[str, NodeAggregate]:
    """Fold samples into one NodeAggregate per node."""
    types = types or {}
    nodes: Dict[str, NodeAggregate] = {}
    for sample in samples:
        if sample.node not in nodes:
            nodes[sample.node] = NodeAggregate(sample.node, types.get(sample.node, UNKNOWN_TYPE))
        nodes[sample.node].add(sample)
    return nodes


def summarize(nodes: Mapping[str, NodeAggregate], interval: int,
              timestamp: Optional[datetime] = None) -> RunSummary:
    """Cluster-wide totals over all node aggregates."""
    aggregates = list(nodes.values())
    return RunSummary(
        interval=interval,
        node_count=len(aggregates),
        journal_bytes=sum(a.journal_bytes for a in aggregates),
        journal_records=sum(a.journal_records for a in aggregates),
        file_bytes=sum(a.file_bytes for a in aggregates),
        file_records=sum(a.file_records for a in aggregates),
        timestamp=timestamp or datetime.now().astimezone(),
    )


# =========================================================================
# REPORTING
# =========================================================================

def format_rates(rates: Iterable[int]) -> str:
    return " ".join(f"{value:>{width}}" for value, (_, width) in zip(rates, RATE_COLUMNS))


def rates_header() -> str:
    return " ".join(f"{title:>{width}}" for title, width in RATE_COLUMNS)


def node_row(node: NodeAggregate, interval: int) -> Tuple:
    rates = per_second(
        (node.total_bytes, node.total_records, node.journal_bytes,
         node.journal_records, node.file_bytes, node.file_records),
        interval)
    return rates + (node.node, node.node_type)


def sort_rows(rows: List[Tuple], column: int) -> List[Tuple]:
    """Sort table rows by a 1-based column; rate columns numerically, the rest as text."""
    index = column - 1
    if column > NUMERIC_COLUMNS:
        return sorted(rows, key=lambda row: str(row[index]))
    return sorted(rows, key=lambda row: row[index], reverse=True)


def format_node_table(nodes: Mapping[str, NodeAggregate], interval: int,
                      sort_column: int = 1) -> List[str]:
    rows = [node_row(nodes[name], interval) for name in sorted(nodes)]
    lines = [f"{rates_header()} {'node':<{NODE_WIDTH}} type"]
    for row in sort_rows(rows, sort_column):
        lines.append(f"{format_rates(row[:NUMERIC_COLUMNS])} {row[6]:<{NODE_WIDTH}} {row[7]}")
    return lines


def print_report(nodes: Mapping[str, NodeAggregate], summary: RunSummary,
                 settings: Settings, out=None):
    """
    Print the per-node table (if enabled) and the summary block.

    Raises EmptySampleError after the node count when nothing was collected.
    """
    out = out or sys.stdout
    if settings.show_per_node:
        for line in format_node_table(nodes, summary.interval, settings.sort_column):
            print(line, file=out)
        print(file=out)

    print(f"Nodes: {summary.node_count}", file=out)
    out.flush()
    print(f"Average record size: {summary.avg_record_size} bytes", file=out)
    print(f"Collected: {summary.total_records} records, {summary.total_bytes} bytes "
          f"in {summary.interval} seconds", file=out)
    print(file=out)
    print(f"{'timestamp':<{TIMESTAMP_WIDTH}} {rates_header()}", file=out)
    timestamp = summary.timestamp.isoformat(timespec='seconds')
    print(f"{timestamp:<{TIMESTAMP_WIDTH}} {format_rates(summary.rates())}", file=out)


# =========================================================================
# MAIN
# =========================================================================

def step(settings: Settings, message: str):
    if settings.debug:
        print(f"{Colors.CYAN}→ {message}{Colors.END}", file=sys.stderr)


def report_failure(task: CollectionTask, settings: Settings):
    """Pass a failed task's stderr through to ours; must run before workdir is removed."""
    if os.path.exists(task.error_path):
        with open(task.error_path, 'rb') as f:
            error_text = f.read().decode('utf-8', errors='replace')
        if error_text:
            sys.stderr.write(error_text if error_text.endswith("\n") else error_text + "\n")
    step(settings, f"{task.source} collection for {task.namespace}/{task.pod} "
                   f"exited with {task.returncode}, counted as zero")


def sample(client: OcClient, settings: Settings) -> Tuple[Dict[str, NodeAggregate], RunSummary]:
    """Discover, collect, classify and aggregate one sampling window."""
    step(settings, f"Discovering fluentd pods in {settings.namespace}")
    agent_pods = client.list_pods(settings.namespace, AGENT_SELECTOR)
    step(settings, "Discovering pods in all namespaces")
    cluster_pods = client.list_pods()

    with tempfile.TemporaryDirectory(prefix="log-rates-") as workdir:
        tasks = plan_tasks(agent_pods, cluster_pods, workdir)
        step(settings, f"Collecting {settings.interval}s of logs with {len(tasks)} tasks in {workdir}")
        collect(client, tasks, settings.interval)
        samples = [read_sample(task) for task in tasks]
        for task in tasks:
            if task.returncode != 0:
                report_failure(task, settings)

    types = node_types(client, sorted({s.node for s in samples}))
    nodes = aggregate(samples, types)
    return nodes, summarize(nodes, settings.interval)


def main(argv: Optional[List[str]] = None, client: Optional[OcClient] = None,
         env: Optional[Mapping[str, str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    if argv:
        print(USAGE)
        return 0

    if env is None:
        load_dotenv()
        env = os.environ

    try:
        settings = load_settings(env)
    except ConfigError as e:
        print(f"{Colors.RED}ERROR: {e}{Colors.END}", file=sys.stderr)
        return 1

    if client is None:
        client = OcClient(debug=settings.debug)

    try:
        nodes, summary = sample(client, settings)
        print_report(nodes, summary, settings)
    except OcCommandError as e:
        print(f"{Colors.RED}✗ {e}{Colors.END}", file=sys.stderr)
        return e.returncode
    except EmptySampleError as e:
        print(f"{Colors.RED}✗ {e}{Colors.END}", file=sys.stderr)
        return 1
    return 0


def cli(argv: Optional[List[str]] = None) -> int:
    """Console entry point: main() plus interrupt and unexpected-error handling."""
    try:
        return main(argv)
    except KeyboardInterrupt:
        print(f"\n{Colors.YELLOW}Interrupted by user{Colors.END}", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"\n{Colors.RED}Error: {e}{Colors.END}", file=sys.stderr)
        if _to_bool(os.getenv("DEBUG"), default=False):
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(cli())
