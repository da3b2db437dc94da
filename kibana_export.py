#!/usr/bin/env python3
"""
Kibana Saved Object Export

Dumps a user's saved Kibana objects (visualizations, dashboards, searches)
from the user's Kibana index in the logging Elasticsearch cluster. The query
runs through `oc exec` inside the Elasticsearch container using the
in-container `es_util` query utility, and the raw (pretty printed) JSON
response is written to stdout unchanged.

Every user has a private Kibana index derived from the username. The special
username '$$kibana' selects the shared '.kibana' index instead.

Usage:
    python3 kibana_export.py [options] <username> [objects]

Examples:
    python3 kibana_export.py developer > developer-objects.json
    python3 kibana_export.py developer dashboard,search
    python3 kibana_export.py '$$kibana'
    python3 kibana_export.py -- -dev-user
"""

import argparse
import hashlib
import os
import sys
import traceback
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote, urlencode

from oc_cli import Colors, OcClient, OcCommandError


DEFAULT_NAMESPACE = "openshift-logging"
DEFAULT_OBJECTS = "visualization,dashboard,search"
SHARED_INDEX_USER = "$$kibana"
SHARED_KIBANA_INDEX = ".kibana"

ES_SELECTOR = "component=es"
ES_CONTAINER = "elasticsearch"
ES_QUERY_UTIL = "es_util"

KNOWN_OBJECT_TYPES = (
    "visualization",
    "dashboard",
    "search",
    "index-pattern",
    "config",
    "timelion-sheet",
)


class UsageError(Exception):
    """Bad command line input; nothing was sent to the cluster."""


def kibana_index_for(username: str) -> str:
    """
    Map a username to its Kibana index.

    '$$kibana' maps to the shared '.kibana' index. Every other user gets
    '.kibana.<sha1 of the username>', the per-user naming used by the
    OpenShift Elasticsearch plugin.
    """
    if username == SHARED_INDEX_USER:
        return SHARED_KIBANA_INDEX
    digest = hashlib.sha1(username.encode('utf-8')).hexdigest()
    return f"{SHARED_KIBANA_INDEX}.{digest}"


def parse_object_types(objects: str) -> Tuple[str, ...]:
    """Split a comma separated object list and reject unknown types."""
    types = tuple(t.strip() for t in objects.split(',') if t.strip())
    if not types:
        raise UsageError("no object types given")
    unknown = [t for t in types if t not in KNOWN_OBJECT_TYPES]
    if unknown:
        raise UsageError(
            f"unknown object type(s): {', '.join(unknown)} "
            f"(known: {', '.join(KNOWN_OBJECT_TYPES)})")
    return types


@dataclass(frozen=True)
class KibanaSearchRequest:
    """A _search request against one Kibana index, restricted to object types."""
    index: str
    object_types: Tuple[str, ...]
    params: Dict[str, str] = field(default_factory=lambda: {"pretty": "true"})

    @classmethod
    def for_user(cls, username: str, objects: str = DEFAULT_OBJECTS,
                 size: Optional[int] = None) -> "KibanaSearchRequest":
        params = {"pretty": "true"}
        if size is not None:
            params["size"] = str(size)
        return cls(kibana_index_for(username), parse_object_types(objects), params)


def build_query_path(request: KibanaSearchRequest) -> str:
    """
    Render the request as the path/query string es_util expects.

    es_util prepends its own base URL, so the path has no leading slash.
    """
    types = ','.join(quote(t, safe='') for t in request.object_types)
    path = f"{quote(request.index, safe='')}/{types}/_search"
    if request.params:
        path += f"?{urlencode(request.params)}"
    return path


def es_query_command(request: KibanaSearchRequest) -> List[str]:
    """Command line run inside the Elasticsearch container."""
    return [ES_QUERY_UTIL, f"--query={build_query_path(request)}"]


def export_objects(client: OcClient, request: KibanaSearchRequest, namespace: str,
                   es_pod: Optional[str] = None, stdout=None) -> int:
    """
    Run the search inside the Elasticsearch container.

    The response goes straight to stdout (the inherited stream by default).

    Returns:
        the exit status of `oc exec`
    """
    if not es_pod:
        es_pod = client.first_pod(namespace, ES_SELECTOR).name
    return client.exec_in_pod(
        es_pod, es_query_command(request), namespace,
        container=ES_CONTAINER, stdout=stdout)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="export-kibana-objects",
        description="Export a user's saved Kibana objects from the logging Elasticsearch cluster",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Examples:
  export-kibana-objects developer > developer-objects.json
  export-kibana-objects developer dashboard,search
  export-kibana-objects '{SHARED_INDEX_USER}'    # shared {SHARED_KIBANA_INDEX} index
  export-kibana-objects -- -dev-user      # usernames starting with '-' go after --

Known object types: {', '.join(KNOWN_OBJECT_TYPES)}
        """
    )
    parser.add_argument('username', nargs='?',
                        help=f"user whose objects to export ('{SHARED_INDEX_USER}' for the shared index)")
    parser.add_argument('objects', nargs='?', default=DEFAULT_OBJECTS,
                        help=f"comma separated object types (default: {DEFAULT_OBJECTS})")
    parser.add_argument('-n', '--namespace',
                        default=os.getenv('LOGGING_NS', DEFAULT_NAMESPACE),
                        help=f"logging namespace (default: $LOGGING_NS or {DEFAULT_NAMESPACE})")
    parser.add_argument('--es-pod', help="Elasticsearch pod to query (default: first component=es pod)")
    parser.add_argument('--size', type=int, help="maximum number of objects to return")
    parser.add_argument('-d', '--debug', action='store_true',
                        help="echo every oc command to stderr")
    return parser


def main(argv: Optional[List[str]] = None, client: Optional[OcClient] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.username:
        parser.print_help(sys.stderr)
        return 1

    try:
        request = KibanaSearchRequest.for_user(args.username, args.objects, args.size)
    except UsageError as e:
        print(f"{Colors.RED}Error: {e}{Colors.END}", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 1

    if client is None:
        client = OcClient(debug=args.debug)
    if args.debug:
        print(f"{Colors.CYAN}Index: {request.index}{Colors.END}", file=sys.stderr)

    try:
        return export_objects(client, request, args.namespace, es_pod=args.es_pod)
    except OcCommandError as e:
        print(f"{Colors.RED}✗ {e}{Colors.END}", file=sys.stderr)
        return e.returncode


def cli(argv: Optional[List[str]] = None) -> int:
    """Console entry point: main() plus interrupt and unexpected-error handling."""
    if argv is None:
        argv = sys.argv[1:]
    try:
        return main(argv)
    except KeyboardInterrupt:
        print(f"\n{Colors.YELLOW}Interrupted by user{Colors.END}", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"\n{Colors.RED}Error: {e}{Colors.END}", file=sys.stderr)
        if '--debug' in argv or '-d' in argv:
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(cli())
