"""
Node port strategy
Switches exposed services to NodePort and publishes node-address:port
"""

import copy
from typing import Optional, Set

from kubernetes.client.rest import ApiException

from .annotations import add_service_annotation, remove_service_annotation, service_key
from .exceptions import ClusterError, ConfigurationError
from .patch import MERGE_PATCH, create_service_patch, to_dict
from .strategy import ExposeStrategy


# Node label carrying the address the cluster is reachable on
EXTERNAL_IP_LABEL = 'fabric8.io/externalIP'

NODE_PORT = 'NodePort'
CLUSTER_IP = 'ClusterIP'


def get_node_host_ip(node) -> str:
    """Node address, preferring ExternalIP over InternalIP"""
    addresses = (node.status.addresses if node.status else None) or []
    for address_type in ('ExternalIP', 'InternalIP'):
        for address in addresses:
            if address.type == address_type and address.address:
                return address.address

    known = ', '.join(f"{a.type}={a.address}" for a in addresses) or 'none'
    raise ConfigurationError(f"host IP unknown for node {node.metadata.name}; known addresses: {known}")


def discover_node_ip(core_v1) -> str:
    """Address of the only node of a single node cluster"""
    try:
        nodes = core_v1.list_node().items
    except ApiException as e:
        raise ClusterError('list', 'Node', '', '', e) from e

    if len(nodes) != 1:
        raise ConfigurationError(
            f"node port strategy can only be used with single node clusters - found {len(nodes)} nodes"
        )

    node = nodes[0]
    labels = node.metadata.labels or {}
    ip = labels.get(EXTERNAL_IP_LABEL)
    if ip:
        return ip
    return get_node_host_ip(node)


def join_host_port(host: str, port: int) -> str:
    if ':' in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


class NodePortStrategy(ExposeStrategy):
    """
    Exposes single-port services on the node address.

    A service whose node port is not allocated yet is kept in the pending
    set; add() has to be called again once the cluster assigned the port.
    """

    def __init__(self, core_v1, config, node_ip: Optional[str] = None):
        self.v1 = core_v1
        self.config = config
        self.node_ip = node_ip or config.node_ip or discover_node_ip(core_v1)
        self.pending: Set[str] = set()

        print(f"NodePort strategy initialized (node IP {self.node_ip})", flush=True)

    def _patch_service(self, service, patch: dict):
        metadata = service.metadata
        try:
            self.v1.patch_namespaced_service(
                name=metadata.name,
                namespace=metadata.namespace,
                body=patch,
                _content_type=MERGE_PATCH
            )
        except ApiException as e:
            raise ClusterError('patch', 'Service', metadata.namespace, metadata.name, e) from e
        print(f"  Patched Service: {metadata.namespace}/{metadata.name}", flush=True)

    def sync(self):
        self.pending = set()

    def has_synced(self) -> bool:
        return not self.pending

    def add(self, service):
        key = service_key(service)
        self.pending.discard(key)

        ports = (service.spec.ports if service.spec else None) or []
        if not ports:
            raise ConfigurationError(
                f"service {key} has no ports specified. Node port strategy requires a node port"
            )
        if len(ports) > 1:
            declared = ', '.join(str(p.port) for p in ports)
            raise ConfigurationError(
                f"service {key} has multiple ports specified ({declared}). "
                f"Node port strategy can only be used with single port services"
            )

        node_port = ports[0].node_port or 0

        original = to_dict(service)
        modified = copy.deepcopy(original)
        spec = modified.setdefault('spec', {})
        spec['type'] = NODE_PORT
        spec.pop('externalIPs', None)
        annotations = modified.setdefault('metadata', {}).setdefault('annotations', {})

        if node_port > 0:
            host_port = join_host_port(self.node_ip, node_port)
            add_service_annotation(annotations, host_port)
            print(f"Exposing Service {key} on {host_port}", flush=True)
        else:
            add_service_annotation(annotations, '')
            print(f"Service {key} is waiting for a node port", flush=True)

        # Unallocated ports stay pending even when the patch below fails
        if node_port <= 0:
            self.pending.add(key)

        patch = create_service_patch(original, modified)
        if patch:
            self._patch_service(service, patch)

    def clean(self, service):
        key = service_key(service)
        self.pending.discard(key)

        original = to_dict(service)
        modified = copy.deepcopy(original)
        annotations = (modified.get('metadata') or {}).get('annotations') or {}
        if not remove_service_annotation(annotations):
            return

        modified.setdefault('spec', {})['type'] = CLUSTER_IP
        print(f"Unexposing Service {key}", flush=True)

        patch = create_service_patch(original, modified)
        if patch:
            self._patch_service(service, patch)

    def delete(self, service):
        self.pending.discard(service_key(service))
