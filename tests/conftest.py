"""
Test configuration and fixtures for pytest.

Provides an in-memory cluster standing in for the Kubernetes API. It keeps
objects in their JSON form, hands out real client models, applies merge
patches, and records every write so tests can assert on API traffic.
"""

import copy
import json

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from expose_operator.annotations import EXPOSE_ANNOTATION_KEY, EXPOSE_ANNOTATION_VALUE
from expose_operator.config import ExposeConfig
from expose_operator.ownership import (
    GENERATED_BY_KEY,
    GENERATED_BY_VALUE,
    PROVIDER_LABEL_KEY,
    PROVIDER_LABEL_VALUE,
)
from expose_operator.patch import apply_merge_patch, to_dict


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "kubernetes: mark test as exercising Kubernetes API calls")


class _Response:
    def __init__(self, data):
        self.data = json.dumps(data)


_api_client = client.ApiClient()


def to_model(data, kind):
    """Deserialize API JSON into a client model, as the real client does"""
    return _api_client.deserialize(_Response(data), kind)


def not_found(kind, namespace, name):
    return ApiException(status=404, reason=f"{kind} {namespace}/{name} not found")


class FakeCluster:
    """Dict-backed object store shared by the fake API clients"""

    def __init__(self):
        self.objects = {}
        self.writes = []
        self.resource_version = 0
        self.fail = {}

    def _next_version(self):
        self.resource_version += 1
        return str(self.resource_version)

    def put(self, kind, obj):
        data = to_dict(obj)
        metadata = data.setdefault('metadata', {})
        metadata.setdefault('resourceVersion', self._next_version())
        metadata.setdefault('uid', f"{metadata['name']}-uid")
        self.objects[(kind, metadata.get('namespace', ''), metadata['name'])] = data
        return data

    def get(self, kind, namespace, name):
        return self.objects.get((kind, namespace, name))

    def names(self, kind, namespace=None):
        return sorted(
            name for (k, ns, name) in self.objects
            if k == kind and (namespace is None or ns == namespace)
        )

    def items(self, kind, namespace=None):
        return [
            copy.deepcopy(data) for (k, ns, _), data in sorted(self.objects.items())
            if k == kind and (namespace is None or ns == namespace)
        ]

    def check(self, verb, kind, namespace, name=''):
        error = self.fail.get((verb, kind, namespace, name))
        if error is not None:
            raise error

    def record(self, verb, kind, namespace, name):
        self.check(verb, kind, namespace, name)
        self.writes.append((verb, kind, namespace, name))

    def create(self, kind, namespace, body):
        data = to_dict(body)
        name = data['metadata']['name']
        if (kind, namespace, name) in self.objects:
            raise ApiException(status=409, reason=f"{kind} {namespace}/{name} already exists")
        self.record('create', kind, namespace, name)
        data['metadata']['namespace'] = namespace
        data['metadata']['resourceVersion'] = self._next_version()
        data['metadata'].setdefault('uid', f"{name}-uid")
        self.objects[(kind, namespace, name)] = data
        return data

    def patch(self, kind, namespace, name, body):
        data = self.get(kind, namespace, name)
        if data is None:
            raise not_found(kind, namespace, name)
        self.record('patch', kind, namespace, name)
        patched = apply_merge_patch(data, body)
        patched['metadata']['resourceVersion'] = self._next_version()
        self.objects[(kind, namespace, name)] = patched
        return patched

    def delete(self, kind, namespace, name):
        if (kind, namespace, name) not in self.objects:
            raise not_found(kind, namespace, name)
        self.record('delete', kind, namespace, name)
        del self.objects[(kind, namespace, name)]

    def service(self, namespace, name):
        return to_model(self.get('Service', namespace, name), 'V1Service')

    def ingress(self, namespace, name):
        return to_model(self.get('Ingress', namespace, name), 'V1Ingress')


class FakeNetworkingV1Api:
    def __init__(self, cluster):
        self.cluster = cluster

    def list_namespaced_ingress(self, namespace, **kwargs):
        self.cluster.check('list', 'Ingress', namespace)
        return to_model({'items': self.cluster.items('Ingress', namespace)}, 'V1IngressList')

    def list_ingress_for_all_namespaces(self, **kwargs):
        self.cluster.check('list', 'Ingress', '')
        return to_model({'items': self.cluster.items('Ingress')}, 'V1IngressList')

    def read_namespaced_ingress(self, name, namespace, **kwargs):
        data = self.cluster.get('Ingress', namespace, name)
        if data is None:
            raise not_found('Ingress', namespace, name)
        return to_model(data, 'V1Ingress')

    def create_namespaced_ingress(self, namespace, body, **kwargs):
        return to_model(self.cluster.create('Ingress', namespace, body), 'V1Ingress')

    def patch_namespaced_ingress(self, name, namespace, body, **kwargs):
        return to_model(self.cluster.patch('Ingress', namespace, name, body), 'V1Ingress')

    def delete_namespaced_ingress(self, name, namespace, **kwargs):
        self.cluster.delete('Ingress', namespace, name)


class FakeCoreV1Api:
    def __init__(self, cluster):
        self.cluster = cluster

    def list_namespaced_service(self, namespace, **kwargs):
        items = self.cluster.items('Service', namespace)
        return to_model({'metadata': {'resourceVersion': str(self.cluster.resource_version)}, 'items': items},
                        'V1ServiceList')

    def list_service_for_all_namespaces(self, **kwargs):
        items = self.cluster.items('Service')
        return to_model({'metadata': {'resourceVersion': str(self.cluster.resource_version)}, 'items': items},
                        'V1ServiceList')

    def read_namespaced_service(self, name, namespace, **kwargs):
        data = self.cluster.get('Service', namespace, name)
        if data is None:
            raise not_found('Service', namespace, name)
        return to_model(data, 'V1Service')

    def patch_namespaced_service(self, name, namespace, body, **kwargs):
        return to_model(self.cluster.patch('Service', namespace, name, body), 'V1Service')

    def list_node(self, **kwargs):
        return to_model({'items': self.cluster.items('Node')}, 'V1NodeList')


def make_service(namespace, name, ports=(1234,), annotations=None, labels=None, expose=True, node_ports=None):
    annotations = dict(annotations or {})
    if expose:
        annotations.setdefault(EXPOSE_ANNOTATION_KEY, EXPOSE_ANNOTATION_VALUE)
    service_ports = []
    for index, port in enumerate(ports):
        service_port = {'port': port, 'protocol': 'TCP'}
        if node_ports and node_ports[index]:
            service_port['nodePort'] = node_ports[index]
        service_ports.append(service_port)
    return {
        'apiVersion': 'v1',
        'kind': 'Service',
        'metadata': {
            'namespace': namespace,
            'name': name,
            'uid': f"{name}-uid",
            'annotations': annotations,
            'labels': dict(labels or {}),
        },
        'spec': {'type': 'ClusterIP', 'ports': service_ports},
    }


def owner_reference(owner, default_kind='Service'):
    """Owner entries are a name, or a (kind, name) pair"""
    kind, name = owner if isinstance(owner, tuple) else (default_kind, owner)
    api_version = 'v1' if kind == 'Service' else 'apps/v1'
    return {'apiVersion': api_version, 'kind': kind, 'name': name, 'uid': f"{name}-uid"}


def make_ingress(namespace, name, owners=(), generated=True, generated_by=GENERATED_BY_VALUE, owner_kind='Service'):
    metadata = {
        'namespace': namespace,
        'name': name,
        'labels': {},
        'annotations': {},
        'ownerReferences': [owner_reference(owner, owner_kind) for owner in owners],
    }
    if generated:
        metadata['labels'][PROVIDER_LABEL_KEY] = PROVIDER_LABEL_VALUE
        metadata['annotations'][GENERATED_BY_KEY] = generated_by
    return {'apiVersion': 'networking.k8s.io/v1', 'kind': 'Ingress', 'metadata': metadata, 'spec': {}}


def make_node(name, addresses=(), labels=None):
    return {
        'apiVersion': 'v1',
        'kind': 'Node',
        'metadata': {'name': name, 'labels': dict(labels or {})},
        'status': {'addresses': [{'type': kind, 'address': address} for kind, address in addresses]},
    }


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def core_v1(cluster):
    return FakeCoreV1Api(cluster)


@pytest.fixture
def networking_v1(cluster):
    return FakeNetworkingV1Api(cluster)


@pytest.fixture
def expose_config():
    return ExposeConfig(domain='my-domain.com', namespace='')
