"""
Ingress strategy
Exposes services through generated Ingresses with host/path rules and TLS
"""

import copy
import sys
from typing import List, Optional

from kubernetes.client.rest import ApiException

from .annotations import (
    add_service_annotation,
    parse_service_options,
    remove_service_annotation,
    service_key,
)
from .builder import build_ingress
from .exceptions import CleanError, ClusterError, ResourceConflictError, SyncError
from .ownership import OWNED, UNMANAGED, ExistingIndex, classify_ingress
from .patch import MERGE_PATCH, create_ingress_patch, create_service_patch, to_dict
from .strategy import ExposeStrategy


class IngressStrategy(ExposeStrategy):
    """Creates one Ingress per exposed service and keeps it up to date"""

    def __init__(self, core_v1, networking_v1, config, existing: Optional[ExistingIndex] = None):
        self.v1 = core_v1
        self.networking_v1 = networking_v1
        self.config = config
        self.namespace = config.namespace
        self.existing = existing if existing is not None else ExistingIndex()

        print(f"Ingress strategy initialized (domain={config.domain}, namespace={self.namespace or '*'})", flush=True)

    def _list_ingresses(self):
        try:
            if self.namespace:
                return self.networking_v1.list_namespaced_ingress(namespace=self.namespace).items
            return self.networking_v1.list_ingress_for_all_namespaces().items
        except ApiException as e:
            raise ClusterError('list', 'Ingress', self.namespace or '*', '', e) from e

    def _read_ingress(self, namespace: str, name: str):
        """Return the Ingress, or None when it does not exist"""
        try:
            return self.networking_v1.read_namespaced_ingress(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise ClusterError('get', 'Ingress', namespace, name, e) from e

    def _delete_ingress(self, namespace: str, name: str) -> bool:
        """Delete an Ingress; an already absent one is not an error"""
        try:
            self.networking_v1.delete_namespaced_ingress(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return False
            raise ClusterError('delete', 'Ingress', namespace, name, e) from e
        print(f"  Deleted Ingress: {namespace}/{name}", flush=True)
        return True

    def _remove_owned(self, key: str, namespace: str, name: str):
        """Delete an indexed Ingress unless someone else turned out to own it"""
        ingress = self._read_ingress(namespace, name)
        if ingress is None:
            return

        ownership = classify_ingress(ingress)
        if ownership.state == UNMANAGED:
            print(f"  Ingress {namespace}/{name} is not generated, leaving it alone", flush=True)
            return
        if ownership.state == OWNED and ownership.service_key != key:
            print(f"  Ingress {namespace}/{name} belongs to {ownership.service_key}, leaving it alone", flush=True)
            return

        self._delete_ingress(namespace, name)

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
        """
        Rebuild the index of generated Ingresses from the cluster.

        Ingresses with ambiguous ownership are deleted on the way. A failed
        delete does not stop the pass; failures are raised together at the end,
        after the new index is in place.
        """
        existing = ExistingIndex()
        errors: List[Exception] = []

        for ingress in self._list_ingresses():
            namespace = ingress.metadata.namespace
            name = ingress.metadata.name
            ownership = classify_ingress(ingress)

            if ownership.state == UNMANAGED:
                continue

            if ownership.should_delete:
                print(f"  Ingress {namespace}/{name} has no single Service owner, deleting", flush=True)
                try:
                    self._delete_ingress(namespace, name)
                except ClusterError as e:
                    print(f"ERROR: {e}", file=sys.stderr, flush=True)
                    errors.append(e)
                continue

            existing.append_new(ownership.service_key, name)

        self.existing.replace(existing)
        print(f"[sync] Indexed Ingresses for {len(self.existing)} service(s)", flush=True)

        if errors:
            raise SyncError(errors)

    def has_synced(self) -> bool:
        return True

    def add(self, service):
        key = service_key(service)
        namespace = service.metadata.namespace

        options = parse_service_options(service)
        desired = build_ingress(service, options, self.config)
        name = desired.name

        print(f"Exposing Service {key} as {desired.url}", flush=True)

        # Renamed: drop what the previous name left behind
        for stale in self.existing.names(key):
            if stale == name:
                continue
            self._remove_owned(key, namespace, stale)
            self.existing.discard(key, stale)

        observed = self._read_ingress(namespace, name)
        if observed is None:
            try:
                self.networking_v1.create_namespaced_ingress(namespace=namespace, body=desired.ingress)
            except ApiException as e:
                raise ClusterError('create', 'Ingress', namespace, name, e) from e
            print(f"  Created Ingress: {namespace}/{name}", flush=True)
        else:
            ownership = classify_ingress(observed)
            if ownership.state == UNMANAGED:
                raise ResourceConflictError(f"Ingress {namespace}/{name} exists and was not generated for {key}")
            if ownership.state == OWNED and ownership.service_key != key:
                raise ResourceConflictError(f"Ingress {namespace}/{name} is already owned by {ownership.service_key}")

            patch = create_ingress_patch(observed, desired.ingress)
            if patch:
                try:
                    self.networking_v1.patch_namespaced_ingress(
                        name=name,
                        namespace=namespace,
                        body=patch,
                        _content_type=MERGE_PATCH
                    )
                except ApiException as e:
                    raise ClusterError('patch', 'Ingress', namespace, name, e) from e
                print(f"  Updated Ingress: {namespace}/{name}", flush=True)

        self.existing.add(key, name)

        original = to_dict(service)
        modified = copy.deepcopy(original)
        annotations = modified.setdefault('metadata', {}).setdefault('annotations', {})
        add_service_annotation(annotations, desired.url)

        patch = create_service_patch(original, modified)
        if patch:
            self._patch_service(service, patch)

    def _remove_all(self, service) -> List[Exception]:
        key = service_key(service)
        namespace = service.metadata.namespace
        errors: List[Exception] = []

        for name in self.existing.names(key):
            try:
                self._remove_owned(key, namespace, name)
            except ClusterError as e:
                print(f"ERROR: {e}", file=sys.stderr, flush=True)
                errors.append(e)
                continue
            self.existing.discard(key, name)

        return errors

    def clean(self, service):
        key = service_key(service)
        print(f"Unexposing Service {key}", flush=True)

        errors = self._remove_all(service)

        original = to_dict(service)
        modified = copy.deepcopy(original)
        annotations = (modified.get('metadata') or {}).get('annotations') or {}
        if remove_service_annotation(annotations):
            try:
                self._patch_service(service, create_service_patch(original, modified))
            except ClusterError as e:
                print(f"ERROR: {e}", file=sys.stderr, flush=True)
                errors.append(e)

        if errors:
            raise CleanError(service.metadata.namespace, service.metadata.name, errors)

    def delete(self, service):
        """The service is gone, so only its Ingresses need removing"""
        errors = self._remove_all(service)
        if errors:
            raise CleanError(service.metadata.namespace, service.metadata.name, errors)
