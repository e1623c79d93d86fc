"""
Diff and patch helpers
JSON merge patches (RFC 7386) between observed and desired objects, so an
unchanged object never costs an API write
"""

import copy
from typing import Optional

from kubernetes import client


MERGE_PATCH = 'application/merge-patch+json'

# Fields of a generated Ingress the operator owns
INGRESS_METADATA_FIELDS = ('labels', 'annotations', 'ownerReferences')
INGRESS_SPEC_FIELDS = ('rules', 'tls')

_serializer = None


def to_dict(obj) -> dict:
    """Serialize a kubernetes model (or plain dict) to its API JSON form"""
    global _serializer
    if isinstance(obj, dict):
        return copy.deepcopy(obj)
    if _serializer is None:
        _serializer = client.ApiClient()
    return _serializer.sanitize_for_serialization(obj)


def create_merge_patch(original: dict, modified: dict) -> dict:
    """Minimal merge patch turning original into modified; {} when equal"""
    patch = {}
    for key in original:
        if key not in modified:
            patch[key] = None

    for key, value in modified.items():
        if key in original and original[key] == value:
            continue
        old = original.get(key)
        if isinstance(old, dict) and isinstance(value, dict):
            nested = create_merge_patch(old, value)
            if nested:
                patch[key] = nested
        else:
            patch[key] = value

    return patch


def apply_merge_patch(target, patch):
    """Apply a merge patch to a JSON document, returning the new document"""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = apply_merge_patch(result.get(key), value)
    return result


def _ingress_view(ingress: dict) -> dict:
    metadata = ingress.get('metadata') or {}
    spec = ingress.get('spec') or {}
    return {
        'metadata': {key: metadata[key] for key in INGRESS_METADATA_FIELDS if key in metadata},
        'spec': {key: spec[key] for key in INGRESS_SPEC_FIELDS if key in spec},
    }


def create_ingress_patch(observed, desired) -> Optional[dict]:
    """
    Patch for the operator-owned fields of an existing Ingress.
    Identity and resourceVersion of the observed object are left alone.
    Returns None when nothing differs.
    """
    patch = create_merge_patch(_ingress_view(to_dict(observed)), _ingress_view(to_dict(desired)))
    return patch or None


def create_service_patch(original, modified) -> Optional[dict]:
    """Patch between a service and a locally modified copy; None when equal"""
    patch = create_merge_patch(to_dict(original), to_dict(modified))
    return patch or None
