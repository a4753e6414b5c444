"""JSON merge patches for the cluster record.

Dependent resources are create-only; the cluster record itself is the
only object this controller ever modifies, and it does so through a
three-way merge patch so that fields changed concurrently by other
writers are left alone.
"""

import copy
import json
from typing import Any, Protocol

from icecream import ic

from kubeception.exceptions import PatchConflictError
from kubeception.models import Cluster

EMPTY_PATCH = b"{}"


def create_merge_patch(original: Any, modified: Any) -> Any:
    """Return the RFC 7386 merge patch turning *original* into *modified*.

    Removed keys are expressed as ``None`` (JSON ``null``). Lists and
    scalars are replaced wholesale.
    """
    if not isinstance(original, dict) or not isinstance(modified, dict):
        return copy.deepcopy(modified)

    patch: dict[str, Any] = {}
    for key in original:
        if key not in modified:
            patch[key] = None

    for key, value in modified.items():
        if key not in original:
            patch[key] = copy.deepcopy(value)
            continue
        old = original[key]
        if isinstance(old, dict) and isinstance(value, dict):
            nested = create_merge_patch(old, value)
            if nested:
                patch[key] = nested
        elif old != value:
            patch[key] = copy.deepcopy(value)
    return patch


def apply_merge_patch(target: Any, patch: Any) -> Any:
    """Apply an RFC 7386 merge patch and return the result. *target* is not mutated."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)

    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = apply_merge_patch(result.get(key), value)
    return result


def _filter_nulls(patch: dict[str, Any], keep_nulls: bool) -> dict[str, Any]:
    """Keep only deletions (``keep_nulls``) or only additions and changes."""
    filtered: dict[str, Any] = {}
    for key, value in patch.items():
        if isinstance(value, dict):
            nested = _filter_nulls(value, keep_nulls)
            if nested:
                filtered[key] = nested
        elif (value is None) == keep_nulls:
            filtered[key] = value
    return filtered


def _has_conflicts(left: Any, right: Any) -> bool:
    """Return True if two patches set the same path to different values."""
    if isinstance(left, dict) and isinstance(right, dict):
        return any(key in right and _has_conflicts(value, right[key]) for key, value in left.items())
    return left != right


def _drop_applied(patch: dict[str, Any], current: Any) -> dict[str, Any]:
    """Remove the parts of *patch* that *current* already reflects."""
    current = current if isinstance(current, dict) else {}
    pending: dict[str, Any] = {}
    for key, value in patch.items():
        if value is None:
            if key in current:
                pending[key] = None
        elif isinstance(value, dict) and isinstance(current.get(key), dict):
            nested = _drop_applied(value, current[key])
            if nested:
                pending[key] = nested
        elif key not in current or current[key] != value:
            pending[key] = copy.deepcopy(value)
    return pending


def _load(document: bytes | str | dict[str, Any] | None) -> dict[str, Any]:
    if document is None or document in (b"", ""):
        return {}
    if isinstance(document, dict):
        return document
    loaded = json.loads(document)
    if not isinstance(loaded, dict):
        raise ValueError("merge patch documents must be JSON objects")
    return loaded


def create_three_way_merge_patch(
    original: bytes | str | dict[str, Any] | None,
    modified: bytes | str | dict[str, Any] | None,
    current: bytes | str | dict[str, Any] | None,
) -> bytes:
    """Compute the patch that applies the change *original* -> *modified* to *current*.

    Only fields that differ between *original* and *modified* are sent, so
    values another writer changed in *current* meanwhile are left alone.
    Parts of the change that *current* already reflects are dropped.

    Args:
        original: Last observed document.
        modified: Locally intended document.
        current: Latest document from the store.

    Returns:
        Compact JSON encoded patch; ``b"{}"`` when there is nothing to do.

    Raises:
        PatchConflictError: If a field would be both changed and deleted.

    """
    original_obj = _load(original)
    modified_obj = _load(modified)
    current_obj = _load(current)

    delta = create_merge_patch(original_obj, modified_obj)
    additions = _drop_applied(_filter_nulls(delta, keep_nulls=False), current_obj)
    deletions = _drop_applied(_filter_nulls(delta, keep_nulls=True), current_obj)

    if _has_conflicts(additions, deletions):
        raise PatchConflictError("three-way merge patch has conflicting changes")

    # Nulls already present in the deletions survive as plain values
    patch = apply_merge_patch(deletions, additions)
    return json.dumps(patch, separators=(",", ":"), sort_keys=True).encode()


class ClusterStore(Protocol):
    """The part of the cluster API the patcher needs."""

    def get(self, name: str, namespace: str = "") -> dict[str, Any]: ...

    def patch(self, name: str, patch: bytes, namespace: str = "") -> dict[str, Any]: ...


class ClusterPatcher:
    """Persist changes to a cluster record without clobbering concurrent writers."""

    def __init__(self, store: ClusterStore) -> None:
        self.store = store

    def patch_cluster(self, new: Cluster, old: Cluster) -> bool:
        """Patch the stored cluster with the change from *old* to *new*.

        The current object is fetched fresh from the store, never from
        the cache.

        Args:
            new: Locally intended cluster.
            old: Cluster as last observed.

        Returns:
            True if a patch was sent, False if there was nothing to change.

        """
        current = self.store.get(new.name, new.namespace)
        patch = create_three_way_merge_patch(old.raw, new.raw, current)
        if patch == EMPTY_PATCH:
            return False

        ic(new.key, patch)
        self.store.patch(new.name, patch, new.namespace)
        return True
