"""Access to the cluster resources the plugin works with.

Resources are plain JSON-shaped mappings with ``metadata`` and ``spec`` (or
``status``) sections, the way the cluster API serves them. The API objects
here keep them in memory and behave like the cluster does: writes bump the
resource version, and JSON patches honour their ``test`` operations.
"""

from __future__ import annotations

import copy
import json
from typing import Any, Iterable, Union

JSONPatch = list[dict[str, Any]]


class ApiError(Exception):
    """An error reported by the cluster API."""


class NotFoundError(ApiError):
    """The requested resource does not exist."""


class AlreadyExistsError(ApiError):
    """A resource with the same name already exists."""


class InvalidError(ApiError):
    """The request was rejected as invalid, e.g. a failed patch test."""


def is_not_found(error: BaseException) -> bool:
    """Tell whether an error reports a missing resource."""
    return isinstance(error, NotFoundError)


def _decode_pointer(path: str) -> list[str]:
    if path == "":
        return []
    if not path.startswith("/"):
        raise InvalidError(f"invalid JSON pointer: {path!r}")
    return [token.replace("~1", "/").replace("~0", "~") for token in path[1:].split("/")]


def _list_index(token: str, length: int, allow_end: bool = False) -> int:
    if allow_end and token == "-":
        return length
    if not (token.isascii() and token.isdigit()):
        raise InvalidError(f"invalid array index: {token!r}")
    index = int(token)
    limit = length if allow_end else length - 1
    if index > limit:
        raise InvalidError(f"array index out of range: {index}")
    return index


def _lookup(document: Any, tokens: list[str]) -> tuple[bool, Any]:
    node = document
    for token in tokens:
        if isinstance(node, dict) and token in node:
            node = node[token]
        elif isinstance(node, list) and token.isascii() and token.isdigit() and int(token) < len(node):
            node = node[int(token)]
        else:
            return False, None
    return True, node


def _apply_operation(document: Any, operation: dict[str, Any]) -> None:
    op = operation.get("op")
    path = operation.get("path", "")
    tokens = _decode_pointer(path)
    value = operation.get("value")

    if op == "test":
        found, current = _lookup(document, tokens)
        if value is None and (not found or current is None):
            return
        if found and current == value:
            return
        raise InvalidError(f"test operation failed for path {path}")

    if op not in ("add", "remove", "replace"):
        raise InvalidError(f"unsupported patch operation: {op}")
    if not tokens:
        raise InvalidError("the document root cannot be patched")

    found, parent = _lookup(document, tokens[:-1])
    if not found or not isinstance(parent, (dict, list)):
        raise InvalidError(f"path {path} does not exist")
    key = tokens[-1]

    if isinstance(parent, dict):
        if op != "add" and key not in parent:
            raise InvalidError(f"path {path} does not exist")
        if op == "remove":
            del parent[key]
        else:
            parent[key] = copy.deepcopy(value)
    elif op == "add":
        parent.insert(_list_index(key, len(parent), allow_end=True), copy.deepcopy(value))
    else:
        index = _list_index(key, len(parent))
        if op == "remove":
            del parent[index]
        else:
            parent[index] = copy.deepcopy(value)


def _apply_patch(document: dict[str, Any], operations: JSONPatch) -> dict[str, Any]:
    patched = copy.deepcopy(document)
    for operation in operations:
        if not isinstance(operation, dict):
            raise InvalidError("patch operations must be objects")
        _apply_operation(patched, operation)
    return patched


class _ResourceStore:
    """Resources of one kind, keyed by namespace and name."""

    def __init__(self, kind: str, items: Iterable[dict[str, Any]] = ()) -> None:
        self._kind = kind
        self._items: dict[tuple[str, str], dict[str, Any]] = {}
        self._revision = 0
        for item in items:
            self.create(item.get("metadata", {}).get("namespace", ""), item)

    def _next_version(self) -> str:
        self._revision += 1
        return str(self._revision)

    def _missing(self, name: str) -> NotFoundError:
        return NotFoundError(f'{self._kind} "{name}" not found')

    def all(self, namespace: str = "") -> list[dict[str, Any]]:
        return [
            copy.deepcopy(item)
            for (item_namespace, _), item in sorted(self._items.items())
            if not namespace or item_namespace == namespace
        ]

    def get(self, namespace: str, name: str) -> dict[str, Any]:
        try:
            return copy.deepcopy(self._items[(namespace, name)])
        except KeyError:
            raise self._missing(name) from None

    def create(self, namespace: str, resource: dict[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(resource)
        metadata = stored.setdefault("metadata", {})
        name = metadata.get("name", "")
        if not name:
            raise InvalidError(f"{self._kind}: metadata.name is required")
        metadata["namespace"] = namespace
        key = (namespace, name)
        if key in self._items:
            raise AlreadyExistsError(f'{self._kind} "{name}" already exists')
        if not metadata.get("resourceVersion"):
            metadata["resourceVersion"] = self._next_version()
        self._items[key] = stored
        return copy.deepcopy(stored)

    def delete(self, namespace: str, name: str) -> None:
        if self._items.pop((namespace, name), None) is None:
            raise self._missing(name)

    def patch(self, namespace: str, name: str, operations: Union[JSONPatch, str, bytes]) -> dict[str, Any]:
        if isinstance(operations, (str, bytes, bytearray)):
            try:
                operations = json.loads(operations)
            except ValueError as error:
                raise InvalidError(f"malformed patch: {error}") from error
        if not isinstance(operations, list):
            raise InvalidError("a JSON patch must be an array of operations")
        current = self.get(namespace, name)
        patched = _apply_patch(current, operations)
        metadata = patched.setdefault("metadata", {})
        metadata["name"] = name
        metadata["namespace"] = namespace
        metadata["resourceVersion"] = self._next_version()
        self._items[(namespace, name)] = patched
        return copy.deepcopy(patched)


class WhereaboutsAPI:
    """The plugin's custom resources: IP pools and cluster-wide reservations."""

    def __init__(
        self,
        ip_pools: Iterable[dict[str, Any]] = (),
        overlapping_reservations: Iterable[dict[str, Any]] = (),
    ) -> None:
        self._pools = _ResourceStore("IPPool", ip_pools)
        self._reservations = _ResourceStore("OverlappingRangeIPReservation", overlapping_reservations)

    def list_ip_pools(self, namespace: str = "") -> list[dict[str, Any]]:
        """Return the pools of a namespace, or of all namespaces for ""."""
        return self._pools.all(namespace)

    def get_ip_pool(self, namespace: str, name: str) -> dict[str, Any]:
        return self._pools.get(namespace, name)

    def create_ip_pool(self, namespace: str, pool: dict[str, Any]) -> dict[str, Any]:
        return self._pools.create(namespace, pool)

    def patch_ip_pool(self, namespace: str, name: str, operations: Union[JSONPatch, str, bytes]) -> dict[str, Any]:
        """Apply a JSON patch; a failed test operation raises InvalidError."""
        return self._pools.patch(namespace, name, operations)

    def delete_ip_pool(self, namespace: str, name: str) -> None:
        self._pools.delete(namespace, name)

    def list_overlapping_reservations(self, namespace: str = "") -> list[dict[str, Any]]:
        return self._reservations.all(namespace)

    def get_overlapping_reservation(self, namespace: str, name: str) -> dict[str, Any]:
        return self._reservations.get(namespace, name)

    def create_overlapping_reservation(self, namespace: str, reservation: dict[str, Any]) -> dict[str, Any]:
        return self._reservations.create(namespace, reservation)

    def delete_overlapping_reservation(self, namespace: str, name: str) -> None:
        self._reservations.delete(namespace, name)


class CoreAPI:
    """The core resources the plugin reads: pods."""

    def __init__(self, pods: Iterable[dict[str, Any]] = ()) -> None:
        self._pods = _ResourceStore("Pod", pods)

    def list_pods(self, namespace: str = "") -> list[dict[str, Any]]:
        """Return the pods of a namespace, or of all namespaces for ""."""
        return self._pods.all(namespace)

    def get_pod(self, namespace: str, name: str) -> dict[str, Any]:
        return self._pods.get(namespace, name)

    def create_pod(self, namespace: str, pod: dict[str, Any]) -> dict[str, Any]:
        return self._pods.create(namespace, pod)

    def delete_pod(self, namespace: str, name: str) -> None:
        self._pods.delete(namespace, name)