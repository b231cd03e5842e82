"""Access to Subnet and SubnetSet objects stored in Kubernetes."""

import logging
from typing import Any, Protocol

from kubernetes import client as k8s_client

from constants import API_GROUP, API_VERSION, SUBNETSET_PLURAL, SUBNET_PLURAL
from models import SpecKind, SpecObject, UnsupportedKindError

logger = logging.getLogger(__name__)

PLURALS = {
    SpecKind.SUBNET: SUBNET_PLURAL,
    SpecKind.SUBNETSET: SUBNETSET_PLURAL,
}


def plural_for(kind: SpecKind) -> str:
    """Custom resource plural of a spec kind."""
    try:
        return PLURALS[kind]
    except KeyError:
        raise UnsupportedKindError(f"Unsupported spec kind: {kind!r}") from None


class SpecStore(Protocol):
    """What the reconcilers need from the Kubernetes API."""

    def get(self, kind: SpecKind, namespace: str, name: str) -> SpecObject | None: ...

    def update_finalizers(self, obj: SpecObject, finalizers: list[str]) -> SpecObject: ...

    def update_status(self, obj: SpecObject, status: dict[str, Any]) -> SpecObject: ...

    def list(self, kind: SpecKind, namespace: str = "") -> list[SpecObject]: ...


class KubernetesSpecStore:
    """SpecStore backed by the Kubernetes CustomObjectsApi."""

    def __init__(self, api: k8s_client.CustomObjectsApi) -> None:
        self.api = api

    def get(self, kind: SpecKind, namespace: str, name: str) -> SpecObject | None:
        """Read a spec object. Returns None if it no longer exists."""
        try:
            body = self.api.get_namespaced_custom_object(
                API_GROUP, API_VERSION, namespace, plural_for(kind), name
            )
        except k8s_client.ApiException as e:
            if e.status == 404:
                logger.debug(f"{kind.value} {namespace}/{name} not found")
                return None
            raise
        return SpecObject.from_body(kind, body)

    def update_finalizers(self, obj: SpecObject, finalizers: list[str]) -> SpecObject:
        """Replace the finalizer list.

        The patch carries the resourceVersion that was read, so a concurrent
        writer makes it fail with a 409 instead of being overwritten.
        """
        body = self.api.patch_namespaced_custom_object(
            API_GROUP,
            API_VERSION,
            obj.namespace,
            plural_for(obj.kind),
            obj.name,
            {
                "metadata": {
                    "finalizers": finalizers,
                    "resourceVersion": obj.resource_version,
                }
            },
        )
        return SpecObject.from_body(obj.kind, body)

    def update_status(self, obj: SpecObject, status: dict[str, Any]) -> SpecObject:
        """Write the status subresource.

        Returns the object as stored afterwards. The write moves its
        resourceVersion, so later finalizer patches must use the result.
        """
        body = self.api.patch_namespaced_custom_object_status(
            API_GROUP,
            API_VERSION,
            obj.namespace,
            plural_for(obj.kind),
            obj.name,
            {"status": status},
        )
        return SpecObject.from_body(obj.kind, body)

    def list(self, kind: SpecKind, namespace: str = "") -> list[SpecObject]:
        """List spec objects in one namespace, or cluster-wide."""
        if namespace:
            result = self.api.list_namespaced_custom_object(
                API_GROUP, API_VERSION, namespace, plural_for(kind)
            )
        else:
            result = self.api.list_cluster_custom_object(
                API_GROUP, API_VERSION, plural_for(kind)
            )
        return [SpecObject.from_body(kind, item) for item in result.get("items", [])]
