"""Kopf handlers for the Subnet CRD."""

from typing import Any

import kopf

from constants import API_GROUP, API_VERSION, SUBNET_PLURAL
from handlers.common import run_reconcile
from state import get_subnet_reconciler


@kopf.on.resume(API_GROUP, API_VERSION, SUBNET_PLURAL)
@kopf.on.create(API_GROUP, API_VERSION, SUBNET_PLURAL)
@kopf.on.update(API_GROUP, API_VERSION, SUBNET_PLURAL)
def reconcile_subnet_handler(
    name: str,
    namespace: str,
    body: kopf.Body,
    retry: int = 0,
    **_: Any,
) -> None:
    """Create or update the NSX subnet of a Subnet."""
    run_reconcile(get_subnet_reconciler(), "update", namespace, name, body, retry)


# The operator manages its own finalizer, so Kopf must not add one.
@kopf.on.delete(API_GROUP, API_VERSION, SUBNET_PLURAL, optional=True)
def delete_subnet_handler(
    name: str,
    namespace: str,
    body: kopf.Body,
    retry: int = 0,
    **_: Any,
) -> None:
    """Release and delete the NSX subnet of a Subnet."""
    run_reconcile(get_subnet_reconciler(), "delete", namespace, name, body, retry)
