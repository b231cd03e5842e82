"""Kopf handlers for the SubnetSet CRD.

A SubnetSet creates no NSX subnet by itself. Members are allocated
lazily by the SubnetPort handler; these handlers keep existing members
in line with the spec and clean them up on deletion.
"""

from typing import Any

import kopf

from constants import API_GROUP, API_VERSION, SUBNETSET_PLURAL
from handlers.common import run_reconcile
from state import get_subnetset_reconciler


@kopf.on.resume(API_GROUP, API_VERSION, SUBNETSET_PLURAL)
@kopf.on.create(API_GROUP, API_VERSION, SUBNETSET_PLURAL)
@kopf.on.update(API_GROUP, API_VERSION, SUBNETSET_PLURAL)
def reconcile_subnetset_handler(
    name: str,
    namespace: str,
    body: kopf.Body,
    retry: int = 0,
    **_: Any,
) -> None:
    """Refresh the member subnets and status of a SubnetSet."""
    run_reconcile(get_subnetset_reconciler(), "update", namespace, name, body, retry)


@kopf.on.delete(API_GROUP, API_VERSION, SUBNETSET_PLURAL, optional=True)
def delete_subnetset_handler(
    name: str,
    namespace: str,
    body: kopf.Body,
    retry: int = 0,
    **_: Any,
) -> None:
    """Release and delete every member subnet of a SubnetSet."""
    run_reconcile(get_subnetset_reconciler(), "delete", namespace, name, body, retry)
