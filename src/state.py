"""Shared operator state - thread-safe singleton for NSX and Kubernetes clients.

The subnet service (and with it the subnet cache) is built exactly once
and handed to both reconcilers, so Subnet and SubnetSet reconciles share
one view of NSX.
"""

import threading
from dataclasses import dataclass, field

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config

from config import OperatorConfig
from nsx_client import NSXClient
from reconciler import SubnetReconciler, SubnetSetReconciler
from resources.specs import KubernetesSpecStore
from resources.subnet_service import SubnetService


@dataclass
class OperatorState:
    """Thread-safe operator state container.

    This class provides thread-safe access to shared operator resources:
    - operator configuration
    - NSX client and subnet service
    - Kubernetes API clients
    - Subnet and SubnetSet reconcilers

    All handlers should use the global `state` instance rather than
    creating their own clients.
    """

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _config: OperatorConfig | None = field(default=None, repr=False)
    _nsx_client: NSXClient | None = field(default=None, repr=False)
    _service: SubnetService | None = field(default=None, repr=False)
    _k8s_custom_api: k8s_client.CustomObjectsApi | None = field(default=None, repr=False)
    _k8s_configured: bool = field(default=False, repr=False)
    _subnet_reconciler: SubnetReconciler | None = field(default=None, repr=False)
    _subnetset_reconciler: SubnetSetReconciler | None = field(default=None, repr=False)

    def _ensure_k8s_config(self) -> None:
        """Ensure Kubernetes configuration is loaded (must hold lock)."""
        if not self._k8s_configured:
            try:
                k8s_config.load_incluster_config()
            except k8s_config.ConfigException:
                k8s_config.load_kube_config()
            self._k8s_configured = True

    def _get_config(self) -> OperatorConfig:
        """Get or load the configuration (must hold lock)."""
        if self._config is None:
            self._config = OperatorConfig.from_env()
        return self._config

    def _get_service(self) -> SubnetService:
        """Get or create the subnet service (must hold lock)."""
        if self._service is None:
            config = self._get_config()
            if self._nsx_client is None:
                self._nsx_client = NSXClient.from_config(config)
            self._service = SubnetService(self._nsx_client, config)
        return self._service

    def _get_k8s_custom_api(self) -> k8s_client.CustomObjectsApi:
        """Get or create the CustomObjectsApi client (must hold lock)."""
        self._ensure_k8s_config()
        if self._k8s_custom_api is None:
            self._k8s_custom_api = k8s_client.CustomObjectsApi()
        return self._k8s_custom_api

    def get_config(self) -> OperatorConfig:
        """Get the operator configuration (thread-safe)."""
        with self._lock:
            return self._get_config()

    def get_subnet_service(self) -> SubnetService:
        """Get or create the shared subnet service (thread-safe)."""
        with self._lock:
            return self._get_service()

    def get_k8s_custom_api(self) -> k8s_client.CustomObjectsApi:
        """Get or create the Kubernetes CustomObjectsApi client (thread-safe)."""
        with self._lock:
            return self._get_k8s_custom_api()

    def get_subnet_reconciler(self) -> SubnetReconciler:
        """Get or create the Subnet reconciler (thread-safe)."""
        with self._lock:
            if self._subnet_reconciler is None:
                self._subnet_reconciler = SubnetReconciler(
                    self._get_service(),
                    KubernetesSpecStore(self._get_k8s_custom_api()),
                    namespace=self._get_config().watch_namespace,
                )
            return self._subnet_reconciler

    def get_subnetset_reconciler(self) -> SubnetSetReconciler:
        """Get or create the SubnetSet reconciler (thread-safe)."""
        with self._lock:
            if self._subnetset_reconciler is None:
                self._subnetset_reconciler = SubnetSetReconciler(
                    self._get_service(),
                    KubernetesSpecStore(self._get_k8s_custom_api()),
                    namespace=self._get_config().watch_namespace,
                )
            return self._subnetset_reconciler

    def close(self) -> None:
        """Cancel in-flight waits and close all connections."""
        with self._lock:
            if self._service is not None:
                self._service.stop()
            if self._nsx_client is not None:
                self._nsx_client.close()
                self._nsx_client = None


# Global operator state singleton
state = OperatorState()


# Convenience functions
def get_config() -> OperatorConfig:
    """Get the operator configuration."""
    return state.get_config()


def get_subnet_service() -> SubnetService:
    """Get the shared subnet service."""
    return state.get_subnet_service()


def get_k8s_custom_api() -> k8s_client.CustomObjectsApi:
    """Get the shared Kubernetes CustomObjectsApi client."""
    return state.get_k8s_custom_api()


def get_subnet_reconciler() -> SubnetReconciler:
    """Get the shared Subnet reconciler."""
    return state.get_subnet_reconciler()


def get_subnetset_reconciler() -> SubnetSetReconciler:
    """Get the shared SubnetSet reconciler."""
    return state.get_subnetset_reconciler()
