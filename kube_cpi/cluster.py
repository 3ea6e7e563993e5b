"""
cluster.py
----------
Per-context access to the Kubernetes API.

A ``ClientProvider`` turns a context name from a CID into a ``Client`` bound
to that context's namespace.  The empty context name means "the kubeconfig's
current context"; when no kubeconfig is present at all the provider falls
back to the pod's service account (in-cluster).

The provider is constructed once per process and injected into every action;
there is no module-level client.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterator, Optional, Tuple

from kubernetes import config, watch
from kubernetes.client import ApiClient, Configuration, CoreV1Api
from kubernetes.config.config_exception import ConfigException

from .errors import ClientUnavailable

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT = ""
DEFAULT_NAMESPACE = "default"
SERVICE_ACCOUNT_NAMESPACE = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")
DEFAULT_KUBECONFIG = "~/.kube/config"


def _first_kubeconfig(value: str) -> str:
    """Pick the first existing entry of a ``$KUBECONFIG``-style path list (or the first entry)."""
    paths = [os.path.expanduser(p) for p in value.split(os.pathsep) if p]
    for path in paths:
        if Path(path).exists():
            return path
    return paths[0] if paths else os.path.expanduser(DEFAULT_KUBECONFIG)


class PodWatch:
    """A label-selector watch on pods that can be stopped from the consuming side.

    Iterating yields ``{"type": ..., "object": V1Pod}`` events.  When
    ``timeout_seconds`` is set the API server ends the watch on its own, so
    the connection is released even if nobody calls :meth:`stop`.

    :meth:`stop` unblocks a reader waiting on the socket only with
    kubernetes-client 29 or newer; older releases just flag the stream and
    the reader holds the connection until ``timeout_seconds`` runs out.
    """

    def __init__(
        self,
        core: CoreV1Api,
        namespace: str,
        label_selector: str,
        resource_version: Optional[str],
        timeout_seconds: Optional[int] = None,
    ) -> None:
        self._core = core
        self._namespace = namespace
        self._label_selector = label_selector
        self._resource_version = resource_version
        self._timeout_seconds = timeout_seconds
        self._watch = watch.Watch()

    def __iter__(self) -> Iterator[dict]:
        kwargs = {"label_selector": self._label_selector}
        if self._resource_version:
            kwargs["resource_version"] = self._resource_version
        if self._timeout_seconds:
            kwargs["timeout_seconds"] = self._timeout_seconds
        return self._watch.stream(self._core.list_namespaced_pod, self._namespace, **kwargs)

    def stop(self) -> None:
        self._watch.stop()


class Client:
    """A ``CoreV1Api`` scoped to one context and namespace."""

    def __init__(self, context: str, namespace: str, core: CoreV1Api) -> None:
        self.context = context
        self.namespace = namespace
        self.core = core

    def watch_pods(
        self, label_selector: str, resource_version: Optional[str], timeout_seconds: Optional[int] = None
    ) -> PodWatch:
        return PodWatch(self.core, self.namespace, label_selector, resource_version, timeout_seconds)

    def __repr__(self) -> str:
        return f"Client(context={self.context!r}, namespace={self.namespace!r})"


class ClientProvider:
    """Factory for ``Client`` objects keyed by kubeconfig context name."""

    def __init__(self, kubeconfig: Optional[str] = None) -> None:
        self.kubeconfig = _first_kubeconfig(kubeconfig or os.getenv("KUBECONFIG") or DEFAULT_KUBECONFIG)

    @property
    def in_cluster(self) -> bool:
        return not Path(self.kubeconfig).exists()

    def new(self, context: str = DEFAULT_CONTEXT) -> Client:
        """Return a client for *context* (empty string = current context)."""
        name, namespace = self._resolve(context)
        cfg = self.get_config(name)
        logger.debug("Created client for context '%s' (namespace %s)", name, namespace)
        return Client(name, namespace, CoreV1Api(ApiClient(cfg)))

    def get_config(self, context: str = DEFAULT_CONTEXT) -> Configuration:
        """Return the connection configuration (endpoint + credentials) for *context*."""
        cfg = Configuration()
        try:
            if self.in_cluster:
                config.load_incluster_config(client_configuration=cfg)
                logger.debug("Loaded in-cluster kube-config")
            else:
                config.load_kube_config(
                    config_file=self.kubeconfig,
                    context=context or None,
                    client_configuration=cfg,
                    persist_config=False,
                )
                logger.debug("Loaded kube-config %s for context '%s'", self.kubeconfig, context)
        except ConfigException as exc:
            logger.error("No Kubernetes configuration for context '%s': %s", context, exc)
            raise ClientUnavailable(f"cannot configure client for context {context!r}: {exc}") from exc
        return cfg

    def _resolve(self, context: str) -> Tuple[str, str]:
        """Map *context* to its canonical name and namespace."""
        if self.in_cluster:
            if context:
                raise ClientUnavailable(
                    f"context {context!r} requested but no kubeconfig found at {self.kubeconfig}"
                )
            return DEFAULT_CONTEXT, self._service_account_namespace()

        try:
            contexts, active = config.list_kube_config_contexts(config_file=self.kubeconfig)
        except ConfigException as exc:
            raise ClientUnavailable(f"cannot read kubeconfig {self.kubeconfig}: {exc}") from exc

        if context == DEFAULT_CONTEXT:
            entry = active
        else:
            entry = next((c for c in contexts or [] if c.get("name") == context), None)
        if not entry:
            raise ClientUnavailable(f"context {context!r} not found in {self.kubeconfig}")

        namespace = (entry.get("context") or {}).get("namespace") or DEFAULT_NAMESPACE
        return entry["name"], namespace

    @staticmethod
    def _service_account_namespace() -> str:
        try:
            return SERVICE_ACCOUNT_NAMESPACE.read_text().strip() or DEFAULT_NAMESPACE
        except OSError:
            return DEFAULT_NAMESPACE
