"""ObjectStore backed by a live cluster through the kubernetes dynamic client."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError
from urllib3.exceptions import HTTPError
from urllib3.exceptions import TimeoutError as HTTPTimeoutError

from updateservice.config import API_VERSIONS, Object
from updateservice.errors import (
    AlreadyExistsError,
    ConflictError,
    DeadlineExceeded,
    NotFoundError,
    StoreError,
)
from updateservice.store import NO_DEADLINE, Deadline, ObjectStore, object_key

from .config import KubeConfig

LOG = logging.getLogger(__name__)


def load_api_client(settings: KubeConfig) -> client.ApiClient:
    """Build an API client from in-cluster credentials or a kubeconfig."""

    if settings.in_cluster is not False:
        try:
            config.load_incluster_config()
            LOG.info("using in-cluster kubernetes configuration")
            return client.ApiClient()
        except config.ConfigException:
            if settings.in_cluster:
                raise
    config.load_kube_config(
        config_file=str(settings.kubeconfig) if settings.kubeconfig else None,
        context=settings.context,
    )
    LOG.info("using kubeconfig %s", settings.kubeconfig or "(default)")
    return client.ApiClient()


def translate_api_exception(exc: ApiException, kind: str, namespace: str, name: str) -> StoreError:
    """Map an API status code onto the store error taxonomy."""

    if exc.status == 404:
        return NotFoundError(kind, namespace, name)
    if exc.status == 409:
        # Create races report AlreadyExists; stale writes report Conflict.
        if "AlreadyExists" in str(exc.body or "") or exc.reason == "AlreadyExists":
            return AlreadyExistsError(kind, namespace, name)
        return ConflictError(f"{kind} {namespace}/{name}: {exc.reason}")
    if exc.status == 408 or exc.status == 504:
        return DeadlineExceeded(f"{kind} {namespace}/{name}: {exc.reason}")
    return StoreError(f"{kind} {namespace}/{name}: {exc.status} {exc.reason}")


class KubernetesObjectStore(ObjectStore):
    """Read and write cluster objects as plain dictionaries.

    Args:
        dynamic: A :class:`kubernetes.dynamic.DynamicClient`. Resources are
            discovered lazily by ``apiVersion``/``kind`` and cached.
    """

    def __init__(self, dynamic: DynamicClient) -> None:
        self._dynamic = dynamic
        self._resources: Dict[str, Any] = {}

    @classmethod
    def from_settings(cls, settings: KubeConfig) -> "KubernetesObjectStore":
        return cls(DynamicClient(load_api_client(settings)))

    def _resource(self, kind: str):
        resource = self._resources.get(kind)
        if resource is None:
            resource = self._dynamic.resources.get(api_version=API_VERSIONS[kind], kind=kind)
            self._resources[kind] = resource
        return resource

    @staticmethod
    def _options(deadline: Deadline) -> Dict[str, Any]:
        deadline.check()
        remaining = deadline.remaining()
        return {"_request_timeout": remaining} if remaining is not None else {}

    def _call(self, key: Tuple[str, str, str], verb: str, status: bool = False, **kwargs) -> Any:
        """Discover the resource for ``key`` and invoke ``verb`` on it.

        Every client failure, discovery included, leaves as a :class:`StoreError`.
        """

        kind, namespace, name = key
        try:
            resource = self._resource(kind)
            if status:
                resource = resource.status
            return getattr(resource, verb)(**kwargs)
        except ApiException as exc:
            raise translate_api_exception(exc, kind, namespace, name) from exc
        except ResourceNotFoundError as exc:
            raise StoreError(f"{kind} {namespace}/{name}: resource type not served: {exc}") from exc
        except HTTPTimeoutError as exc:
            raise DeadlineExceeded(f"{kind} {namespace}/{name}: {exc}") from exc
        except HTTPError as exc:
            raise StoreError(f"{kind} {namespace}/{name}: {exc}") from exc

    @staticmethod
    def _to_object(kind: str, result) -> Object:
        obj = result.to_dict()
        obj.setdefault("kind", kind)
        obj.setdefault("apiVersion", API_VERSIONS[kind])
        return obj

    # ------------------------------------------------------------------
    # ObjectStore
    # ------------------------------------------------------------------
    def get(self, kind: str, namespace: str, name: str, *, deadline: Deadline = NO_DEADLINE) -> Object:
        result = self._call(
            (kind, namespace, name),
            "get",
            name=name,
            namespace=namespace or None,
            **self._options(deadline),
        )
        return self._to_object(kind, result)

    def list(
        self, kind: str, namespace: Optional[str] = None, *, deadline: Deadline = NO_DEADLINE
    ) -> List[Object]:
        result = self._call(
            (kind, namespace or "", ""), "get", namespace=namespace or None, **self._options(deadline)
        )
        items = result.to_dict().get("items") or []
        for item in items:
            item.setdefault("kind", kind)
            item.setdefault("apiVersion", API_VERSIONS[kind])
        return items

    def create(self, obj: Object, *, deadline: Deadline = NO_DEADLINE) -> Object:
        key = object_key(obj)
        result = self._call(key, "create", body=obj, namespace=key[1] or None, **self._options(deadline))
        return self._to_object(key[0], result)

    def update(self, obj: Object, *, deadline: Deadline = NO_DEADLINE) -> Object:
        key = object_key(obj)
        result = self._call(key, "replace", body=obj, namespace=key[1] or None, **self._options(deadline))
        return self._to_object(key[0], result)

    def update_status(self, obj: Object, *, deadline: Deadline = NO_DEADLINE) -> Object:
        key = object_key(obj)
        result = self._call(
            key, "replace", status=True, body=obj, namespace=key[1] or None, **self._options(deadline)
        )
        return self._to_object(key[0], result)

    def delete(self, kind: str, namespace: str, name: str, *, deadline: Deadline = NO_DEADLINE) -> None:
        self._call(
            (kind, namespace, name),
            "delete",
            name=name,
            namespace=namespace or None,
            **self._options(deadline),
        )
