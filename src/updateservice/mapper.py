"""Translate secondary-resource watch events into primary reconcile requests.

Two cluster objects influence every UpdateService without being owned by
any of them: the ``Image`` config singleton, whose
``spec.additionalTrustedCA.name`` names a ConfigMap in ``openshift-config``,
and that ConfigMap itself. A change to either re-queues every instance.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .config import KIND_CONFIG_MAP, KIND_IMAGE_CONFIG, KIND_UPDATE_SERVICE
from .errors import NotFoundError, StoreError
from .events import ReconcileRequest, WatchEvent
from .names import IMAGE_CONFIG_NAME, OPENSHIFT_CONFIG_NAMESPACE
from .store import NO_DEADLINE, Deadline, ObjectStore

LOG = logging.getLogger(__name__)


def additional_trusted_ca_name(image_config) -> str:
    spec = image_config.get("spec") or {}
    return (spec.get("additionalTrustedCA") or {}).get("name", "") or ""


class DependencyMapper:
    """Map Image and ConfigMap events onto UpdateService requests.

    Args:
        store: Used for the live read of the Image singleton and for listing
            instances.
        watch_namespace: Restrict the listed instances to one namespace; ``None`` lists all.
    """

    def __init__(
        self,
        store: ObjectStore,
        watch_namespace: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._watch_namespace = watch_namespace
        self._log = logger or LOG

    def map(self, event: WatchEvent, deadline: Deadline = NO_DEADLINE) -> List[ReconcileRequest]:
        if event.kind == KIND_CONFIG_MAP:
            if not self._is_trusted_ca_source(event, deadline):
                return []
        elif event.kind == KIND_IMAGE_CONFIG:
            if event.name != IMAGE_CONFIG_NAME or event.namespace:
                return []
        else:
            return []
        return self._requeue_update_services(deadline)

    def _is_trusted_ca_source(self, event: WatchEvent, deadline: Deadline) -> bool:
        # Local ConfigMaps are owned objects and are routed by owner instead.
        if event.namespace != OPENSHIFT_CONFIG_NAMESPACE:
            return False
        try:
            image = self._store.get(KIND_IMAGE_CONFIG, "", IMAGE_CONFIG_NAME, deadline=deadline)
        except NotFoundError:
            return False
        except StoreError as exc:
            self._log.error("Could not get Image %s: %s", IMAGE_CONFIG_NAME, exc)
            return False
        return additional_trusted_ca_name(image) == event.name

    def _requeue_update_services(self, deadline: Deadline) -> List[ReconcileRequest]:
        try:
            instances = self._store.list(KIND_UPDATE_SERVICE, self._watch_namespace, deadline=deadline)
        except StoreError as exc:
            self._log.error("Could not list UpdateService instances: %s", exc)
            return []
        requests = []
        for obj in instances:
            metadata = obj.get("metadata") or {}
            requests.append(ReconcileRequest(metadata.get("namespace", ""), metadata["name"]))
        return requests
