"""Library for deciding whether a deployed object has converged.

Readiness is decided per kind by a predicate registered in a table keyed by
the object kind. Kinds without a registered predicate are always ready.

Each predicate reads the status fields of a fresh copy of the object fetched
from the cluster. A field that is absent means the object is not ready yet,
while a field with an unexpected type means readiness can't be determined and
raises a `ReadinessError`.
"""

from collections.abc import Callable
import logging
from typing import TYPE_CHECKING, Any

from . import fields
from .exceptions import FieldTypeError, ReadinessError

if TYPE_CHECKING:
    from .resource import Object

__all__ = [
    "is_ready",
    "register",
    "PREDICATES",
]

_LOGGER = logging.getLogger(__name__)

Predicate = Callable[["Object"], bool]

PREDICATES: dict[str, Predicate] = {}
"""Readiness predicates keyed by object kind."""


def register(kind: str) -> Callable[[Predicate], Predicate]:
    """Register the decorated function as the readiness predicate of a kind."""

    def decorator(func: Predicate) -> Predicate:
        PREDICATES[kind] = func
        return func

    return decorator


def is_ready(obj: "Object") -> bool:
    """Return True if the deployed object is ready."""
    if (predicate := PREDICATES.get(obj.kind)) is None:
        return True
    try:
        return predicate(obj)
    except FieldTypeError as err:
        raise ReadinessError(str(obj), str(err)) from err


def _conditions(obj: "Object") -> list[dict[str, Any]]:
    conditions, _ = fields.nested_list(obj.doc, "status", "conditions")
    for condition in conditions:
        if not isinstance(condition, dict):
            raise FieldTypeError("failed to convert conditions to map")
    return conditions


def _generation_matches(obj: "Object") -> bool:
    """Return True if the status was observed for the latest generation."""
    generation, found = fields.nested_int(obj.doc, "metadata", "generation")
    if not found:
        return False
    observed, found = fields.nested_int(obj.doc, "status", "observedGeneration")
    return found and observed == generation


def _status_replicas_match(obj: "Object", *status_fields: str) -> bool:
    """Return True if every status replica count equals `spec.replicas`."""
    spec_replicas, found = fields.nested_int(obj.doc, "spec", "replicas")
    if not found:
        return False
    for field in status_fields:
        value, found = fields.nested_int(obj.doc, "status", field)
        if not found or value != spec_replicas:
            return False
    return True


@register("DaemonSet")
def daemon_set_is_ready(obj: "Object") -> bool:
    """A DaemonSet is ready when every scheduled pod is available and ready."""
    if not _generation_matches(obj):
        return False
    desired, found = fields.nested_int(obj.doc, "status", "desiredNumberScheduled")
    if not found:
        return False
    for field in ("numberAvailable", "numberReady"):
        value, found = fields.nested_int(obj.doc, "status", field)
        if not found or value != desired:
            return False
    return True


@register("Deployment")
def deployment_is_ready(obj: "Object") -> bool:
    """A Deployment is ready when all replicas are rolled out and available.

    Every condition must be `Available/True`, `Progressing/True` with reason
    `NewReplicaSetAvailable`, or a `ReplicaFailure` that is not `True`. Any
    condition of another type means the deployment is not ready.
    """
    if not _generation_matches(obj):
        return False
    spec_replicas, found = fields.nested_int(obj.doc, "spec", "replicas")
    if not found:
        return False
    # Status counts are omitted by the API server when zero
    for field in ("replicas", "readyReplicas", "availableReplicas"):
        value, _ = fields.nested_int(obj.doc, "status", field)
        if value != spec_replicas:
            return False

    conditions = _conditions(obj)
    if not conditions:
        return False
    for condition in conditions:
        condition_type, _ = fields.nested_str(condition, "type")
        status, _ = fields.nested_str(condition, "status")
        if condition_type == "Available":
            if status != "True":
                return False
        elif condition_type == "Progressing":
            reason, _ = fields.nested_str(condition, "reason")
            if status != "True" or reason != "NewReplicaSetAvailable":
                return False
        elif condition_type == "ReplicaFailure":
            if not status or status == "True":
                return False
        else:
            return False
    return True


@register("PersistentVolumeClaim")
def persistent_volume_claim_is_ready(obj: "Object") -> bool:
    """A PersistentVolumeClaim is ready once bound."""
    phase, _ = fields.nested_str(obj.doc, "status", "phase")
    return phase == "Bound"


@register("Pod")
def pod_is_ready(obj: "Object") -> bool:
    """A Pod is ready when its `Ready` condition is true or it has completed."""
    for condition in _conditions(obj):
        condition_type, _ = fields.nested_str(condition, "type")
        if not condition_type:
            return False
        if condition_type != "Ready":
            continue
        status, found = fields.nested_str(condition, "status")
        if not found:
            return False
        if status == "True":
            return True
        reason, found = fields.nested_str(condition, "reason")
        if not found:
            return False
        if reason == "PodCompleted":
            return True
    return False


@register("PodDisruptionBudget")
def pod_disruption_budget_is_ready(obj: "Object") -> bool:
    """A PodDisruptionBudget is ready when enough pods are healthy."""
    if not _generation_matches(obj):
        return False
    desired, _ = fields.nested_int(obj.doc, "status", "desiredHealthy")
    current, found = fields.nested_int(obj.doc, "status", "currentHealthy")
    return found and current >= desired


@register("ReplicaSet")
def replica_set_is_ready(obj: "Object") -> bool:
    """A ReplicaSet is ready when all replicas are available without failure."""
    if not _generation_matches(obj):
        return False
    if not _status_replicas_match(obj, "replicas", "readyReplicas", "availableReplicas"):
        return False
    for condition in _conditions(obj):
        condition_type, _ = fields.nested_str(condition, "type")
        if not condition_type:
            return False
        if condition_type == "ReplicaFailure":
            status, found = fields.nested_str(condition, "status")
            if not found or status == "True":
                return False
    return True


@register("ReplicationController")
def replication_controller_is_ready(obj: "Object") -> bool:
    """A ReplicationController is ready when all replicas are available."""
    if not _generation_matches(obj):
        return False
    return _status_replicas_match(
        obj, "replicas", "readyReplicas", "availableReplicas"
    )


@register("Service")
def service_is_ready(obj: "Object") -> bool:
    """A Service is ready once typed, and a LoadBalancer once it has ingress ips."""
    service_type, _ = fields.nested_str(obj.doc, "spec", "type")
    if not service_type:
        return False
    if service_type in ("ClusterIP", "NodePort", "ExternalName"):
        return True

    cluster_ip, _ = fields.nested_str(obj.doc, "spec", "clusterIP")
    if not cluster_ip:
        return False
    ingress, _ = fields.nested_list(obj.doc, "status", "loadBalancer", "ingress")
    if not ingress:
        return False
    for entry in ingress:
        if not isinstance(entry, dict):
            raise FieldTypeError("failed to convert ingress to map")
        ip, _ = fields.nested_str(entry, "ip")
        if not ip:
            return False
    return True


@register("StatefulSet")
def stateful_set_is_ready(obj: "Object") -> bool:
    """A StatefulSet is ready when all replicas are ready and current."""
    if not _generation_matches(obj):
        return False
    return _status_replicas_match(obj, "replicas", "readyReplicas", "currentReplicas")
