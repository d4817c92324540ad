import logging
from datetime import datetime, timezone
from typing import List, Optional

from kubernetes import client, config
from kubernetes.client import ApiException
from kubernetes.config.config_exception import ConfigException

from errors import NotFoundError, UpstreamError
from model import (
    APP_STATUS_PENDING, APP_STATUS_RUNNING, APP_STATUS_UNKNOWN, AppRuntime, Condition, DeploymentSpecState,
    DeploymentState, DeploymentStatusState, Pod, PodStatus,
)

FLUX_SOURCE_GROUP = "source.toolkit.fluxcd.io"
FLUX_SOURCE_VERSION = "v1"
GIT_REPOSITORY_PLURAL = "gitrepositories"
RECONCILE_ANNOTATION = "reconcile.fluxcd.io/requestedAt"
RESTARTED_AT_ANNOTATION = "kubectl.kubernetes.io/restartedAt"


def _timestamp(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _conditions(conditions) -> List[Condition]:
    return [
        Condition(
            type=condition.type,
            status=condition.status,
            lastProbeTime=_timestamp(getattr(condition, "last_probe_time", None)),
            lastTransitionTime=_timestamp(condition.last_transition_time),
            reason=condition.reason,
            message=condition.message,
        )
        for condition in conditions or []
    ]


def aggregate_pod_status(phases: List[str]) -> str:
    if all(phase == APP_STATUS_RUNNING for phase in phases):
        return APP_STATUS_RUNNING
    return APP_STATUS_UNKNOWN


def derive_app_status(deployment: DeploymentState, pods: List[Pod]) -> str:
    desired = deployment.spec.replicas or 0
    replicas = deployment.status.replicas or 0
    updated = deployment.status.updatedReplicas or 0
    if updated != desired or replicas != desired:
        return APP_STATUS_PENDING
    return aggregate_pod_status([pod.status.phase or APP_STATUS_UNKNOWN for pod in pods])


class KubernetesClient:
    def __init__(self, api_client: Optional[client.ApiClient] = None):
        self.apps_api = client.AppsV1Api(api_client)
        self.core_api = client.CoreV1Api(api_client)
        self.custom_objects_api = client.CustomObjectsApi(api_client)

    @classmethod
    def from_default_config(cls):
        try:
            config.load_incluster_config()
        except ConfigException:
            config.load_kube_config()
        return cls()

    @staticmethod
    def _raise(e: ApiException, what: str):
        if e.status == 404:
            raise NotFoundError(f"{what} not found") from e
        logging.error(f"Exception when reading {what}: {e.status} {e.reason}")
        raise UpstreamError(f"Cluster API failed for {what}: {e.status} {e.reason}") from e

    def get_deployment_state(self, name: str) -> DeploymentState:
        try:
            deployment = self.apps_api.read_namespaced_deployment(name=name, namespace=name)
        except ApiException as e:
            self._raise(e, f"Deployment {name}")

        status = deployment.status
        return DeploymentState(
            spec=DeploymentSpecState(replicas=deployment.spec.replicas),
            status=DeploymentStatusState(
                availableReplicas=status.available_replicas if status else None,
                replicas=status.replicas if status else None,
                readyReplicas=status.ready_replicas if status else None,
                updatedReplicas=status.updated_replicas if status else None,
                conditions=_conditions(status.conditions if status else None),
            ),
        )

    def get_pods(self, name: str) -> List[Pod]:
        try:
            pods = self.core_api.list_namespaced_pod(namespace=name, label_selector=f"app={name}")
        except ApiException as e:
            self._raise(e, f"Pods of {name}")

        pod_statuses = []
        for pod in pods.items:
            status = pod.status
            pod_statuses.append(Pod(
                name=pod.metadata.name,
                creationTimestamp=_timestamp(pod.metadata.creation_timestamp),
                nodeName=pod.spec.node_name if pod.spec else None,
                status=PodStatus(
                    phase=status.phase if status else None,
                    startTime=_timestamp(status.start_time) if status else None,
                    message=status.message if status else None,
                    reason=status.reason if status else None,
                    conditions=_conditions(status.conditions if status else None),
                ),
            ))
        return pod_statuses

    def get_app_runtime(self, name: str) -> AppRuntime:
        deployment = self.get_deployment_state(name)
        pods = self.get_pods(name)
        return AppRuntime(deployment=deployment, pods=pods, status=derive_app_status(deployment, pods))

    def restart_deployment(self, name: str):
        body = {"spec": {"template": {"metadata": {"annotations": {RESTARTED_AT_ANNOTATION: _now()}}}}}
        try:
            self.apps_api.patch_namespaced_deployment(name=name, namespace=name, body=body)
        except ApiException as e:
            self._raise(e, f"Deployment {name}")
        logging.info(f"Deployment {name} restarted.")

    def reconcile_git_repository(self, name: str, namespace: str):
        """Ask Flux to fetch the GitRepository now instead of on its next interval."""
        body = {"metadata": {"annotations": {RECONCILE_ANNOTATION: _now()}}}
        try:
            self.custom_objects_api.patch_namespaced_custom_object(
                group=FLUX_SOURCE_GROUP,
                version=FLUX_SOURCE_VERSION,
                namespace=namespace,
                plural=GIT_REPOSITORY_PLURAL,
                name=name,
                body=body,
            )
            logging.info(f"Triggered reconciliation for GitRepository {name} in namespace {namespace}.")
        except ApiException as e:
            logging.error(f"Exception when triggering reconciliation: {e}")
