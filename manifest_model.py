from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel


class Metadata(BaseModel):
    name: str


class NamespaceMetadata(BaseModel):
    name: str
    labels: Optional[Dict[str, str]] = None


class Namespace(BaseModel):
    apiVersion: str = "v1"
    kind: Literal["Namespace"] = "Namespace"
    metadata: NamespaceMetadata


class AppLabel(BaseModel):
    app: str


class Selector(BaseModel):
    matchLabels: AppLabel


class TemplateMetadata(BaseModel):
    labels: AppLabel
    annotations: Optional[Dict[str, str]] = None


class ContainerPort(BaseModel):
    name: str
    containerPort: int


class SecretKeySelector(BaseModel):
    key: str
    name: str


class EnvVarSource(BaseModel):
    secretKeyRef: SecretKeySelector


class EnvValue(BaseModel):
    name: str
    value: str


class EnvValueFrom(BaseModel):
    name: str
    valueFrom: EnvVarSource


class ContainerVolumeMount(BaseModel):
    name: str
    mountPath: str


class ResourceLimits(BaseModel):
    cpu: str
    memory: str


class ResourceRequirements(BaseModel):
    limits: ResourceLimits


class HTTPGetAction(BaseModel):
    path: str
    port: str


class Probe(BaseModel):
    httpGet: HTTPGetAction
    initialDelaySeconds: Optional[int] = None
    periodSeconds: Optional[int] = None
    timeoutSeconds: Optional[int] = None
    successThreshold: Optional[int] = None
    failureThreshold: Optional[int] = None


class Container(BaseModel):
    name: str
    image: str
    ports: List[ContainerPort]
    env: Optional[List[Union[EnvValue, EnvValueFrom]]] = None
    volumeMounts: Optional[List[ContainerVolumeMount]] = None
    resources: ResourceRequirements
    startupProbe: Optional[Probe] = None
    readinessProbe: Optional[Probe] = None
    livenessProbe: Optional[Probe] = None


class ClaimSource(BaseModel):
    claimName: str


class Volume(BaseModel):
    name: str
    persistentVolumeClaim: ClaimSource


class PodSpec(BaseModel):
    containers: List[Container]
    volumes: Optional[List[Volume]] = None


class PodTemplate(BaseModel):
    metadata: TemplateMetadata
    spec: PodSpec


class DeploymentSpec(BaseModel):
    replicas: Optional[int] = None
    selector: Selector
    template: PodTemplate


class Deployment(BaseModel):
    apiVersion: str = "apps/v1"
    kind: Literal["Deployment"] = "Deployment"
    metadata: Metadata
    spec: DeploymentSpec


class ServicePort(BaseModel):
    name: str
    port: int
    protocol: Optional[str] = None
    targetPort: Optional[Union[int, str]] = None


class ServiceSpec(BaseModel):
    type: Optional[str] = None
    selector: AppLabel
    ports: List[ServicePort]


class Service(BaseModel):
    apiVersion: str = "v1"
    kind: Literal["Service"] = "Service"
    metadata: Metadata
    spec: ServiceSpec


class ServiceBackendPort(BaseModel):
    name: str


class IngressServiceBackend(BaseModel):
    name: str
    port: ServiceBackendPort


class IngressBackend(BaseModel):
    service: IngressServiceBackend


class HTTPIngressPath(BaseModel):
    path: str
    pathType: Literal["Prefix"] = "Prefix"
    backend: IngressBackend


class HTTPIngressRuleValue(BaseModel):
    paths: List[HTTPIngressPath]


class IngressRule(BaseModel):
    host: Optional[str] = None
    http: HTTPIngressRuleValue


class IngressSpec(BaseModel):
    rules: List[IngressRule]


class IngressMetadata(BaseModel):
    name: str
    annotations: Dict[str, str] = {}


class Ingress(BaseModel):
    apiVersion: str = "networking.k8s.io/v1"
    kind: Literal["Ingress"] = "Ingress"
    metadata: IngressMetadata
    spec: IngressSpec


class Kustomization(BaseModel):
    apiVersion: str = "kustomize.config.k8s.io/v1beta1"
    kind: Literal["Kustomization"] = "Kustomization"
    metadata: Metadata
    namespace: str
    resources: List[str]


class FluxMetadata(BaseModel):
    name: str
    namespace: str


class Substitutions(BaseModel):
    DOMAIN: str


class PostBuild(BaseModel):
    substitute: Substitutions


class FluxKustomizationSpec(BaseModel):
    postBuild: PostBuild


class FluxKustomization(BaseModel):
    """The cluster's own Flux Kustomization from ``flux-system/gotk-sync.yaml``."""
    apiVersion: str
    kind: Literal["Kustomization"]
    metadata: FluxMetadata
    spec: FluxKustomizationSpec
