import copy
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from errors import Issue, ValidationError
from manifest_model import (
    AppLabel, ClaimSource, Container, ContainerPort, ContainerVolumeMount, Deployment, DeploymentSpec,
    HTTPGetAction, HTTPIngressPath, HTTPIngressRuleValue, Ingress, IngressBackend, IngressMetadata, IngressRule,
    IngressServiceBackend, IngressSpec, Kustomization, Metadata, Namespace, NamespaceMetadata, PodSpec,
    PodTemplate, Probe, ResourceRequirements, Selector, Service, ServiceBackendPort, ServicePort, ServiceSpec,
    TemplateMetadata, Volume,
)
from model import AdditionalResource, App, validate_app

SINGLETON_KINDS = ("Namespace", "Deployment", "Service", "Ingress", "Kustomization")
KUSTOMIZATION_FILE = "kustomization.yaml"

Manifest = Union[BaseModel, Dict[str, Any]]


class AppManifests(BaseModel):
    namespace: Namespace
    deployment: Deployment
    service: Service
    ingress: Optional[Ingress] = None
    kustomization: Optional[Kustomization] = None
    additionalResources: List[AdditionalResource] = []

    def documents(self) -> List[BaseModel]:
        """Every document except the Kustomization, in file-writing order."""
        docs = [self.namespace, self.deployment, self.service]
        if self.ingress is not None:
            docs.append(self.ingress)
        return docs + list(self.additionalResources)


def as_dict(resource: Manifest) -> Dict[str, Any]:
    if isinstance(resource, BaseModel):
        return resource.model_dump(exclude_none=True)
    return resource


def manifest_filename(resource: Manifest) -> str:
    doc = as_dict(resource)
    kind = doc["kind"]
    if kind in SINGLETON_KINDS:
        return f"{kind.lower()}.yaml"
    return f"{doc['metadata']['name']}.{kind.lower()}.yaml"


def kustomization_for(app_name: str, filenames: List[str]) -> Kustomization:
    return Kustomization(metadata=Metadata(name=app_name), namespace=app_name, resources=filenames)


def merge_manifest(previous: Dict[str, Any], new: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay ``new`` onto ``previous``.

    Mappings merge key by key; any other value in ``new`` (lists included)
    replaces the previous one. Keys only present in ``previous`` are kept.
    """
    merged = copy.deepcopy(previous) if isinstance(previous, dict) else {}
    for key, value in new.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_manifest(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


# Deployment keys derived from the app; absent from a render means removed
DEPLOYMENT_OWNED_PATHS = (("spec", "template", "spec", "volumes"),)


def merge_deployment(previous: Dict[str, Any], new: Dict[str, Any]) -> Dict[str, Any]:
    merged = merge_manifest(previous, new)
    for path in DEPLOYMENT_OWNED_PATHS:
        source, target = new, merged
        for key in path[:-1]:
            source = source.get(key) if isinstance(source, dict) else None
            target = target.get(key) if isinstance(target, dict) else None
        if isinstance(target, dict) and not (isinstance(source, dict) and path[-1] in source):
            target.pop(path[-1], None)
    return merged


def _container(app: App) -> Container:
    probe = None
    if app.health is not None:
        check = app.health.check
        probe = Probe(httpGet=HTTPGetAction(path=check.path, port=check.port))

    return Container(
        name=app.name,
        image=app.image,
        ports=[ContainerPort(name=port.name, containerPort=port.containerPort) for port in app.ports],
        env=[env.model_dump() for env in app.envVariables],
        volumeMounts=[
            ContainerVolumeMount(name=mount.name, mountPath=mount.mountPath) for mount in app.volumeMounts
        ] or None,
        resources=ResourceRequirements(limits=app.resources.limits.model_dump()),
        readinessProbe=probe,
        livenessProbe=probe,
    )


def _volumes(app: App) -> Optional[List[Volume]]:
    names = []
    for mount in app.volumeMounts:
        if mount.name not in names:
            names.append(mount.name)
    return [Volume(name=name, persistentVolumeClaim=ClaimSource(claimName=name)) for name in names] or None


def to_manifests(app: App) -> AppManifests:
    labels = AppLabel(app=app.name)

    deployment = Deployment(
        metadata=Metadata(name=app.name),
        spec=DeploymentSpec(
            selector=Selector(matchLabels=labels),
            template=PodTemplate(
                metadata=TemplateMetadata(labels=labels),
                spec=PodSpec(containers=[_container(app)], volumes=_volumes(app)),
            ),
        ),
    )

    service = Service(
        metadata=Metadata(name=app.name),
        spec=ServiceSpec(
            type="ClusterIP",
            selector=labels,
            ports=[
                ServicePort(name=port.name, port=port.containerPort, protocol="TCP", targetPort=port.name)
                for port in app.ports
            ],
        ),
    )

    ingress = None
    if app.ingress is not None:
        ingress = Ingress(
            metadata=IngressMetadata(name=app.name),
            spec=IngressSpec(rules=[
                IngressRule(http=HTTPIngressRuleValue(paths=[
                    HTTPIngressPath(
                        path="/",
                        backend=IngressBackend(service=IngressServiceBackend(
                            name=app.name,
                            port=ServiceBackendPort(name=app.ingress.port.name),
                        )),
                    ),
                ])),
            ]),
        )

    manifests = AppManifests(
        namespace=Namespace(metadata=NamespaceMetadata(name=app.name)),
        deployment=deployment,
        service=service,
        ingress=ingress,
        additionalResources=app.additionalResources,
    )
    manifests.kustomization = kustomization_for(
        app.name, [manifest_filename(doc) for doc in manifests.documents()]
    )
    return manifests


def _ingress_port_name(ingress: Ingress, service: Service) -> str:
    rules = ingress.spec.rules
    if not rules or not rules[0].http.paths:
        raise ValidationError([Issue(["ingress", "spec", "rules"], "Ingress must define at least one path")])
    backend_port = rules[0].http.paths[0].backend.service.port.name

    # The ingress points at a service port; the app refers to the container port behind it
    for port in service.spec.ports:
        if port.name == backend_port and isinstance(port.targetPort, str):
            return port.targetPort
    return backend_port


def from_manifests(manifests: Union[AppManifests, Dict[str, Any]]) -> App:
    if not isinstance(manifests, AppManifests):
        try:
            manifests = AppManifests.model_validate(manifests)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e)

    deployment = manifests.deployment
    containers = deployment.spec.template.spec.containers
    if not containers:
        raise ValidationError([Issue(
            ["deployment", "spec", "template", "spec", "containers"],
            "Deployment must define a container",
        )])
    container = containers[0]

    data: Dict[str, Any] = {
        "name": deployment.metadata.name,
        "image": container.image,
        "ports": [{"name": port.name, "containerPort": port.containerPort} for port in container.ports],
        "envVariables": [env.model_dump() for env in container.env or []],
        "volumeMounts": [
            {"mountPath": mount.mountPath, "name": mount.name} for mount in container.volumeMounts or []
        ],
        "resources": container.resources.model_dump(),
        "additionalResources": [resource.model_dump(exclude_none=True) for resource in manifests.additionalResources],
    }

    probe = container.livenessProbe or container.readinessProbe
    if probe is not None:
        data["health"] = {"check": {"type": "httpGet", "path": probe.httpGet.path, "port": probe.httpGet.port}}

    if manifests.ingress is not None:
        data["ingress"] = {"port": {"name": _ingress_port_name(manifests.ingress, manifests.service)}}

    return validate_app(data)
