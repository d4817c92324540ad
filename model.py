import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from errors import Issue, ValidationError
from units import CPU_UNITS, MEMORY_UNITS, RESOURCE_PRESETS, normalize_quantity

AUTH_CLIENT_API_VERSION = "tesselar.io/v1"
AUTH_CLIENT_KEYS = ("client-id", "client-secret")
STORAGE_CLASS = "longhorn"

PORT_NAME_PATTERN = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"

APP_STATUS_RUNNING = "Running"
APP_STATUS_PENDING = "Pending"
APP_STATUS_UNKNOWN = "Unknown"


def _check_url(value: str, label: str) -> str:
    if not value:
        raise ValueError(f"{label} is required")
    parsed = urlparse(value)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"{label} must be a valid URL")
    return value


class ResourceMetadata(BaseModel):
    name: str = Field(min_length=1)


class AuthClientSpec(BaseModel):
    redirectUris: List[str] = Field(min_length=1)
    postLogoutRedirectUris: Optional[List[str]] = None

    @field_validator("redirectUris")
    @classmethod
    def check_redirect_uris(cls, uris):
        return [_check_url(uri, "Redirect URI") for uri in uris]

    @field_validator("postLogoutRedirectUris")
    @classmethod
    def check_post_logout_uris(cls, uris):
        if uris is None:
            return uris
        if not uris:
            raise ValueError("At least one post logout redirect URI is required")
        return [_check_url(uri, "Post logout redirect URI") for uri in uris]


class AuthClient(BaseModel):
    """OAuth client registered with the identity provider.

    Applying it makes the cluster create a Secret of the same name holding
    ``client-id`` and ``client-secret``, which env vars can reference.
    """
    apiVersion: Literal["tesselar.io/v1"] = AUTH_CLIENT_API_VERSION
    kind: Literal["AuthClient"] = "AuthClient"
    metadata: ResourceMetadata
    spec: AuthClientSpec


class StorageRequest(BaseModel):
    storage: str

    @field_validator("storage")
    @classmethod
    def check_storage(cls, value):
        return normalize_quantity(value, MEMORY_UNITS, "Storage", '"512Mi", "1Gi", or "512Ki"')


class StorageResources(BaseModel):
    requests: StorageRequest


class PersistentVolumeClaimSpec(BaseModel):
    accessModes: List[Annotated[str, Field(min_length=1)]] = Field(min_length=1)
    storageClassName: Literal["longhorn"] = STORAGE_CLASS
    resources: StorageResources


class PersistentVolumeClaim(BaseModel):
    apiVersion: Literal["v1"] = "v1"
    kind: Literal["PersistentVolumeClaim"] = "PersistentVolumeClaim"
    metadata: ResourceMetadata
    spec: PersistentVolumeClaimSpec


AdditionalResource = Annotated[Union[AuthClient, PersistentVolumeClaim], Field(discriminator="kind")]


class Port(BaseModel):
    name: str = Field(min_length=1)
    containerPort: int = Field(ge=1, le=65535)

    @field_validator("name")
    @classmethod
    def check_name(cls, value):
        if not re.match(PORT_NAME_PATTERN, value):
            raise ValueError("Port name must be lowercase alphanumeric with hyphens")
        return value


class EnvLiteral(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    value: str = Field(min_length=1)


class SecretKeyRef(BaseModel):
    name: str = Field(min_length=1)
    key: str = Field(min_length=1)


class EnvSource(BaseModel):
    secretKeyRef: SecretKeyRef


class EnvSecretRef(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    valueFrom: EnvSource


EnvVariable = Union[EnvLiteral, EnvSecretRef]


class VolumeMount(BaseModel):
    mountPath: str = Field(min_length=1)
    name: str = Field(min_length=1)


class Limits(BaseModel):
    cpu: str
    memory: str

    @field_validator("cpu")
    @classmethod
    def check_cpu(cls, value):
        return normalize_quantity(value, CPU_UNITS, "CPU", '"1000m" for millicores or "1" for cores')

    @field_validator("memory")
    @classmethod
    def check_memory(cls, value):
        return normalize_quantity(value, MEMORY_UNITS, "Memory", '"512Mi", "1Gi", or "512Ki"')


class Resources(BaseModel):
    limits: Limits


class PortRef(BaseModel):
    name: str = Field(min_length=1)


class IngressBinding(BaseModel):
    port: PortRef


class HealthCheck(BaseModel):
    type: Literal["httpGet"] = "httpGet"
    path: str = Field(min_length=1)
    port: str = Field(min_length=1)


class Health(BaseModel):
    check: HealthCheck


class App(BaseModel):
    name: str = Field(min_length=1)
    image: str = Field(min_length=1)
    ports: List[Port] = Field(min_length=1)
    envVariables: List[EnvVariable] = []
    volumeMounts: List[VolumeMount] = []
    resources: Resources
    ingress: Optional[IngressBinding] = None
    health: Optional[Health] = None
    additionalResources: List[AdditionalResource] = []

    def dump(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


def resource_references(app: App):
    """Secrets that env vars may point at, keyed by name with their keys."""
    return {
        resource.metadata.name: AUTH_CLIENT_KEYS
        for resource in app.additionalResources
        if isinstance(resource, AuthClient)
    }


def reference_issues(app: App) -> List[Issue]:
    issues = []

    names, numbers = set(), set()
    for index, port in enumerate(app.ports):
        if port.name in names:
            issues.append(Issue(["ports", index, "name"], "Port name must be unique"))
        names.add(port.name)
        if port.containerPort in numbers:
            issues.append(Issue(["ports", index, "containerPort"], "Port number must be unique"))
        numbers.add(port.containerPort)

    if app.ingress is not None and app.ingress.port.name not in names:
        issues.append(Issue(
            ["ingress", "port", "name"],
            "Ingress port name must reference a port in the defined ports list",
        ))

    if app.health is not None and app.health.check.port not in names:
        issues.append(Issue(
            ["health", "check", "port"],
            "Health check port must reference a port in the defined ports list",
        ))

    secrets = resource_references(app)
    for index, env in enumerate(app.envVariables):
        if not isinstance(env, EnvSecretRef):
            continue
        ref = env.valueFrom.secretKeyRef
        path = ["envVariables", index, "valueFrom", "secretKeyRef"]
        if ref.name not in secrets:
            issues.append(Issue(path + ["name"], "Secret reference must match an existing resource"))
        elif ref.key not in secrets[ref.name]:
            issues.append(Issue(path + ["key"], f"Secret key must be one of {', '.join(secrets[ref.name])}"))

    claims = {
        resource.metadata.name
        for resource in app.additionalResources
        if isinstance(resource, PersistentVolumeClaim)
    }
    for index, mount in enumerate(app.volumeMounts):
        if mount.name not in claims:
            issues.append(Issue(["volumeMounts", index, "name"], "Volume mount must reference a persistent volume"))

    return issues


def validate_app(data: Any) -> App:
    """Parse untyped data (from YAML or JSON) into an App.

    Raises ValidationError listing every structural and cross-field problem.
    """
    if isinstance(data, App):
        data = data.dump()
    try:
        app = App.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e)
    issues = reference_issues(app)
    if issues:
        raise ValidationError(issues)
    return app


def default_app_data(name: str) -> Dict[str, Any]:
    """Starter app document; the image is left blank for the user to fill in."""
    return {
        "name": name,
        "image": "",
        "ports": [{"name": "http", "containerPort": 80}],
        "envVariables": [],
        "health": {"check": {"type": "httpGet", "path": "/", "port": "http"}},
        "volumeMounts": [],
        "resources": {"limits": dict(RESOURCE_PRESETS["small"])},
        "ingress": {"port": {"name": "http"}},
        "additionalResources": [],
    }


def app_json_schema():
    schemas = {"App.schema.json": App.model_json_schema()}
    for model in (AuthClient, PersistentVolumeClaim):
        schemas[f"{model.__name__}.schema.json"] = TypeAdapter(model).json_schema()
    return schemas


class Condition(BaseModel):
    type: Optional[str] = None
    status: Optional[str] = None
    lastProbeTime: Optional[str] = None
    lastTransitionTime: Optional[str] = None
    reason: Optional[str] = None
    message: Optional[str] = None


class PodStatus(BaseModel):
    phase: Optional[str] = None
    startTime: Optional[str] = None
    message: Optional[str] = None
    reason: Optional[str] = None
    conditions: List[Condition] = []


class Pod(BaseModel):
    name: Optional[str] = None
    creationTimestamp: Optional[str] = None
    nodeName: Optional[str] = None
    status: PodStatus


class DeploymentSpecState(BaseModel):
    replicas: Optional[int] = None


class DeploymentStatusState(BaseModel):
    availableReplicas: Optional[int] = None
    replicas: Optional[int] = None
    readyReplicas: Optional[int] = None
    updatedReplicas: Optional[int] = None
    conditions: List[Condition] = []


class DeploymentState(BaseModel):
    spec: DeploymentSpecState
    status: DeploymentStatusState


class AppRuntime(BaseModel):
    deployment: DeploymentState
    pods: List[Pod]
    status: Literal["Running", "Pending", "Unknown"]


class AppView(BaseModel):
    spec: App
    pods: List[Pod]
    deployment: DeploymentState
    status: str
    link: Optional[str] = None
    iconUrl: str
