"""Tests for app spec validation."""

import pytest

from errors import Issue, ValidationError
from model import EnvSecretRef, app_json_schema, default_app_data, validate_app


def issue_paths(error: ValidationError):
    return [issue.format_path() for issue in error.issues]


def test_valid_app(app_data):
    app = validate_app(app_data)

    assert app.name == "test-app"
    assert app.ports[0].containerPort == 80
    assert app.resources.limits.cpu == "500m"


def test_full_app(full_app_data):
    app = validate_app(full_app_data)

    assert isinstance(app.envVariables[1], EnvSecretRef)
    assert [resource.kind for resource in app.additionalResources] == ["AuthClient", "PersistentVolumeClaim"]


@pytest.mark.parametrize("field", ["name", "image"])
def test_empty_required_string(app_data, field):
    app_data[field] = ""

    with pytest.raises(ValidationError) as exc_info:
        validate_app(app_data)

    assert issue_paths(exc_info.value) == [field]


def test_duplicate_port_name(app_data):
    app_data["ports"].append({"name": "http", "containerPort": 8080})
    app_data["ports"].append({"name": "admin", "containerPort": 9000})

    with pytest.raises(ValidationError) as exc_info:
        validate_app(app_data)

    assert exc_info.value.issues == [Issue(["ports", 1, "name"], "Port name must be unique")]


def test_duplicate_port_number(app_data):
    app_data["ports"].append({"name": "admin", "containerPort": 9000})
    app_data["ports"].append({"name": "alt", "containerPort": 80})

    with pytest.raises(ValidationError) as exc_info:
        validate_app(app_data)

    assert exc_info.value.issues == [Issue(["ports", 2, "containerPort"], "Port number must be unique")]


def test_port_name_format(app_data):
    app_data["ports"][0]["name"] = "HTTP_port"

    with pytest.raises(ValidationError) as exc_info:
        validate_app(app_data)

    assert "ports[0].name" in issue_paths(exc_info.value)


def test_at_least_one_port(app_data):
    app_data["ports"] = []
    app_data.pop("ingress")
    app_data.pop("health")

    with pytest.raises(ValidationError) as exc_info:
        validate_app(app_data)

    assert issue_paths(exc_info.value) == ["ports"]


def test_ingress_port_must_exist(app_data):
    app_data["ingress"]["port"]["name"] = "https"

    with pytest.raises(ValidationError) as exc_info:
        validate_app(app_data)

    assert issue_paths(exc_info.value) == ["ingress.port.name"]


def test_health_port_must_exist(app_data):
    app_data["health"]["check"]["port"] = "metrics"

    with pytest.raises(ValidationError) as exc_info:
        validate_app(app_data)

    assert issue_paths(exc_info.value) == ["health.check.port"]


def test_ingress_and_health_are_optional(app_data):
    del app_data["ingress"]
    del app_data["health"]

    app = validate_app(app_data)

    assert app.ingress is None
    assert app.health is None


def test_dangling_secret_reference(app_data):
    app_data["envVariables"].append(
        {"name": "CLIENT_ID", "valueFrom": {"secretKeyRef": {"name": "sso", "key": "client-id"}}}
    )

    with pytest.raises(ValidationError) as exc_info:
        validate_app(app_data)

    assert issue_paths(exc_info.value) == ["envVariables[1].valueFrom.secretKeyRef.name"]


def test_unknown_secret_key(full_app_data):
    full_app_data["envVariables"][1]["valueFrom"]["secretKeyRef"]["key"] = "password"

    with pytest.raises(ValidationError) as exc_info:
        validate_app(full_app_data)

    assert issue_paths(exc_info.value) == ["envVariables[1].valueFrom.secretKeyRef.key"]


def test_volume_mount_must_reference_claim(full_app_data):
    full_app_data["volumeMounts"].append({"mountPath": "/cache", "name": "cache"})

    with pytest.raises(ValidationError) as exc_info:
        validate_app(full_app_data)

    assert issue_paths(exc_info.value) == ["volumeMounts[1].name"]


@pytest.mark.parametrize("cpu, memory", [("500m", "512Mi"), ("1", "1Gi"), ("0.5", "256Mi"), ("2", "512Ki")])
def test_accepted_quantities(app_data, cpu, memory):
    app_data["resources"]["limits"] = {"cpu": cpu, "memory": memory}

    app = validate_app(app_data)

    assert app.resources.limits.cpu == cpu
    assert app.resources.limits.memory == memory


@pytest.mark.parametrize("limits, path", [
    ({"cpu": "500m", "memory": "5Xi"}, "resources.limits.memory"),
    ({"cpu": "1Gi", "memory": "512Mi"}, "resources.limits.cpu"),
    ({"cpu": "500m", "memory": "512"}, "resources.limits.memory"),
    ({"cpu": "0", "memory": "512Mi"}, "resources.limits.cpu"),
    ({"cpu": "fast", "memory": "512Mi"}, "resources.limits.cpu"),
])
def test_rejected_quantities(app_data, limits, path):
    app_data["resources"]["limits"] = limits

    with pytest.raises(ValidationError) as exc_info:
        validate_app(app_data)

    assert issue_paths(exc_info.value) == [path]


def test_quantity_is_normalized(app_data):
    app_data["resources"]["limits"] = {"cpu": "1.0", "memory": "1.50Gi"}

    app = validate_app(app_data)

    assert app.resources.limits.cpu == "1"
    assert app.resources.limits.memory == "1.5Gi"


def test_invalid_unit_message(app_data):
    app_data["resources"]["limits"]["memory"] = "5Xi"

    with pytest.raises(ValidationError) as exc_info:
        validate_app(app_data)

    assert exc_info.value.issues[0].message.startswith("Invalid memory unit")


def test_auth_client_redirect_uri_must_be_url(full_app_data):
    full_app_data["additionalResources"][0]["spec"]["redirectUris"] = ["not a url"]

    with pytest.raises(ValidationError) as exc_info:
        validate_app(full_app_data)

    assert issue_paths(exc_info.value) == ["additionalResources[0].spec.redirectUris"]


def test_claim_storage_class_is_fixed(full_app_data):
    full_app_data["additionalResources"][1]["spec"]["storageClassName"] = "local-path"

    with pytest.raises(ValidationError) as exc_info:
        validate_app(full_app_data)

    assert issue_paths(exc_info.value) == ["additionalResources[1].spec.storageClassName"]


def test_default_app_data_only_needs_an_image():
    data = default_app_data("whoami")
    data["image"] = "traefik/whoami"

    app = validate_app(data)

    assert app.name == "whoami"
    assert app.resources.limits.cpu == "500m"
    assert app.ingress.port.name == "http"


def test_json_schema_files():
    schemas = app_json_schema()

    assert set(schemas) == {"App.schema.json", "AuthClient.schema.json", "PersistentVolumeClaim.schema.json"}
    assert "ports" in schemas["App.schema.json"]["properties"]


def test_issue_path_format():
    assert Issue([], "bad").format_path() == "root"
    assert str(Issue(["ports", 1, "name"], "bad")) == "ports[1].name: bad"
