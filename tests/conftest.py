"""Pytest configuration and fixtures."""

import copy
from pathlib import Path
from unittest.mock import MagicMock

import git
import pytest
import yaml

from applications import ApplicationService
from model import (
    AppRuntime, DeploymentSpecState, DeploymentState, DeploymentStatusState, Pod, PodStatus,
)
from publisher import GitPublisher
from store import ManifestStore

AUTHOR = git.Actor("Test User", "test@example.com")

APP_DATA = {
    "name": "test-app",
    "image": "nginx:latest",
    "ports": [{"name": "http", "containerPort": 80}],
    "envVariables": [{"name": "DEBUG", "value": "true"}],
    "volumeMounts": [],
    "resources": {"limits": {"cpu": "500m", "memory": "512Mi"}},
    "ingress": {"port": {"name": "http"}},
    "health": {"check": {"type": "httpGet", "path": "/", "port": "http"}},
    "additionalResources": [],
}

GOTK_SYNC = """\
apiVersion: source.toolkit.fluxcd.io/v1
kind: GitRepository
metadata:
  name: flux-system
  namespace: flux-system
spec:
  url: https://github.com/example/cluster
---
apiVersion: kustomize.toolkit.fluxcd.io/v1
kind: Kustomization
metadata:
  name: flux-system
  namespace: flux-system
spec:
  postBuild:
    substitute:
      DOMAIN: home.example.com
"""


@pytest.fixture
def app_data():
    """A valid app document, safe to mutate."""
    return copy.deepcopy(APP_DATA)


@pytest.fixture
def full_app_data(app_data):
    """App document using secrets, volumes and both additional resource kinds."""
    app_data["ports"].append({"name": "metrics", "containerPort": 9090})
    app_data["envVariables"].append(
        {"name": "CLIENT_ID", "valueFrom": {"secretKeyRef": {"name": "sso", "key": "client-id"}}}
    )
    app_data["volumeMounts"] = [{"mountPath": "/data", "name": "data"}]
    app_data["additionalResources"] = [
        {
            "apiVersion": "tesselar.io/v1",
            "kind": "AuthClient",
            "metadata": {"name": "sso"},
            "spec": {"redirectUris": ["https://test-app.home.example.com/callback"]},
        },
        {
            "apiVersion": "v1",
            "kind": "PersistentVolumeClaim",
            "metadata": {"name": "data"},
            "spec": {
                "accessModes": ["ReadWriteOnce"],
                "storageClassName": "longhorn",
                "resources": {"requests": {"storage": "1Gi"}},
            },
        },
    ]
    return app_data


@pytest.fixture
def remote_repo(tmp_path: Path) -> git.Repo:
    return git.Repo.init(tmp_path / "remote.git", bare=True)


@pytest.fixture
def project_dir(tmp_path: Path, remote_repo: git.Repo) -> Path:
    """A git working tree with one pushed commit and a Flux sync file."""
    project = tmp_path / "project"
    repo = git.Repo.init(project)
    repo.create_remote("origin", remote_repo.working_dir)

    sync_file = project / "clusters" / "my-cluster" / "flux-system" / "gotk-sync.yaml"
    sync_file.parent.mkdir(parents=True)
    sync_file.write_text(GOTK_SYNC)
    repo.git.add("--all")
    repo.index.commit("Initial commit", author=AUTHOR, committer=AUTHOR)
    repo.git.push("origin", "HEAD:refs/heads/main")
    return project


@pytest.fixture
def store(project_dir: Path) -> ManifestStore:
    return ManifestStore(project_dir / "clusters" / "my-cluster")


@pytest.fixture
def publisher(project_dir: Path) -> GitPublisher:
    return GitPublisher(project_dir, "Test User", "test@example.com", "test-token")


def running_runtime(replicas: int = 1) -> AppRuntime:
    return AppRuntime(
        deployment=DeploymentState(
            spec=DeploymentSpecState(replicas=replicas),
            status=DeploymentStatusState(replicas=replicas, readyReplicas=replicas, updatedReplicas=replicas),
        ),
        pods=[Pod(name=f"pod-{i}", status=PodStatus(phase="Running")) for i in range(replicas)],
        status="Running",
    )


@pytest.fixture
def kube() -> MagicMock:
    kube = MagicMock()
    kube.get_app_runtime.return_value = running_runtime()
    return kube


@pytest.fixture
def service(store, publisher, kube) -> ApplicationService:
    return ApplicationService(store, publisher, kube)


def read_yaml(path: Path):
    return yaml.safe_load(path.read_text())
