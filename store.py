import logging
import shutil
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional, Type, TypeVar

import yaml
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from adapter import KUSTOMIZATION_FILE, AppManifests, Manifest, as_dict, kustomization_for, manifest_filename
from errors import Issue, NotFoundError, ParseError, ValidationError
from manifest_model import Deployment, FluxKustomization, Ingress, Kustomization, Namespace, Service
from model import AuthClient, PersistentVolumeClaim

T = TypeVar("T", bound=BaseModel)

REQUIRED_FILES = ("namespace.yaml", "deployment.yaml", "service.yaml")
ADDITIONAL_RESOURCE_SCHEMAS = {
    ".authclient.yaml": AuthClient,
    ".persistentvolumeclaim.yaml": PersistentVolumeClaim,
}


class LoadedFile(NamedTuple):
    data: Any
    raw: Any


class Snapshot:
    """Contents of the files a write replaced, so the write can be undone."""

    def __init__(self, app_dir: Path, created_dir: bool):
        self.app_dir = app_dir
        self.created_dir = created_dir
        self.previous: Dict[Path, Optional[bytes]] = {}


def dump_yaml(doc: Dict[str, Any]) -> str:
    return yaml.safe_dump(doc, sort_keys=False, default_flow_style=False)


class ManifestStore:
    def __init__(self, cluster_dir: Path):
        self.apps_dir = Path(cluster_dir) / "my-applications"
        self.sync_file = Path(cluster_dir) / "flux-system" / "gotk-sync.yaml"

    def app_dir(self, app_name: str) -> Path:
        return self.apps_dir / app_name

    def exists(self, app_name: str) -> bool:
        return self.app_dir(app_name).is_dir()

    def list_app_names(self) -> List[str]:
        if not self.apps_dir.is_dir():
            logging.warning(f"Applications directory {self.apps_dir} does not exist.")
            return []
        return sorted(entry.name for entry in self.apps_dir.iterdir() if entry.is_dir())

    def write_resources(self, app_name: str, resources: List[Manifest]) -> Snapshot:
        """Write one YAML file per resource plus a kustomization.yaml listing them."""
        files = {}
        for resource in resources:
            doc = as_dict(resource)
            files[manifest_filename(doc)] = dump_yaml(doc)

        kustomization = kustomization_for(app_name, list(files))
        files[KUSTOMIZATION_FILE] = dump_yaml(as_dict(kustomization))

        app_dir = self.app_dir(app_name)
        snapshot = Snapshot(app_dir, created_dir=not app_dir.exists())
        app_dir.mkdir(parents=True, exist_ok=True)

        for filename, text in files.items():
            path = app_dir / filename
            snapshot.previous[path] = path.read_bytes() if path.exists() else None
            path.write_text(text, encoding="utf-8")

        for path in sorted(app_dir.glob("*.yaml")):
            if path.name not in files:
                snapshot.previous[path] = path.read_bytes()
                path.unlink()
                logging.info(f"Removed stale manifest {path.name} of app {app_name}.")

        logging.info(f"Wrote {len(files)} manifests for app {app_name}.")
        return snapshot

    def restore(self, snapshot: Snapshot):
        for path, content in snapshot.previous.items():
            if content is None:
                path.unlink(missing_ok=True)
            else:
                path.write_bytes(content)
        if snapshot.created_dir:
            shutil.rmtree(snapshot.app_dir, ignore_errors=True)
        logging.info(f"Restored {len(snapshot.previous)} files in {snapshot.app_dir}.")

    def get_file(self, path: Path, schema: Type[T]) -> LoadedFile:
        """Read a YAML file and validate it against ``schema``.

        Multi-document files yield the first document the schema accepts.
        """
        try:
            text = Path(path).read_text(encoding="utf-8")
        except FileNotFoundError:
            raise NotFoundError(f"Manifest {path} not found")

        try:
            documents = [doc for doc in yaml.safe_load_all(text) if doc is not None]
        except yaml.YAMLError as e:
            raise ParseError(str(path), str(e))

        if not documents:
            raise ValidationError([Issue([], "File contains no documents")], source=str(path))

        if len(documents) == 1:
            raw = documents[0]
            try:
                return LoadedFile(schema.model_validate(raw), raw)
            except PydanticValidationError as e:
                raise ValidationError.from_pydantic(e, source=str(path))

        for raw in documents:
            try:
                return LoadedFile(schema.model_validate(raw), raw)
            except PydanticValidationError:
                continue
        raise ValidationError([Issue([], f"No {schema.__name__} document found")], source=str(path))

    def read_manifests(self, app_name: str) -> AppManifests:
        app_dir = self.app_dir(app_name)
        if not app_dir.is_dir():
            raise NotFoundError(f"App {app_name} not found")

        kustomization = self.get_file(app_dir / KUSTOMIZATION_FILE, Kustomization).data
        listed = kustomization.resources

        additional = []
        for filename in listed:
            if filename in REQUIRED_FILES or filename in ("ingress.yaml", KUSTOMIZATION_FILE):
                continue
            schema = next(
                (schema for suffix, schema in ADDITIONAL_RESOURCE_SCHEMAS.items() if filename.endswith(suffix)),
                None,
            )
            if schema is None:
                logging.debug(f"Skipping unmanaged manifest {filename} of app {app_name}.")
                continue
            additional.append(self.get_file(app_dir / filename, schema).data)

        ingress = None
        if "ingress.yaml" in listed:
            ingress = self.get_file(app_dir / "ingress.yaml", Ingress).data

        return AppManifests(
            namespace=self.get_file(app_dir / "namespace.yaml", Namespace).data,
            deployment=self.get_file(app_dir / "deployment.yaml", Deployment).data,
            service=self.get_file(app_dir / "service.yaml", Service).data,
            ingress=ingress,
            kustomization=kustomization,
            additionalResources=additional,
        )

    def read_deployment(self, app_name: str) -> LoadedFile:
        return self.get_file(self.app_dir(app_name) / "deployment.yaml", Deployment)

    def cluster_domain(self) -> str:
        sync = self.get_file(self.sync_file, FluxKustomization).data
        return sync.spec.postBuild.substitute.DOMAIN
