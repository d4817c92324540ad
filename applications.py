import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List

from git.exc import GitCommandError

from adapter import as_dict, from_manifests, merge_deployment, to_manifests
from errors import AlreadyExistsError, AppError, NotFoundError, UpstreamError
from kub import KubernetesClient
from model import App, AppView, validate_app
from publisher import GitPublisher
from settings import Settings
from store import ManifestStore

ICON_URL = "https://cdn.simpleicons.org/{name}"


def _resources(manifests, deployment: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [deployment if doc is manifests.deployment else as_dict(doc) for doc in manifests.documents()]


class ApplicationService:
    def __init__(self, store: ManifestStore, publisher: GitPublisher, kube: KubernetesClient,
                 flux_repository: str = "flux-system", flux_namespace: str = "flux-system"):
        self.store = store
        self.publisher = publisher
        self.kube = kube
        self.flux_repository = flux_repository
        self.flux_namespace = flux_namespace
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        # One working tree and index for every app
        self._git_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings):
        return cls(
            store=ManifestStore(settings.cluster_dir),
            publisher=GitPublisher(
                settings.project_dir,
                settings.user_name,
                settings.user_email,
                settings.github_token.get_secret_value(),
                remote=settings.git_remote,
                branch=settings.git_branch,
            ),
            kube=KubernetesClient.from_default_config(),
            flux_repository=settings.flux_repository,
            flux_namespace=settings.flux_namespace,
        )

    @asynccontextmanager
    async def _app_lock(self, name: str):
        """Hold the lock for one app; the entry is dropped once nobody holds or awaits it."""
        lock = self._locks.setdefault(name, asyncio.Lock())
        self._lock_users[name] = self._lock_users.get(name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[name] -= 1
            if not self._lock_users[name]:
                del self._lock_users[name]
                del self._locks[name]

    async def get_apps(self) -> List[AppView]:
        names = await asyncio.to_thread(self.store.list_app_names)
        results = await asyncio.gather(*(self.get_app(name) for name in names), return_exceptions=True)

        apps = []
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logging.error(f"Error fetching app {name}: {result}")
                continue
            apps.append(result)
        return apps

    async def get_app(self, name: str) -> AppView:
        manifests = await asyncio.to_thread(self.store.read_manifests, name)
        spec = from_manifests(manifests)
        runtime = await asyncio.to_thread(self.kube.get_app_runtime, name)

        link = None
        if spec.ingress is not None:
            domain = await asyncio.to_thread(self.store.cluster_domain)
            link = f"https://{spec.name}.{domain}"

        return AppView(
            spec=spec,
            pods=runtime.pods,
            deployment=runtime.deployment,
            status=runtime.status,
            link=link,
            iconUrl=ICON_URL.format(name=spec.name),
        )

    async def create_app(self, data: Any) -> App:
        app = validate_app(data)
        async with self._app_lock(app.name):
            if await asyncio.to_thread(self.store.exists, app.name):
                raise AlreadyExistsError(f"App {app.name} already exists")

            manifests = to_manifests(app)
            deployment = as_dict(manifests.deployment)
            deployment["spec"] = {"replicas": 1, **deployment["spec"]}

            resources = _resources(manifests, deployment)
            await self.commit_and_push_changes(app.name, resources, f"Create app {app.name}")
        logging.info(f"App {app.name} created.")
        return app

    async def update_app(self, data: Any) -> App:
        app = validate_app(data)
        async with self._app_lock(app.name):
            previous = await asyncio.to_thread(self.store.read_deployment, app.name)
            manifests = to_manifests(app)
            deployment = merge_deployment(previous.raw, as_dict(manifests.deployment))

            resources = _resources(manifests, deployment)
            await self.commit_and_push_changes(app.name, resources, f"Update app {app.name}")
        logging.info(f"App {app.name} updated.")
        return app

    async def restart_app(self, name: str):
        if not await asyncio.to_thread(self.store.exists, name):
            raise NotFoundError(f"App {name} not found")
        await asyncio.to_thread(self.kube.restart_deployment, name)

    async def commit_and_push_changes(self, app_name: str, resources: List[Dict[str, Any]], message: str):
        """Write, commit and push one app's manifests, undoing completed steps on failure.

        Runs under the git lock: the index, HEAD and the git object pipes are shared by all apps.
        """
        async with self._git_lock:
            snapshot = await asyncio.to_thread(self.store.write_resources, app_name, resources)

            try:
                sha = await asyncio.to_thread(self.publisher.commit, snapshot.app_dir, message)
            except AppError:
                await asyncio.to_thread(self.store.restore, snapshot)
                raise

            try:
                await asyncio.to_thread(self.publisher.push)
            except UpstreamError:
                try:
                    await asyncio.to_thread(self.publisher.undo_commit, sha)
                except GitCommandError as e:
                    logging.error(f"Exception when undoing commit {sha[:8]} of app {app_name}: {e}")
                finally:
                    await asyncio.to_thread(self.store.restore, snapshot)
                raise

        await asyncio.to_thread(self.kube.reconcile_git_repository, self.flux_repository, self.flux_namespace)
