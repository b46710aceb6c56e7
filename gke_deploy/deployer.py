"""Library for preparing configuration files and deploying them to a cluster.

A deployment happens in two phases:

- `Deployer.prepare` expands configuration files into their deployable form:
  it creates suggested objects implied by the options (Deployment,
  HorizontalPodAutoscaler, Service, Namespace and Application), adds the
  standard labels, pins the image to a digest and sets namespaces. Both the
  suggested and the expanded configuration files are saved.
- `Deployer.apply` applies expanded configuration files to a cluster and waits
  for the deployed objects to be ready, then prints a summary.

```python
from gke_deploy.cluster import Kubectl
from gke_deploy.config import ApplyOptions
from gke_deploy.deployer import Deployer
from gke_deploy.image import OrasImageResolver

deployer = Deployer(Kubectl(), OrasImageResolver())
await deployer.apply(ApplyOptions(config="output/expanded", namespace="prod"))
```
"""

import logging
import sys
from typing import TextIO

from . import resource
from .application import create_application_object, set_application_links
from .clock import Clock, SystemClock
from .cluster import ClusterGateway, deployed_object_exists, get_deployed_object
from .config import ApplyOptions, PrepareOptions
from .crd import ensure_application_crd
from .diagnostics import Diagnostics
from .exceptions import (
    ClusterError,
    CommandException,
    DeployTimeoutError,
    ParseError,
    RegistryException,
    ValidationError,
)
from .format import format_columns
from .gcloud import CloudContext, get_account, get_project, iam_binding_hint
from .image import ImageReference, ImageResolver, parse_reference
from .ready import is_ready
from .resource import (
    APPLICATION_KIND,
    DEFAULT_NAMESPACE,
    NAMESPACE_KIND,
    SERVICE_KIND,
    Objects,
)

__all__ = [
    "Deployer",
    "APP_NAME_LABEL",
    "APP_VERSION_LABEL",
    "MANAGED_BY_LABEL",
    "MANAGED_BY_VALUE",
]

_LOGGER = logging.getLogger(__name__)

APP_NAME_LABEL = "app.kubernetes.io/name"
APP_VERSION_LABEL = "app.kubernetes.io/version"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "gcp-cloud-build-deploy"

RESERVED_LABELS = {
    APP_NAME_LABEL: f"{APP_NAME_LABEL} label must be set using the --app|-a flag",
    APP_VERSION_LABEL: f"{APP_VERSION_LABEL} label must be set using the --version|-v flag",
    MANAGED_BY_LABEL: f"{MANAGED_BY_LABEL} label cannot be explicitly set",
}

IMAGE_LINE_COMMENT = "Will be set to actual image before deployment"

POLL_INTERVAL = 5.0
STATUS_INTERVAL = 30.0

SEPARATOR = "#" * 80
CONSOLE_URL = "https://console.cloud.google.com/kubernetes"
CONSOLE_LINKS = [
    ("Workloads:", "workload"),
    ("Services & Ingress:", "discovery"),
    ("Applications:", "applications"),
    ("Configuration:", "config"),
    ("Storage:", "storage"),
]


def console_links(project: str) -> str:
    """Return a table of console links for the clusters in a project."""
    names = [name for name, _ in CONSOLE_LINKS]
    urls = [f"{CONSOLE_URL}/{page}?project={project}" for _, page in CONSOLE_LINKS]
    lines = format_columns([names[0]], [[name] for name in names[1:]], urls)
    return "".join(f"{line}\n" for line in lines)


class Deployer:
    """Prepares and applies deployments using the provided collaborators."""

    def __init__(
        self,
        gateway: ClusterGateway,
        resolver: ImageResolver,
        context: CloudContext | None = None,
        server_dry_run: bool = False,
        clock: Clock | None = None,
        diagnostics: Diagnostics | None = None,
        output: TextIO = sys.stdout,
    ) -> None:
        """Initialize Deployer.

        The cloud context is optional; without it the cluster of the current
        kubeconfig context is used and no project is looked up.
        """
        self._gateway = gateway
        self._resolver = resolver
        self._context = context
        self._server_dry_run = server_dry_run
        self._clock = clock or SystemClock()
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self._output = output

    def _print(self, message: str = "") -> None:
        print(message, file=self._output)

    async def prepare(self, options: PrepareOptions) -> Objects:
        """Expand configuration files and save the suggested and expanded sets.

        Returns the expanded objects.
        """
        _validate_prepare(options)
        _LOGGER.info("Preparing deployment")
        ref: ImageReference | None = None
        if options.image:
            ref = parse_reference(options.image)

        objs: Objects = {}
        if options.config:
            objs = await resource.parse_configs(options.config, options.recursive)
            _LOGGER.info(
                "Configuration files to be used: %s", resource.objects_str(objs)
            )
        else:
            _LOGGER.info("Starting with no configuration files")
        if not objs and ref is None:
            raise ParseError(
                f"No objects found in configuration files {options.config!r}"
            )

        line_comments: dict[str, str] = {}
        if ref is not None:
            if not objs:
                self._add_suggested_workload(objs, ref)
            # Drop any tag or digest so the image line is the same everywhere
            resource.update_matching_container_image(
                objs, ref.name, ref.name, self.diagnostics
            )
            line_comments[f"image: {ref.name}"] = IMAGE_LINE_COMMENT

        self._add_suggested_objects(objs, options)

        if options.app_name:
            for obj in objs.values():
                if obj.kind != NAMESPACE_KIND:
                    resource.add_label(
                        obj, APP_NAME_LABEL, options.app_name, False, self.diagnostics
                    )

        _LOGGER.info(
            "Saving suggested configuration files to %r", options.suggested_output
        )
        await resource.save_as_configs(objs, options.suggested_output, line_comments)

        _LOGGER.info("Expanding configuration files")
        if ref is not None:
            try:
                digest = await self._resolver.resolve_digest(ref)
            except RegistryException as err:
                raise RegistryException(f"Failed to get image digest: {err}") from err
            image_with_digest = ref.with_digest(digest)
            _LOGGER.info("Got digest for image: %s --> %s", ref, image_with_digest)
            resource.update_matching_container_image(
                objs, ref.name, image_with_digest, self.diagnostics
            )

        if options.namespace:
            resource.update_namespace(objs, options.namespace, self.diagnostics)
            resource.add_namespace_if_missing(objs, options.namespace)
        else:
            resource.add_namespace_if_missing(objs, DEFAULT_NAMESPACE)

        for obj in objs.values():
            if obj.kind != NAMESPACE_KIND:
                if options.app_version:
                    resource.add_label(
                        obj,
                        APP_VERSION_LABEL,
                        options.app_version,
                        False,
                        self.diagnostics,
                    )
                resource.add_label(
                    obj, MANAGED_BY_LABEL, MANAGED_BY_VALUE, True, self.diagnostics
                )
            for key, value in options.labels.items():
                resource.add_label(obj, key, value, True, self.diagnostics)
            for key, value in options.annotations.items():
                resource.add_annotation(obj, key, value, self.diagnostics)
            if options.links and obj.kind == APPLICATION_KIND:
                set_application_links(obj, options.links)

        _LOGGER.info(
            "Saving expanded configuration files to %r", options.expanded_output
        )
        await resource.save_as_configs(objs, options.expanded_output)
        _LOGGER.info("Finished preparing deployment")
        return objs

    def _add_suggested_workload(self, objs: Objects, ref: ImageReference) -> None:
        """Add a Deployment and HorizontalPodAutoscaler running the image."""
        name = ref.short_name
        _LOGGER.info("Creating suggested Deployment configuration file %r", name)
        resource.add_object(
            objs, resource.create_deployment_object(name, name, ref.name)
        )
        hpa_name = f"{name}-hpa"
        _LOGGER.info(
            "Creating suggested HorizontalPodAutoscaler configuration file %r",
            hpa_name,
        )
        resource.add_object(objs, resource.create_hpa_object(hpa_name, name))

    def _add_suggested_objects(self, objs: Objects, options: PrepareOptions) -> None:
        """Add the Service, Application and Namespace implied by the options."""
        app_name = options.app_name
        if app_name and options.expose_port > 0:
            service = f"{app_name}-service"
            if resource.has_object(objs, SERVICE_KIND, service):
                self.diagnostics.warning(
                    f"Service {service!r} already exists in provided configuration "
                    "files. Not generating new Service."
                )
            else:
                _LOGGER.info("Creating suggested Service configuration file %r", service)
                resource.add_object(
                    objs,
                    resource.create_service_object(
                        service, APP_NAME_LABEL, app_name, options.expose_port
                    ),
                )

        if options.create_application_cr:
            if resource.has_object(objs, APPLICATION_KIND, app_name):
                self.diagnostics.warning(
                    f"Application {app_name!r} already exists in provided "
                    "configuration files. Not generating new Application."
                )
            else:
                _LOGGER.info(
                    "Creating suggested Application configuration file %r", app_name
                )
                resource.add_object(
                    objs,
                    create_application_object(
                        app_name,
                        APP_NAME_LABEL,
                        app_name,
                        app_name,
                        options.app_version,
                        objs,
                    ),
                )

        namespace = options.namespace
        if (
            namespace
            and namespace != DEFAULT_NAMESPACE
            and not resource.has_object(objs, NAMESPACE_KIND, namespace)
        ):
            _LOGGER.info("Creating suggested Namespace configuration file %r", namespace)
            resource.add_object(objs, resource.create_namespace_object(namespace))

    async def apply(self, options: ApplyOptions) -> Objects:
        """Apply configuration files and wait for the objects to be ready.

        Returns the last fetched copy of every deployed object. If the objects
        are not ready before the timeout, the summary is still printed before
        `DeployTimeoutError` is raised.
        """
        if bool(options.cluster_name) != bool(options.cluster_location):
            raise ValidationError(
                "Cluster name and cluster location either must both be provided, "
                "or neither should be provided"
            )
        _LOGGER.info("Applying deployment")

        project = options.cluster_project
        if not project and self._context is not None:
            project = await get_project(self._context)
        if options.cluster_name and self._context is not None:
            await self._authorize(
                self._context, options.cluster_name, options.cluster_location, project
            )

        objs = await resource.parse_configs(options.config, options.recursive)
        if not objs:
            raise ParseError(
                f"No objects found in configuration files {options.config!r}"
            )
        _LOGGER.info("Configuration files to be used: %s", resource.objects_str(objs))

        if dups := resource.find_duplicates(objs):
            self.diagnostics.warning(
                "Deploying multiple objects that share the same kind and name. "
                f"Duplicate objects will be overridden: {', '.join(dups)}"
            )

        _LOGGER.info("Applying configuration files to cluster")
        await self._apply_namespaces(objs)
        objs = {
            filename: obj
            for filename, obj in objs.items()
            if obj.kind != NAMESPACE_KIND
        }
        await self._apply_objects(objs, options.namespace)

        if self._server_dry_run:
            _LOGGER.info("Finished applying deployment with server dry run")
            return objs

        deployed, pending = await self._wait_for_ready(
            objs, options.namespace, options.wait_timeout
        )
        _LOGGER.info("Finished applying deployment")

        self._print(SEPARATOR)
        self._print("> Deployed Objects")
        self._print()
        self._print(resource.deploy_summary(deployed))
        self._print(SEPARATOR)
        if project:
            self._print("> GKE")
            self._print()
            self._print(console_links(project))

        if pending:
            raise DeployTimeoutError(
                options.wait_timeout, [str(obj) for obj in pending.values()]
            )
        return deployed

    async def _authorize(
        self, context: CloudContext, name: str, location: str, project: str
    ) -> None:
        """Get access to the cluster, printing a permission hint on failure."""
        _LOGGER.info("Getting access to cluster %r in %r", name, location)
        try:
            await context.authorize_cluster_access(name, location, project)
        except CommandException as err:
            try:
                account = await get_account(context)
            except CommandException as account_err:
                _LOGGER.info(
                    "Failed to get GCP account. Swallowing error: %s", account_err
                )
            else:
                self._print(
                    "> You may need to grant permission to access to the cluster:"
                )
                self._print()
                self._print(f"   {iam_binding_hint(project, account)}")
                self._print()
            raise ClusterError(f"Failed to get access to cluster: {err}") from err

    async def _apply_namespaces(self, objs: Objects) -> None:
        """Apply Namespace objects that don't already exist on the cluster."""
        for obj in objs.values():
            if obj.kind != NAMESPACE_KIND:
                continue
            try:
                exists = await deployed_object_exists(
                    self._gateway, NAMESPACE_KIND, obj.name
                )
                if exists:
                    _LOGGER.info("Namespace %r already exists on cluster", obj.name)
                    continue
                await self._gateway.apply_from_string(resource.encode(obj))
            except ClusterError as err:
                raise ClusterError(
                    f"Failed to apply Namespace configuration file with name "
                    f"{obj.name!r} to cluster: {err}"
                ) from err

    async def _apply_objects(self, objs: Objects, namespace: str) -> None:
        """Apply each object, installing the Application CRD when needed."""
        crd_ensured = False
        for obj in objs.values():
            if obj.kind == APPLICATION_KIND and not crd_ensured:
                await ensure_application_crd(self._gateway)
                crd_ensured = True
            try:
                await self._gateway.apply_from_string(resource.encode(obj), namespace)
            except ClusterError as err:
                raise ClusterError(
                    f"Failed to apply configuration file with {obj} to cluster: {err}"
                ) from err

    async def _wait_for_ready(
        self, objs: Objects, namespace: str, timeout: float
    ) -> tuple[Objects, Objects]:
        """Poll deployed objects until all are ready or the timeout passes.

        Returns the latest copy of each deployed object and the objects that
        were still not ready when the timeout passed.
        """
        _LOGGER.info(
            "Waiting for deployed objects to be ready with timeout of %gs", timeout
        )
        pending = dict(objs)
        deployed: Objects = {}
        start = self._clock.now()
        end = start + timeout
        next_status = start + STATUS_INTERVAL
        while pending:
            for filename, obj in list(pending.items()):
                try:
                    current = await get_deployed_object(
                        self._gateway, obj.kind, obj.name, namespace or obj.namespace
                    )
                except ClusterError as err:
                    raise ClusterError(
                        f"Failed to get configuration of deployed object {obj}: {err}"
                    ) from err
                deployed[filename] = current
                if is_ready(current):
                    _LOGGER.info(
                        "Deployed object %s is ready after %.1fs",
                        obj,
                        self._clock.now() - start,
                    )
                    del pending[filename]
            if not pending:
                break
            now = self._clock.now()
            if now > end:
                break
            if now > next_status:
                _LOGGER.info(
                    "Still waiting on %d object(s) to be ready: %s",
                    len(pending),
                    resource.objects_str(pending),
                )
                next_status += STATUS_INTERVAL
            await self._clock.sleep(POLL_INTERVAL)
        return deployed, pending


def _validate_prepare(options: PrepareOptions) -> None:
    """Reject options that can't produce a valid deployment."""
    for key in options.labels:
        if (message := RESERVED_LABELS.get(key)) is not None:
            raise ValidationError(message)
    if options.create_application_cr and not options.app_name:
        raise ValidationError(
            "An application name must be set to create an Application object"
        )
    if options.expose_port < 0:
        raise ValidationError("Exposed port cannot be negative")
    if not options.config and not options.image:
        raise ValidationError("A configuration file or an image must be provided")
