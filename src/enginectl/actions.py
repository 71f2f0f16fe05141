"""
Lifecycle action dispatcher.

Each action calls the resource client and, on success, forces one
out-of-cycle reconciliation of the affected resource kind so the view
catches up without waiting for the next timer tick. Failures come back as
an unsuccessful ActionResult carrying the engine's message; nothing is
refreshed because state is presumed unchanged.

Destructive actions (delete, prune, compose down) are executed as asked:
confirming them is the presentation layer's job.
"""

import functools
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import yaml

from .backend import ResourceClient, has_dockerfile, parse_image_reference, DEFAULT_DOCKERFILE
from .config import AppConfig, config_manager
from .errors import EngineControlError, EngineError
from .model import (
    ActionResult, BuildOutcome, ComposeSession, BUILTIN_NETWORKS,
    CONTAINERS, IMAGES, NETWORKS, VOLUMES,
    COMPOSE_IDLE, COMPOSE_UP, COMPOSE_ERROR,
)
from .reconcile import Reconciler

logger = logging.getLogger(__name__)

SIMULATED_PREFIX = "[simulated]"


def dispatches(kind: Optional[str], description: str) -> Callable:
    """
    Decorator for dispatcher actions.

    Converts engine, transport, decode and input errors into a failed
    ActionResult and refreshes kind after a successful one.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(self: "ActionDispatcher", *args, **kwargs) -> ActionResult:
            try:
                result = func(self, *args, **kwargs)
            except (EngineControlError, ValueError) as e:
                logger.error(f"{description} failed: {e}")
                return ActionResult(False, f"{description} failed: {e}")
            except Exception as e:
                logger.error(f"{description} failed unexpectedly", exc_info=True)
                return ActionResult(False, f"{description} failed: {e}")
            if result.ok and kind:
                self._refresh(kind)
            return result
        return wrapper
    return decorator


def dockerfile_steps(dockerfile_text: str) -> List[str]:
    """Non-blank, non-comment Dockerfile lines, stripped."""
    steps = []
    for line in dockerfile_text.splitlines():
        line = line.strip()
        if line and not line.startswith('#'):
            steps.append(line)
    return steps


def simulate_build(tag: str, dockerfile_text: str, emit: Callable[[str], None],
                   delay: float = 0.15, sleep: Callable[[float], None] = time.sleep) -> BuildOutcome:
    """
    Approximate a build locally: one labeled line per Dockerfile step.

    Nothing is sent to the engine and no image is produced.
    """
    lines: List[str] = []

    def out(text: str) -> None:
        lines.append(text)
        emit(text)

    for step in dockerfile_steps(dockerfile_text):
        if delay > 0:
            sleep(delay)
        out(f"{SIMULATED_PREFIX} {step}")
    out(f"{SIMULATED_PREFIX} Build simulation complete: {tag} (no image was built)")
    return BuildOutcome(tag=tag, lines=lines, simulated=True)


def validate_compose(compose_yaml: str) -> Dict[str, Any]:
    """
    Parse a compose document locally.

    Raises:
        ValueError: not YAML, or not a mapping with a services section
    """
    try:
        document = yaml.safe_load(compose_yaml)
    except yaml.YAMLError as e:
        raise ValueError(f"compose.yml parse error: {e}") from e
    if not isinstance(document, dict) or not isinstance(document.get('services'), dict):
        raise ValueError("compose.yml parse error: expected a 'services' mapping")
    return document


class ActionDispatcher:
    def __init__(self, client: ResourceClient, reconciler: Reconciler,
                 config: Optional[AppConfig] = None):
        self.client = client
        self.reconciler = reconciler
        self.config = config or config_manager.get_config()
        self._compose: Dict[str, ComposeSession] = {}

    def _refresh(self, kind: str) -> None:
        self.reconciler.refresh(kind)

    # --- containers ---

    @dispatches(CONTAINERS, "Start container")
    def start_container(self, container_id: str) -> ActionResult:
        self.client.start_container(container_id)
        return ActionResult(True, f"Started {container_id[:12]}")

    @dispatches(CONTAINERS, "Stop container")
    def stop_container(self, container_id: str) -> ActionResult:
        self.client.stop_container(container_id)
        return ActionResult(True, f"Stopped {container_id[:12]}")

    @dispatches(CONTAINERS, "Delete container")
    def delete_container(self, container_id: str, force: bool = False) -> ActionResult:
        self.client.delete_container(container_id, force=force)
        return ActionResult(True, f"Deleted {container_id[:12]}")

    @dispatches(CONTAINERS, "Create container")
    def create_container(self, image: str, name: Optional[str] = None,
                         port: Optional[str] = None, auto_start: bool = False) -> ActionResult:
        container_id = self.client.create_container(image, name=name, port=port)
        if auto_start:
            try:
                self.client.start_container(container_id)
            except EngineControlError as e:
                logger.warning(f"Container {container_id[:12]} created but failed to start: {e}")
                self._refresh(CONTAINERS)
                return ActionResult(False, f"Container created but failed to start: {e}", container_id)
            return ActionResult(True, f"Created and started {container_id[:12]}", container_id)
        return ActionResult(True, f"Created {container_id[:12]}", container_id)

    # --- images ---

    @dispatches(IMAGES, "Pull image")
    def pull_image(self, reference: str, tag: Optional[str] = None) -> ActionResult:
        if tag:
            repo = reference
        else:
            repo, tag = parse_image_reference(reference)
        progress = self.client.pull_image(repo, tag)
        return ActionResult(True, f"Pulled {repo}:{tag}", progress)

    @dispatches(None, "Build image")
    def build(self, tag: str, dockerfile_text: str, context: Optional[bytes] = None,
              on_line: Optional[Callable[[str], None]] = None,
              dockerfile: str = DEFAULT_DOCKERFILE) -> ActionResult:
        """
        Build tag from a tar context, or simulate it from dockerfile_text.

        When no valid tar context is supplied the engine rejects the
        request, and the dispatcher falls back to a local simulation whose
        every line is labeled "[simulated]". A rejection of a valid context
        is a real failure.
        """
        emit = on_line or (lambda line: None)
        try:
            output = self.client.build(tag, context or b"", dockerfile=dockerfile)
        except EngineError as e:
            if has_dockerfile(context, dockerfile):
                raise
            logger.warning(f"Engine rejected build context for {tag} ({e}); simulating build locally")
            outcome = simulate_build(tag, dockerfile_text, emit,
                                     delay=self.config.build.simulation_delay)
            return ActionResult(True, f"Simulated build of {tag} complete (no image was built)", outcome)

        for line in output:
            emit(line)
        self._refresh(IMAGES)
        return ActionResult(True, f"Built {tag}", BuildOutcome(tag=tag, lines=output, simulated=False))

    # --- networks ---

    @dispatches(NETWORKS, "Create network")
    def create_network(self, name: str, driver: str = "bridge") -> ActionResult:
        network_id = self.client.create_network(name, driver=driver)
        return ActionResult(True, f"Created network {name}", network_id)

    @dispatches(NETWORKS, "Delete network")
    def delete_network(self, network_id: str) -> ActionResult:
        record = self.reconciler.snapshot(NETWORKS).get(network_id)
        if network_id in BUILTIN_NETWORKS or (record is not None and record.builtin):
            name = record.name if record is not None else network_id
            return ActionResult(False, f"Network '{name}' is built in and cannot be deleted")
        self.client.delete_network(network_id)
        return ActionResult(True, f"Deleted network {network_id[:12]}")

    # --- volumes ---

    @dispatches(VOLUMES, "Create volume")
    def create_volume(self, name: str, driver: str = "local") -> ActionResult:
        volume = self.client.create_volume(name, driver=driver)
        return ActionResult(True, f"Created volume {volume.name}", volume)

    @dispatches(VOLUMES, "Delete volume")
    def delete_volume(self, name: str) -> ActionResult:
        self.client.delete_volume(name)
        return ActionResult(True, f"Deleted volume {name}")

    @dispatches(VOLUMES, "Prune volumes")
    def prune_volumes(self) -> ActionResult:
        deleted = self.client.prune_volumes()
        return ActionResult(True, f"Pruned {len(deleted)} volume(s)", deleted)

    # --- compose ---

    def compose_session(self, project_name: str) -> ComposeSession:
        return self._compose.get(project_name) or ComposeSession(project_name)

    @dispatches(CONTAINERS, "Compose up")
    def compose_up(self, compose_yaml: str, project_name: str) -> ActionResult:
        session = self.compose_session(project_name)
        if session.state == COMPOSE_UP:
            logger.info(f"Rejected compose up for '{project_name}': already up")
            return ActionResult(False, f"Compose project '{project_name}' is already up", session)
        validate_compose(compose_yaml)
        try:
            services = self.client.compose_up(compose_yaml, project_name)
        except EngineControlError as e:
            self._compose[project_name] = ComposeSession(project_name, [], COMPOSE_ERROR, str(e))
            raise
        session = ComposeSession(project_name, services, COMPOSE_UP)
        self._compose[project_name] = session
        logger.info(f"Compose project '{project_name}' started {len(services)} service(s)")
        return ActionResult(True, f"{len(services)} service(s) started.", session)

    @dispatches(CONTAINERS, "Compose down")
    def compose_down(self, compose_yaml: str, project_name: str) -> ActionResult:
        self.client.compose_down(compose_yaml, project_name)
        session = ComposeSession(project_name, [], COMPOSE_IDLE)
        self._compose[project_name] = session
        logger.info(f"Compose project '{project_name}' stopped")
        return ActionResult(True, "All services stopped.", session)
