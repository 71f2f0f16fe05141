"""
Data models for engine resources and reconciliation state.

This module defines the dataclasses that flow between the resource client,
the reconciliation loops and the presentation collaborator:
  - ContainerRecord / ImageRecord / NetworkRecord / VolumeRecord:
    one record per engine resource, decoded from the engine's JSON shapes
  - ResourceSnapshot: an atomic, timestamped collection of one kind
  - ComposeSession / ServiceInstance: local tracking of a compose project
  - LogLine: one decoded, stream-tagged log line
  - EngineStatus: engine reachability plus version/info summary
  - ActionResult / BuildOutcome: dispatcher results

Field names on the wire are case-preserved from the engine (PascalCase);
the from_api() constructors accept the lowercase spelling some engine
builds emit for images as well.
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any

CONTAINERS = "containers"
IMAGES = "images"
NETWORKS = "networks"
VOLUMES = "volumes"
RESOURCE_KINDS = (CONTAINERS, IMAGES, NETWORKS, VOLUMES)

STDOUT = "stdout"
STDERR = "stderr"

# Engine-defined; anything else is passed through untouched.
KNOWN_CONTAINER_STATES = ("created", "running", "paused", "exited", "dead")

BUILTIN_NETWORKS = frozenset({"bridge", "host", "none"})

COMPOSE_IDLE = "idle"
COMPOSE_UP = "up"
COMPOSE_ERROR = "error"


def _field(attrs: Dict[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in attrs and attrs[name] is not None:
            return attrs[name]
    return default


def _required(attrs: Dict[str, Any], *names: str) -> Any:
    value = _field(attrs, *names)
    if value is None:
        raise KeyError(names[0])
    return value


@dataclass
class ContainerRecord:
    id: str
    names: List[str] = field(default_factory=list)
    image: str = ""
    state: str = ""
    status: str = ""
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def short_id(self) -> str:
        return self.id[:12]

    @property
    def name(self) -> str:
        """First name without its leading '/', or the short id."""
        if self.names:
            first = self.names[0].lstrip("/")
            if first:
                return first
        return self.short_id

    @property
    def is_running(self) -> bool:
        return self.state == "running"

    @classmethod
    def from_api(cls, attrs: Dict[str, Any]) -> "ContainerRecord":
        state = attrs.get("State", "")
        if isinstance(state, dict):
            # Inspect-shaped payloads nest the state.
            state = state.get("Status", "")
        return cls(
            id=attrs["Id"],
            names=list(attrs.get("Names") or []),
            image=attrs.get("Image", ""),
            state=state,
            status=attrs.get("Status", ""),
            labels=dict(attrs.get("Labels") or {}),
        )


@dataclass
class ImageRecord:
    id: str
    repo_tags: List[str] = field(default_factory=list)
    size: int = 0
    created: int = 0  # engine epoch seconds

    @property
    def short_id(self) -> str:
        return self.id.split(":", 1)[-1][:12]

    @property
    def size_mb(self) -> float:
        return self.size / (1024 * 1024)

    @classmethod
    def from_api(cls, attrs: Dict[str, Any]) -> "ImageRecord":
        return cls(
            id=_required(attrs, "Id", "id"),
            repo_tags=list(_field(attrs, "RepoTags", "repo_tags", default=[])),
            size=int(_field(attrs, "Size", "size", default=0)),
            created=int(_field(attrs, "Created", "created", default=0)),
        )


@dataclass
class NetworkRecord:
    id: str
    name: str
    driver: str = ""
    scope: str = ""
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def builtin(self) -> bool:
        return self.name in BUILTIN_NETWORKS

    @property
    def deletable(self) -> bool:
        return not self.builtin

    @classmethod
    def from_api(cls, attrs: Dict[str, Any]) -> "NetworkRecord":
        return cls(
            id=attrs["Id"],
            name=attrs["Name"],
            driver=attrs.get("Driver", ""),
            scope=attrs.get("Scope", ""),
            labels=dict(attrs.get("Labels") or {}),
        )


@dataclass
class VolumeRecord:
    name: str
    driver: str = "local"
    mountpoint: str = ""
    scope: str = ""
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.name

    @classmethod
    def from_api(cls, attrs: Dict[str, Any]) -> "VolumeRecord":
        return cls(
            name=attrs["Name"],
            driver=attrs.get("Driver", "local"),
            mountpoint=attrs.get("Mountpoint", ""),
            scope=attrs.get("Scope", ""),
            labels=dict(attrs.get("Labels") or {}),
        )


@dataclass
class ResourceSnapshot:
    kind: str
    records: List[Any] = field(default_factory=list)
    fetched_at: float = field(default_factory=time.time)

    def ids(self) -> List[str]:
        return [r.id for r in self.records]

    def get(self, record_id: str) -> Optional[Any]:
        return next((r for r in self.records if r.id == record_id), None)

    def __len__(self) -> int:
        return len(self.records)


@dataclass
class ServiceInstance:
    service_name: str
    container_id: str


@dataclass
class ComposeSession:
    project_name: str
    services: List[ServiceInstance] = field(default_factory=list)
    state: str = COMPOSE_IDLE  # idle, up, error
    last_error: str = ""


@dataclass
class LogLine:
    stream: str  # stdout, stderr
    text: str

    def as_tuple(self):
        return (self.stream, self.text)


@dataclass
class EngineStatus:
    online: bool = False
    version: str = ""
    api_version: str = ""
    os: str = ""
    arch: str = ""
    kernel_version: str = ""
    containers: int = 0
    containers_running: int = 0
    containers_stopped: int = 0
    images: int = 0
    ncpu: int = 0
    mem_total: int = 0
    error: str = ""
    checked_at: float = 0.0

    @classmethod
    def from_api(cls, version: Dict[str, Any], info: Dict[str, Any]) -> "EngineStatus":
        return cls(
            online=True,
            version=version.get("Version", ""),
            api_version=version.get("ApiVersion", ""),
            os=version.get("Os", ""),
            arch=version.get("Arch", ""),
            kernel_version=version.get("KernelVersion", ""),
            containers=int(info.get("Containers", 0)),
            containers_running=int(info.get("ContainersRunning", 0)),
            containers_stopped=int(info.get("ContainersStopped", 0)),
            images=int(info.get("Images", 0)),
            ncpu=int(info.get("NCPU", 0)),
            mem_total=int(info.get("MemTotal", 0)),
            checked_at=time.time(),
        )


@dataclass
class ActionResult:
    ok: bool
    message: str = ""
    data: Any = None

    def __bool__(self) -> bool:
        return self.ok


@dataclass
class BuildOutcome:
    tag: str
    lines: List[str] = field(default_factory=list)
    simulated: bool = False
