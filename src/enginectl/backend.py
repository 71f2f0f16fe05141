"""
Typed resource operations against the engine control plane.

This module maps every engine operation the client needs onto exactly one
Transport call and one response decode:
  - Containers: list, create, start, stop, delete, logs
  - Images: list, pull, build
  - Networks and volumes: list, create, delete (+ volume prune)
  - Compose: up, down
  - Engine: version, info

Error Handling:
  - Engine unreachable -> TransportError (raised by the transport)
  - Non-2xx status -> EngineError(status, message), message taken from the
    body's "error" field, then "message", then the raw body text
  - 2xx with an unexpected body -> DecodeError

Unlike a UI-facing wrapper nothing is swallowed here: the reconciliation
loop and the action dispatcher decide what a failure means.
"""

import functools
import io
import json
import logging
import tarfile
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from urllib.parse import quote

from .errors import DecodeError, EngineError
from .logstream import LogStreamDecoder
from .model import (
    ContainerRecord, ImageRecord, NetworkRecord, VolumeRecord,
    ServiceInstance, LogLine,
)
from .transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_TAG = "latest"
DEFAULT_DOCKERFILE = "Dockerfile"


def decodes(what: str) -> Callable:
    """
    Decorator turning shape errors raised while decoding into DecodeError.

    Usage:
        @decodes("container list")
        def list_containers(self) -> List[ContainerRecord]:
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            try:
                return func(*args, **kwargs)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Unexpected {what} payload in {func.__name__}: {e!r}")
                raise DecodeError(f"Unexpected {what} payload: {e!r}") from e
        return wrapper
    return decorator


def error_message(status: int, body: bytes) -> str:
    """Extract the engine's error text from a failure body."""
    text = body.decode('utf-8', errors='replace')
    try:
        data = json.loads(text)
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ('error', 'message'):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    text = text.strip()
    return text or f"Engine returned HTTP {status}"


def parse_image_reference(reference: str) -> Tuple[str, str]:
    """
    Split "repo[:tag]" into (repo, tag), defaulting the tag to "latest".

    A colon that belongs to a registry host ("localhost:5000/app") is not
    mistaken for a tag separator.
    """
    reference = reference.strip()
    colon = reference.rfind(':')
    if colon > reference.rfind('/'):
        return reference[:colon], reference[colon + 1:] or DEFAULT_TAG
    return reference, DEFAULT_TAG


def parse_port_mapping(mapping: str) -> Tuple[str, str]:
    """
    Parse "host:container" (or a bare "port" used for both sides).

    Returns:
        (container_port_key, host_port), e.g. ("80/tcp", "8080")
    """
    parts = mapping.strip().split(':')
    if len(parts) == 1:
        host_port, container_port = parts[0], parts[0]
    elif len(parts) == 2:
        host_port, container_port = parts
    else:
        raise ValueError(f"Invalid port mapping '{mapping}', expected host:container")
    port, _, proto = container_port.partition('/')
    if not port.isdigit() or not host_port.isdigit():
        raise ValueError(f"Invalid port mapping '{mapping}', expected host:container")
    return f"{port}/{proto or 'tcp'}", host_port


def build_context_from_dockerfile(dockerfile_text: str, name: str = DEFAULT_DOCKERFILE) -> bytes:
    """Pack a Dockerfile into an in-memory tar build context."""
    data = dockerfile_text.encode('utf-8')
    tar_stream = io.BytesIO()
    with tarfile.open(fileobj=tar_stream, mode='w') as tar:
        info = tarfile.TarInfo(name=name)
        info.size = len(data)
        info.mtime = int(time.time())
        tar.addfile(info, io.BytesIO(data))
    return tar_stream.getvalue()


def has_dockerfile(context: Optional[bytes], name: str = DEFAULT_DOCKERFILE) -> bool:
    """True when context is a readable tar archive containing name."""
    if not context:
        return False
    try:
        with tarfile.open(fileobj=io.BytesIO(context), mode='r:*') as tar:
            for member in tar.getmembers():
                member_name = member.name[2:] if member.name.startswith('./') else member.name
                if member.isfile() and member_name == name:
                    return True
            return False
    except (tarfile.TarError, EOFError):
        return False


def _lines(text: str) -> List[str]:
    return [line.rstrip() for line in text.splitlines() if line.strip()]


def _array(data: Any, what: str) -> List[Any]:
    if not isinstance(data, list):
        raise DecodeError(f"Expected a JSON array for {what}, got {type(data).__name__}")
    return data


class ResourceClient:
    def __init__(self, transport: Transport):
        self.transport = transport

    # --- plumbing ---

    def _call(self, method: str, path: str, body: Any = None,
              params: Optional[Dict[str, Any]] = None,
              headers: Optional[Dict[str, str]] = None) -> bytes:
        status, data = self.transport.request(method, path, body=body, params=params, headers=headers)
        if not 200 <= status < 300:
            message = error_message(status, data)
            logger.info(f"{method} {path} failed with {status}: {message}")
            raise EngineError(status, message)
        return data

    def _json(self, data: bytes) -> Any:
        if not data:
            return None
        try:
            return json.loads(data.decode('utf-8'))
        except ValueError as e:
            raise DecodeError(f"Response body is not JSON: {data[:80]!r}") from e

    def _json_call(self, method: str, path: str, **kwargs) -> Any:
        return self._json(self._call(method, path, **kwargs))

    # --- containers ---

    @decodes("container list")
    def list_containers(self, all: bool = True) -> List[ContainerRecord]:
        data = self._json_call('GET', '/containers/json', params={'all': all})
        return [ContainerRecord.from_api(c) for c in _array(data, 'container list')]

    def create_container(self, image: str, name: Optional[str] = None,
                         port: Optional[str] = None) -> str:
        """
        Create a container and return its id.

        Raises:
            ValueError: port is not a "host:container" mapping
        """
        config: Dict[str, Any] = {'Image': image}
        if port:
            port_key, host_port = parse_port_mapping(port)
            config['ExposedPorts'] = {port_key: {}}
            config['HostConfig'] = {'PortBindings': {port_key: [{'HostPort': host_port}]}}
        params = {'name': name} if name else None
        return self._created_id(self._json_call('POST', '/containers/create', body=config, params=params))

    @decodes("create response")
    def _created_id(self, data: Any) -> str:
        return data['Id']

    def start_container(self, container_id: str) -> None:
        self._call('POST', f"/containers/{quote(container_id, safe='')}/start")

    def stop_container(self, container_id: str) -> None:
        self._call('POST', f"/containers/{quote(container_id, safe='')}/stop")

    def delete_container(self, container_id: str, force: bool = False) -> None:
        params = {'force': True} if force else None
        self._call('DELETE', f"/containers/{quote(container_id, safe='')}", params=params)

    def container_logs(self, container_id: str, stdout: bool = True, stderr: bool = True,
                       tail: Optional[int] = None) -> bytes:
        """Fetch the raw multiplexed log body."""
        params = {'stdout': stdout, 'stderr': stderr, 'tail': tail if tail is not None else 'all'}
        return self._call('GET', f"/containers/{quote(container_id, safe='')}/logs", params=params)

    def iter_container_logs(self, container_id: str, stdout: bool = True, stderr: bool = True,
                            tail: Optional[int] = None,
                            decoder: Optional[LogStreamDecoder] = None,
                            should_stop: Optional[Callable[[], bool]] = None) -> Iterator[LogLine]:
        """
        Stream the log endpoint chunk by chunk through a LogStreamDecoder.

        should_stop is checked after every chunk arrives; once it returns
        True the response is closed and no further lines are produced.
        """
        params = {'stdout': stdout, 'stderr': stderr, 'tail': tail if tail is not None else 'all'}
        path = f"/containers/{quote(container_id, safe='')}/logs"
        status, chunks = self.transport.stream('GET', path, params=params)
        if not 200 <= status < 300:
            body = b"".join(chunks)
            raise EngineError(status, error_message(status, body))
        decoder = decoder or LogStreamDecoder()
        try:
            for chunk in chunks:
                if should_stop and should_stop():
                    return
                yield from decoder.feed(chunk)
        finally:
            close = getattr(chunks, 'close', None)
            if close:
                close()

    # --- images ---

    @decodes("image list")
    def list_images(self) -> List[ImageRecord]:
        data = self._json_call('GET', '/images/json')
        return [ImageRecord.from_api(i) for i in _array(data, 'image list')]

    def pull_image(self, repo: str, tag: Optional[str] = None) -> List[str]:
        """
        Pull repo:tag (tag defaults to "latest").

        Returns the progress lines reported by the engine. JSON progress
        records are reduced to their status text; plain text is kept.
        """
        data = self._call('POST', '/images/create',
                          params={'fromImage': repo, 'tag': tag or DEFAULT_TAG})
        progress = []
        for line in data.decode('utf-8', errors='replace').splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except ValueError:
                progress.append(line)
                continue
            if isinstance(record, dict):
                if record.get('error'):
                    raise EngineError(200, record['error'])
                text = record.get('status', '')
                if record.get('progress'):
                    text = f"{text} {record['progress']}"
                if text:
                    progress.append(text)
            else:
                progress.append(line)
        return progress

    def build(self, tag: str, context: bytes, dockerfile: str = DEFAULT_DOCKERFILE) -> List[str]:
        """
        Send a tar build context to the engine and return its output lines.

        An invalid or empty context is sent as-is; the engine answers with a
        "Dockerfile not found" class EngineError.
        """
        data = self._call('POST', '/build', body=context,
                          params={'t': tag, 'dockerfile': dockerfile},
                          headers={'Content-Type': 'application/x-tar'})
        output: List[str] = []
        for raw in data.decode('utf-8', errors='replace').splitlines():
            raw = raw.strip()
            if not raw:
                continue
            try:
                record = json.loads(raw)
            except ValueError:
                output.append(raw)
                continue
            if not isinstance(record, dict):
                raise DecodeError(f"Unexpected build output record: {raw[:80]!r}")
            if record.get('error'):
                raise EngineError(200, record['error'])
            output.extend(_lines(record.get('stream', '')))
        return output

    # --- networks ---

    @decodes("network list")
    def list_networks(self) -> List[NetworkRecord]:
        data = self._json_call('GET', '/networks')
        return [NetworkRecord.from_api(n) for n in _array(data, 'network list')]

    def create_network(self, name: str, driver: str = "bridge") -> str:
        data = self._json_call('POST', '/networks/create', body={'Name': name, 'Driver': driver})
        return self._created_id(data)

    def delete_network(self, network_id: str) -> None:
        self._call('DELETE', f"/networks/{quote(network_id, safe='')}")

    # --- volumes ---

    @decodes("volume list")
    def list_volumes(self) -> List[VolumeRecord]:
        data = self._json_call('GET', '/volumes')
        if isinstance(data, dict):
            # {"Volumes": null} is an empty list; a missing key is not
            data = data['Volumes'] or []
        return [VolumeRecord.from_api(v) for v in _array(data, 'volume list')]

    @decodes("volume create")
    def create_volume(self, name: str, driver: str = "local") -> VolumeRecord:
        data = self._json_call('POST', '/volumes/create', body={'Name': name, 'Driver': driver})
        attrs = {'Name': name, 'Driver': driver}
        attrs.update(data or {})
        return VolumeRecord.from_api(attrs)

    def delete_volume(self, name: str) -> None:
        self._call('DELETE', f"/volumes/{quote(name, safe='')}")

    @decodes("volume prune")
    def prune_volumes(self) -> List[str]:
        """Remove unused volumes and return the deleted names."""
        data = self._json_call('DELETE', '/volumes/prune') or {}
        return list(data.get('VolumesDeleted') or [])

    # --- compose ---

    @decodes("compose up")
    def compose_up(self, compose_yaml: str, project_name: str) -> List[ServiceInstance]:
        data = self._json_call('POST', '/compose/up',
                               body={'compose_yaml': compose_yaml, 'project_name': project_name})
        started = (data or {}).get('started') or []
        return [ServiceInstance(s['service_name'], s['container_id']) for s in started]

    def compose_down(self, compose_yaml: str, project_name: str) -> None:
        self._call('POST', '/compose/down',
                   body={'compose_yaml': compose_yaml, 'project_name': project_name})

    # --- engine ---

    def version(self) -> Dict[str, Any]:
        data = self._json_call('GET', '/version')
        if not isinstance(data, dict):
            raise DecodeError("Unexpected version payload")
        return data

    def info(self) -> Dict[str, Any]:
        data = self._json_call('GET', '/info')
        if not isinstance(data, dict):
            raise DecodeError("Unexpected info payload")
        return data
