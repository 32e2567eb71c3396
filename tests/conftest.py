import logging
import os
import re
import sys
from dataclasses import replace
from threading import Lock

import pytest
from docker.errors import APIError, ImageNotFound, NotFound

# Ensure project root is importable (so `import mdo` and `import cli` work without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from mdo.events import LOGGER_NAME
from mdo.settings import Settings


class FakeContainer:
    def __init__(self, client, name, image="", kwargs=None, logs=b""):
        self.client = client
        self.name = name
        self.id = f"id-{name}"
        self.image = image
        self.kwargs = kwargs or {}
        self._logs = logs
        bindings = {k: [{"HostIp": ip, "HostPort": str(port)}] for k, (ip, port) in self.kwargs.get("ports", {}).items()}
        self.attrs = {"HostConfig": {"PortBindings": bindings}}

    def start(self):
        self.client.record("start", self.name)
        if self.name in self.client.fail_start:
            raise APIError(f"cannot start {self.name}")

    def stop(self, timeout=None):
        self.client.record("stop", self.name)
        if self.name in self.client.fail_stop:
            raise APIError(f"cannot stop {self.name}")

    def remove(self, force=False, v=False):
        self.client.record("remove", self.name)
        if self.name in self.client.fail_remove:
            raise APIError(f"cannot remove {self.name}")

    def logs(self, stdout=True, stderr=True):
        return self._logs


class FakeContainers:
    def __init__(self, client):
        self.client = client

    def create(self, image, **kwargs):
        name = kwargs["name"]
        self.client.record("create", name)
        if name in self.client.fail_create:
            raise APIError(f"cannot create {name}")
        c = FakeContainer(self.client, name, image, kwargs)
        with self.client.lock:
            self.client.created.append(c)
        return c

    def list(self, all=False, filters=None):
        pattern = (filters or {}).get("name", "")
        self.client.record("list", pattern)
        return [c for c in self.client.existing if re.search(pattern, c.name)]

    def get(self, name):
        for c in self.client.existing:
            if c.name == name:
                return c
        raise NotFound(f"No such container: {name}")


class FakeImages:
    def __init__(self, client):
        self.client = client

    def get(self, image):
        if image not in self.client.cached_images:
            raise ImageNotFound(f"No such image: {image}")
        return image


class FakeAPI:
    def __init__(self, client):
        self.client = client

    def create_endpoint_config(self, **kwargs):
        return dict(kwargs)

    def pull(self, repository, tag=None, stream=False, decode=False, auth_config=None):
        self.client.record("pull", f"{repository}:{tag}")
        self.client.pull_auth.append(auth_config)
        return iter(self.client.pull_events)


class FakeNetwork:
    def __init__(self, client, name):
        self.client = client
        self.name = name

    def disconnect(self, container_id, force=False):
        self.client.record("disconnect", container_id)
        if container_id in self.client.fail_disconnect:
            raise APIError(f"cannot disconnect {container_id}")


class FakeNetworks:
    def __init__(self, client):
        self.client = client

    def get(self, name):
        if name not in self.client.networks_present:
            raise NotFound(f"network {name} not found")
        return FakeNetwork(self.client, name)

    def create(self, name, driver=None):
        self.client.networks_present.add(name)
        self.client.record("network-create", name)


class FakeDockerClient:
    """In-memory stand-in for docker.DockerClient that records every call."""

    def __init__(self):
        self.lock = Lock()
        self.calls = []
        self.created = []
        self.existing = []
        self.cached_images = set()
        self.pull_events = [{"status": "Downloading", "progressDetail": {"current": 1048576, "total": 2097152}}]
        self.pull_auth = []
        self.networks_present = {"eureka"}
        self.fail_create = set()
        self.fail_start = set()
        self.fail_stop = set()
        self.fail_remove = set()
        self.fail_disconnect = set()
        self.containers = FakeContainers(self)
        self.images = FakeImages(self)
        self.api = FakeAPI(self)
        self.networks = FakeNetworks(self)
        self.closed = False

    def record(self, op, target):
        with self.lock:
            self.calls.append((op, target))

    def ops(self, op):
        with self.lock:
            return [t for o, t in self.calls if o == op]

    def add_existing(self, name, logs=b""):
        c = FakeContainer(self, name, logs=logs)
        self.existing.append(c)
        return c

    def ping(self):
        return True

    def close(self):
        self.closed = True


@pytest.fixture
def docker_client():
    return FakeDockerClient()


@pytest.fixture
def cfg(tmp_path):
    return replace(
        Settings(),
        home_dir=str(tmp_path / ".eureka"),
        readiness_max_attempts=3,
        readiness_delay_s=0.0,
        readiness_initial_delay_s=0.0,
    )


@pytest.fixture
def always_free():
    return lambda port: True


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    # configure_logging binds a handler to the captured stderr of the test that called it
    logger = logging.getLogger(LOGGER_NAME)
    for h in list(logger.handlers):
        logger.removeHandler(h)
    logger.propagate = True

