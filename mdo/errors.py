from __future__ import annotations


class MdoError(Exception):
    """Base class for all orchestrator errors."""


class ExhaustedRange(MdoError):
    def __init__(self, start: int, end: int):
        super().__init__(f"Cannot find free TCP ports in range {start}-{end}")
        self.start = start
        self.end = end


class SpecError(MdoError):
    """A module spec could not be composed from its config entry."""


class MissingVolumeError(SpecError):
    def __init__(self, module: str, path: str):
        super().__init__(f"Volume path does not exist: {path} for module: {module}")
        self.module = module
        self.path = path


class MissingDescriptorError(SpecError):
    def __init__(self, module: str, path: str):
        super().__init__(f"local-descriptor-path file does not exist: {path} for module: {module}")
        self.module = module
        self.path = path


class PortConflictError(SpecError):
    def __init__(self, module: str, port: int, reason: str):
        super().__init__(f"Port {port} of module: {module} is {reason}")
        self.module = module
        self.port = port


class RegistryError(MdoError):
    pass


class ImagePullError(MdoError):
    def __init__(self, image: str, detail: str):
        super().__init__(f"Pulling image {image} failed: {detail}")
        self.image = image
        self.detail = detail


class DeploymentError(MdoError):
    """One or more sidecar deployments failed.

    All failures observed during a run are kept in ``errors``, ordered by the
    name of the sidecar that failed. ``deployed`` maps the primary modules
    that did start to their exposed server ports; they are left running.
    """

    def __init__(self, errors: list[Exception], deployed: dict[str, int] | None = None):
        self.errors = list(errors)
        self.deployed = dict(deployed or {})
        detail = "; ".join(str(e) for e in self.errors)
        super().__init__(f"{len(self.errors)} sidecar deployment(s) failed: {detail}")

    @property
    def first(self) -> Exception | None:
        return self.errors[0] if self.errors else None


class ReadinessError(MdoError):
    def __init__(self, module: str, attempts: int, cause: Exception | None = None):
        if cause is None:
            msg = f"Module {module} is unready and out of retries after {attempts} attempts"
        else:
            msg = f"Module {module} readiness check failed: {type(cause).__name__}: {cause}"
        super().__init__(msg)
        self.module = module
        self.attempts = attempts
        self.cause = cause


class SidecarDeployError(MdoError):
    def __init__(self, sidecar: str, cause: Exception):
        super().__init__(f"Failed to deploy {sidecar} sidecar: {type(cause).__name__}: {cause}")
        self.sidecar = sidecar
        self.cause = cause


class VaultTokenError(MdoError):
    pass
