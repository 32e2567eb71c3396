from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _stringify_env(value: Any) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("environment must be a mapping")
    out: dict[str, str] = {}
    for k, v in value.items():
        if isinstance(v, bool):
            out[str(k)] = "true" if v else "false"
        else:
            out[str(k)] = "" if v is None else str(v)
    return out


class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class ResourceConfig(_ConfigModel):
    """Container limits; memory values are MiB, ``-1`` swap means unlimited."""

    cpu_count: int | None = Field(None, alias="cpu-count", ge=0)
    memory: int | None = Field(None, ge=-1, description="MiB")
    memory_reservation: int | None = Field(None, alias="memory-reservation", ge=0, description="MiB")
    memory_swap: int | None = Field(None, alias="memory-swap", ge=-1, description="MiB")
    oom_kill_disable: bool | None = Field(None, alias="oom-kill-disable")


class ModuleConfig(_ConfigModel):
    deploy_module: bool = Field(True, alias="deploy-module")
    deploy_sidecar: bool | None = Field(None, alias="deploy-sidecar")
    version: str | None = Field(None, description="Pinned image version; wins over the registry version")
    port: int | None = Field(None, ge=1, le=65535, description="Host port for the module server")
    port_server: int | None = Field(None, alias="port-server", ge=1, le=65535, description="In-container server port")
    use_vault: bool = Field(False, alias="use-vault")
    use_okapi_url: bool = Field(False, alias="use-okapi-url")
    disable_system_user: bool = Field(False, alias="disable-system-user")
    local_descriptor_path: str | None = Field(None, alias="local-descriptor-path")
    environment: dict[str, str] = Field(default_factory=dict)
    resources: ResourceConfig | None = None
    volumes: list[str] = Field(default_factory=list)

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_str(cls, v: Any) -> Any:
        # YAML reads 1.10 as a float.
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return repr(v)
        return v

    @field_validator("environment", mode="before")
    @classmethod
    def _env_as_str(cls, v: Any) -> dict[str, str]:
        return _stringify_env(v)

    @field_validator("volumes", mode="before")
    @classmethod
    def _volumes_list(cls, v: Any) -> Any:
        return [] if v is None else v


class SidecarModuleConfig(_ConfigModel):
    image: str = "folio-module-sidecar"
    version: str | None = None
    local_image: str | None = Field(None, alias="local-image")
    environment: dict[str, str] = Field(default_factory=dict)
    resources: ResourceConfig | None = None

    @field_validator("environment", mode="before")
    @classmethod
    def _env_as_str(cls, v: Any) -> dict[str, str]:
        return _stringify_env(v)


class RunConfig(_ConfigModel):
    """Everything a deploy/undeploy run needs from the config file."""

    profile: str = "combined"
    port_start: int = Field(30000, alias="port-start", ge=1, le=65535)
    port_end: int = Field(30999, alias="port-end", ge=1, le=65535)
    install: dict[str, str] = Field(default_factory=dict, description="Registry name -> install JSON URL")
    environment: dict[str, str] = Field(default_factory=dict)
    sidecar_module: SidecarModuleConfig = Field(default_factory=SidecarModuleConfig, alias="sidecar-module")
    backend_modules: dict[str, ModuleConfig | None] = Field(default_factory=dict, alias="backend-modules")

    @field_validator("environment", mode="before")
    @classmethod
    def _env_as_str(cls, v: Any) -> dict[str, str]:
        return _stringify_env(v)

    @field_validator("backend_modules", mode="before")
    @classmethod
    def _modules_map(cls, v: Any) -> Any:
        return {} if v is None else v

    @model_validator(mode="after")
    def _check_range(self) -> "RunConfig":
        if self.port_start > self.port_end:
            raise ValueError(f"port-start {self.port_start} is greater than port-end {self.port_end}")
        return self
