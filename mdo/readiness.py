from __future__ import annotations

import time
from typing import Callable, Mapping

import httpx

from .errors import ReadinessError
from .events import log_event
from .runtime import FailureLog, WorkerGroup
from .settings import Settings, settings


def health_url(port: int, cfg: Settings = settings) -> str:
    return f"http://{cfg.readiness_host}:{int(port)}{cfg.readiness_path}"


def probe_health(http: httpx.Client, url: str) -> tuple[bool, str]:
    """One health request. Only HTTP 200 counts as ready.

    Returns (is_ready, message).
    """
    try:
        resp = http.get(url)
    except httpx.HTTPError as e:
        return False, f"No response: {type(e).__name__}"
    if resp.status_code != 200:
        return False, f"HTTP {resp.status_code}"
    return True, "Ready"


def _http_client(cfg: Settings) -> httpx.Client:
    return httpx.Client(timeout=cfg.http_timeout_s, follow_redirects=False)


def check_module_readiness(
    module: str,
    port: int,
    http: httpx.Client | None = None,
    cfg: Settings = settings,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Poll the module's health endpoint until it answers 200.

    Waits ``readiness_delay_s`` between attempts, never after the last one.
    Returns the number of attempts used; raises :class:`ReadinessError` once
    ``readiness_max_attempts`` attempts have failed.
    """
    max_attempts = max(1, cfg.readiness_max_attempts)
    url = health_url(port, cfg)
    owned = http is None
    client = _http_client(cfg) if owned else http
    log_event("INFO", f"Waiting for module on port {port}", module=module)
    try:
        for attempt in range(1, max_attempts + 1):
            ok, msg = probe_health(client, url)
            if ok:
                log_event("INFO", "Module is ready", module=module)
                return attempt
            if attempt == max_attempts:
                break
            log_event("INFO", f"Module is unready ({msg}), attempt {attempt}/{max_attempts}", module=module)
            sleep(cfg.readiness_delay_s)
    finally:
        if owned:
            client.close()
    raise ReadinessError(module, max_attempts)


def wait_for_modules(
    deployed: Mapping[str, int],
    http: httpx.Client | None = None,
    cfg: Settings = settings,
    sleep: Callable[[float], None] = time.sleep,
) -> list[ReadinessError]:
    """Check every deployed module concurrently, one thread per module.

    Returns all readiness failures, sorted by module name; an empty list means
    every module is ready. Running containers are never touched.
    """
    failures = FailureLog()
    group = WorkerGroup("readiness")

    def _check(module: str, port: int, client: httpx.Client) -> None:
        try:
            check_module_readiness(module, port, http=client, cfg=cfg, sleep=sleep)
        except ReadinessError as e:
            log_event("ERROR", str(e), module=module)
            failures.add(module, e)
        except Exception as e:
            # A crashed check counts as unready, never as ready.
            err = ReadinessError(module, 0, cause=e)
            log_event("ERROR", str(err), module=module)
            failures.add(module, err)

    owned = http is None
    client = _http_client(cfg) if owned else http
    try:
        for module, port in deployed.items():
            group.spawn(_check, module, port, client)
        group.wait()
    finally:
        if owned:
            client.close()
    return failures.errors()
