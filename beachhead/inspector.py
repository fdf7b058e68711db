"""Sources of service declarations.

An inspector answers one question per tick: which containers are running and
what did each of them declare? Backends are interchangeable; the reconciler
only relies on :meth:`Inspector.list_declarations`.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable

import docker
import requests
from docker.errors import DockerException, NotFound

from .domain_spec import declaration_from_env
from .errors import InspectionError
from .records import ServiceDeclaration
from .settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class Inspector(ABC):
    @abstractmethod
    def list_declarations(self) -> list[ServiceDeclaration]:
        """Return declarations of the currently running containers.

        Raises InspectionError when the source cannot be queried.
        """


class StaticInspector(Inspector):
    """Serves a fixed set of declarations, or fails with a fixed error."""

    def __init__(self, declarations: Iterable[ServiceDeclaration] = (), error: Exception | None = None):
        self.declarations = list(declarations)
        self.error = error
        self.calls = 0

    def list_declarations(self) -> list[ServiceDeclaration]:
        self.calls += 1
        if self.error is not None:
            raise InspectionError(str(self.error)) from self.error
        return list(self.declarations)


class DockerInspector(Inspector):
    """Reads declarations from the environment of docker containers.

    With no ``containers`` given, every running container is inspected;
    otherwise only the named ones.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: Any = None,
        containers: list[str] | None = None,
    ):
        self.settings = settings or default_settings
        self.containers = list(containers or [])
        self._client = client

    def _docker(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.DockerClient(base_url=self.settings.docker_url)
        return self._client

    def list_declarations(self) -> list[ServiceDeclaration]:
        try:
            found = self._running_containers()
            return [self._declaration(c) for c in found]
        except (DockerException, requests.exceptions.RequestException) as e:
            raise InspectionError(f"Error while communicating with the docker daemon: {e}") from e
        except (AttributeError, KeyError, TypeError) as e:
            raise InspectionError(f"Unexpected container data from docker: {e!r}") from e

    def _running_containers(self) -> list[Any]:
        c = self._docker()
        if not self.containers:
            # a container removed between list and inspect is dropped, not fatal
            found = c.containers.list(filters={"status": "running"}, ignore_removed=True)
            logger.debug("Found %d running containers.", len(found))
            return found

        found = []
        for name in self.containers:
            try:
                found.append(c.containers.get(name))
            except NotFound:
                logger.warning("Container %s does not exist; skipping.", name)
        return found

    def _declaration(self, container: Any) -> ServiceDeclaration:
        attrs = container.attrs
        name = (container.name or "").lstrip("/") or None
        env = (attrs.get("Config") or {}).get("Env")
        return ServiceDeclaration(
            container_id=container.id,
            container_name=name,
            raw=declaration_from_env(env, self.settings.envvar),
            host=self._container_host(name, attrs),
        )

    def _container_host(self, name: str | None, attrs: dict[str, Any]) -> str | None:
        # On a user-defined network the container name resolves; otherwise use the bridge IP.
        if self.settings.docker_network:
            return name
        ip = (attrs.get("NetworkSettings") or {}).get("IPAddress")
        return ip or None
