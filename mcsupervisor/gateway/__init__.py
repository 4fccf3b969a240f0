"""Container runtime gateway: the only path from the core to Docker."""

from .base import ContainerGateway, LogStream, VolumeMount, WorkerResult
from .docker_gateway import DockerGateway, DockerLogStream

__all__ = [
    "ContainerGateway",
    "DockerGateway",
    "DockerLogStream",
    "LogStream",
    "VolumeMount",
    "WorkerResult",
]
