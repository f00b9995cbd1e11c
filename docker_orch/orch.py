"""Docker runtime wrapper used by the build scheduler and test executor."""

import codecs
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import docker
from docker.errors import APIError, BuildError as DockerBuildError, DockerException, ImageNotFound, NotFound
from loguru import logger

from errors import BuildError, InterruptedRun, RuntimeUnavailableError

KEEPALIVE_SHELL = ["/bin/sh", "-c"]
# Seconds to let a log stream flush after its container exits
LOG_DRAIN_TIMEOUT = 2.0

RUNTIME_SUGGESTIONS = [
    "Install Docker: https://docs.docker.com/get-docker/",
    "Start the Docker daemon (e.g. 'sudo systemctl start docker')",
    "Check that your user can access the Docker socket (DOCKER_HOST or docker group)",
]


class ContainerRuntime:
    """Narrow container surface: run, wait, logs, stop, kill, remove, build images."""

    def __init__(self, client=None):
        if client is not None:
            self.client = client
            return
        try:
            self.client = docker.from_env()
            self.client.ping()
            logger.debug("Docker client initialized successfully")
        except DockerException as e:
            logger.error(f"Failed to initialize Docker client: {e}")
            raise RuntimeUnavailableError(
                f"Container runtime is not available: {e}",
                suggestions=RUNTIME_SUGGESTIONS,
                error_code="RUNTIME_UNAVAILABLE",
            )

    # Containers

    def run(
        self,
        image: str,
        command: str,
        name: str,
        labels: Optional[Dict[str, str]] = None,
        volumes: Optional[Dict[str, Dict[str, str]]] = None,
        working_dir: Optional[str] = None,
        environment: Optional[Dict[str, str]] = None,
        cpus: float = 0,
        mem_limit: Optional[str] = None,
    ):
        """Start a detached container whose main process is ``command``."""
        if not self.ensure_image(image):
            raise BuildError(f"Image {image} is not available", command=command)

        options: Dict[str, Any] = {
            "detach": True,
            "name": name,
            "entrypoint": KEEPALIVE_SHELL,
            "command": [command],
            "labels": labels or {},
            "volumes": volumes or {},
            "environment": environment or {},
        }
        if working_dir:
            options["working_dir"] = working_dir
        if cpus and cpus > 0:
            options["nano_cpus"] = int(cpus * 1_000_000_000)
        if mem_limit:
            options["mem_limit"] = mem_limit

        logger.debug(f"Starting container {name} from {image}: {command}")
        return self.client.containers.run(image, **options)

    def wait(
        self,
        container,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
        poll_interval: float = 0.5,
    ) -> Tuple[int, bool]:
        """Block until the container exits.

        Returns ``(exit_code, timed_out)``. Raises ``InterruptedRun`` as soon as
        ``cancel`` is set.
        """
        start = time.monotonic()
        while True:
            if cancel is not None and cancel.is_set():
                raise InterruptedRun(f"Wait for {container.name} interrupted")
            try:
                container.reload()
            except NotFound:
                return 137, False
            if container.status in ("exited", "dead"):
                state = container.attrs.get("State", {})
                return int(state.get("ExitCode", 1)), False
            if timeout is not None and time.monotonic() - start > timeout:
                return 124, True
            if cancel is not None:
                cancel.wait(poll_interval)
            else:
                time.sleep(poll_interval)

    def follow_logs(self, container, on_output: Callable[[str], None]) -> threading.Thread:
        """Forward combined output to ``on_output`` as the container produces it.

        Runs on a daemon thread that ends when the container stops.
        """
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        def pump():
            try:
                for chunk in container.logs(stream=True, follow=True):
                    text = decoder.decode(chunk)
                    if text:
                        on_output(text)
            except (NotFound, APIError) as e:
                logger.debug(f"Log stream of {container.name} ended: {e}")

        thread = threading.Thread(target=pump, name=f"logs-{container.name}", daemon=True)
        thread.start()
        return thread

    def logs(self, container) -> Tuple[str, str]:
        try:
            stdout = container.logs(stdout=True, stderr=False) or b""
            stderr = container.logs(stdout=False, stderr=True) or b""
        except (NotFound, APIError) as e:
            logger.warning(f"Could not read logs of {container.name}: {e}")
            return "", ""
        return (
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    def stop(self, container_id: str, timeout: int = 10) -> bool:
        try:
            container = self.client.containers.get(container_id)
            if container.status == "running":
                container.stop(timeout=timeout)
            return True
        except NotFound:
            return True
        except APIError as e:
            logger.error(f"Failed to stop container {container_id}: {e}")
            return False

    def kill(self, container_id: str) -> bool:
        try:
            self.client.containers.get(container_id).kill()
            return True
        except NotFound:
            return True
        except APIError as e:
            # Already stopped containers refuse SIGKILL
            logger.debug(f"Kill of {container_id} refused: {e}")
            return True

    def remove(self, container_id: str, force: bool = False) -> bool:
        try:
            self.client.containers.get(container_id).remove(force=force, v=True)
            return True
        except NotFound:
            return True
        except APIError as e:
            logger.error(f"Failed to remove container {container_id}: {e}")
            return False

    def list_containers(self, name_prefix: str) -> List[Dict[str, str]]:
        try:
            containers = self.client.containers.list(all=True, filters={"name": name_prefix})
        except APIError as e:
            logger.error(f"Failed to list containers: {e}")
            return []
        return [
            {"id": c.id, "name": c.name, "status": c.status}
            for c in containers
            if c.name.startswith(name_prefix)
        ]

    # Images

    def ensure_image(self, image: str) -> bool:
        """Ensure the image is available locally, pulling it if needed."""
        try:
            self.client.images.get(image)
            return True
        except ImageNotFound:
            logger.info(f"Image {image} not found locally, pulling...")
        except APIError as e:
            logger.error(f"Failed to inspect image {image}: {e}")
            return False

        try:
            for line in self.client.api.pull(image, stream=True, decode=True):
                if "status" in line:
                    if "id" in line:
                        logger.debug(f"{line['id']}: {line['status']}")
                    else:
                        logger.debug(line["status"])
            logger.info(f"✅ Successfully pulled image: {image}")
            return True
        except (APIError, DockerException) as e:
            logger.error(f"Failed to pull image {image}: {e}")
            return False

    def build_image(self, context_dir: str, tag: str, labels: Optional[Dict[str, str]] = None) -> str:
        """Build ``context_dir``/Dockerfile and return the image id."""
        try:
            image, build_log = self.client.images.build(
                path=context_dir, tag=tag, rm=True, forcerm=True, labels=labels or {}
            )
        except DockerBuildError as e:
            output = "".join(chunk.get("stream", "") for chunk in (e.build_log or []) if isinstance(chunk, dict))
            raise BuildError(f"Image build for {tag} failed: {e.msg}", raw_output=output)
        except APIError as e:
            raise BuildError(f"Image build for {tag} failed: {e}")
        logger.info(f"Built test image {tag}")
        return image.id

    def image_exists(self, tag: str) -> bool:
        try:
            self.client.images.get(tag)
            return True
        except ImageNotFound:
            return False

    def remove_image(self, tag: str) -> bool:
        try:
            self.client.images.remove(tag, force=True)
            logger.debug(f"Removed image {tag}")
            return True
        except ImageNotFound:
            return True
        except APIError as e:
            logger.error(f"Failed to remove image {tag}: {e}")
            return False

