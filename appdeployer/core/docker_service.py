"""Docker image building and pushing for appdeployer."""

import logging
from typing import Any, Dict, Optional

import docker
from docker.errors import APIError, BuildError, DockerException
from requests.exceptions import RequestException

from appdeployer.core.errors import ImageError
from appdeployer.core.models import BuildOptions

logger = logging.getLogger(__name__)


class DockerService:
    """Builds the app image and pushes it to its registry.

    Both operations block until the daemon is done and are not retried.
    """

    def __init__(self, docker_client: Optional[docker.DockerClient] = None, timeout: Optional[int] = None) -> None:
        """Initialize the docker service.

        Args:
            docker_client: Client to use (connects using the environment if not given)
            timeout: Timeout in seconds for calls to the docker daemon

        Raises:
            ImageError: If the docker daemon cannot be reached
        """
        if docker_client is None:
            kwargs = {"timeout": timeout} if timeout else {}
            try:
                docker_client = docker.from_env(**kwargs)
            except DockerException as e:
                raise ImageError(f"Failed to connect to docker daemon: {e}") from e
        self._client = docker_client

    def __enter__(self) -> "DockerService":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def build_image(self, options: BuildOptions) -> str:
        """Build the app directory into an image tagged with the full image reference.

        Args:
            options: Resolved build options

        Returns:
            Full image reference (e.g., "alice/demo:latest")

        Raises:
            ImageError: If the build fails or the daemon cannot be reached
        """
        image = options.image
        logger.info("Building %s from %s", image, options.app_dir)

        try:
            _, build_logs = self._client.images.build(
                path=str(options.app_dir),
                dockerfile=str(options.dockerfile),
                tag=image,
                rm=True,
                forcerm=True,
            )
        except BuildError as e:
            raise ImageError(f"Failed to build image {image}: {e.msg}") from e
        except APIError as e:
            raise ImageError(f"Failed to build image {image}: {e.explanation or e}") from e
        except (DockerException, RequestException) as e:
            raise ImageError(f"Failed to build image {image}: {e}") from e

        for chunk in build_logs:
            line = chunk.get("stream", "").rstrip()
            if line:
                logger.debug(line)

        return image

    def push_image(self, options: BuildOptions) -> str:
        """Push the built image to its registry.

        Uses the configured username and password when both are set, the
        credentials stored by ``docker login`` otherwise.

        Returns:
            Full image reference that was pushed

        Raises:
            ImageError: If the registry rejects the push or the daemon cannot be reached
        """
        image = options.image
        auth_config: Optional[Dict[str, str]] = None
        if options.has_credentials:
            auth_config = {"username": options.username, "password": options.password}

        logger.info("Pushing %s", image)

        try:
            for chunk in self._client.images.push(
                options.image_name,
                tag=options.tag,
                auth_config=auth_config,
                stream=True,
                decode=True,
            ):
                if "error" in chunk:
                    detail = chunk.get("errorDetail", {}).get("message") or chunk["error"]
                    raise ImageError(f"Failed to push image {image}: {detail}")
                if chunk.get("status"):
                    logger.debug("%s %s", chunk.get("id", ""), chunk["status"])
        except APIError as e:
            raise ImageError(f"Failed to push image {image}: {e.explanation or e}") from e
        except (DockerException, RequestException) as e:
            raise ImageError(f"Failed to push image {image}: {e}") from e

        return image

    def close(self) -> None:
        """Release the connection to the docker daemon."""
        self._client.close()
