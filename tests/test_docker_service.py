"""Tests for building and pushing the app image."""

from typing import Callable
from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, BuildError
from requests import exceptions as requests_errors

from appdeployer.core.docker_service import DockerService
from appdeployer.core.errors import ImageError
from appdeployer.core.models import DeployPlan

PlanFactory = Callable[..., DeployPlan]


@pytest.fixture
def docker_client() -> MagicMock:
    client = MagicMock()
    client.images.build.return_value = (MagicMock(), iter([{"stream": "Step 1/1 : FROM scratch\n"}]))
    client.images.push.return_value = iter([{"status": "Pushing", "id": "abc"}, {"status": "latest: digest"}])
    return client


def test_build_image(make_plan: PlanFactory, docker_client: MagicMock) -> None:
    plan = make_plan()

    image = DockerService(docker_client).build_image(plan.build)

    assert image == "alice/demo:latest"
    docker_client.images.build.assert_called_once_with(
        path=str(plan.build.app_dir),
        dockerfile=str(plan.build.dockerfile),
        tag="alice/demo:latest",
        rm=True,
        forcerm=True,
    )


def test_build_failure(make_plan: PlanFactory, docker_client: MagicMock) -> None:
    docker_client.images.build.side_effect = BuildError("COPY failed: no such file", build_log=[])

    with pytest.raises(ImageError, match="COPY failed"):
        DockerService(docker_client).build_image(make_plan().build)


def test_push_with_credentials(make_plan: PlanFactory, docker_client: MagicMock) -> None:
    """Test that explicit credentials are sent with the push."""
    plan = make_plan(**{"docker.password": "s3cret"})

    image = DockerService(docker_client).push_image(plan.build)

    assert image == "alice/demo:latest"
    docker_client.images.push.assert_called_once_with(
        "alice/demo",
        tag="latest",
        auth_config={"username": "alice", "password": "s3cret"},
        stream=True,
        decode=True,
    )


def test_push_without_password_uses_docker_login(make_plan: PlanFactory, docker_client: MagicMock) -> None:
    DockerService(docker_client).push_image(make_plan().build)

    assert docker_client.images.push.call_args.kwargs["auth_config"] is None


def test_push_to_private_registry(make_plan: PlanFactory, docker_client: MagicMock) -> None:
    plan = make_plan(**{"docker.registry": "https://registry.example.com", "docker.repository": "team/demo"})

    DockerService(docker_client).push_image(plan.build)

    assert docker_client.images.push.call_args.args == ("registry.example.com/team/demo",)


def test_push_error_in_stream(make_plan: PlanFactory, docker_client: MagicMock) -> None:
    """Test that errors reported in the push stream fail the push."""
    docker_client.images.push.return_value = iter(
        [{"status": "Preparing"}, {"error": "denied", "errorDetail": {"message": "requested access is denied"}}]
    )

    with pytest.raises(ImageError, match="requested access is denied"):
        DockerService(docker_client).push_image(make_plan().build)


def test_push_api_error(make_plan: PlanFactory, docker_client: MagicMock) -> None:
    docker_client.images.push.side_effect = APIError("500 Server Error", explanation="registry unavailable")

    with pytest.raises(ImageError, match="registry unavailable"):
        DockerService(docker_client).push_image(make_plan().build)


def test_context_manager_closes_client(docker_client: MagicMock) -> None:
    with DockerService(docker_client):
        pass

    docker_client.close.assert_called_once_with()


def test_build_timeout(make_plan: PlanFactory, docker_client: MagicMock) -> None:
    """Test that a daemon timeout during the build is an image error."""
    docker_client.images.build.side_effect = requests_errors.ReadTimeout("Read timed out. (read timeout=600)")

    with pytest.raises(ImageError, match="Read timed out"):
        DockerService(docker_client).build_image(make_plan().build)


def test_push_connection_error(make_plan: PlanFactory, docker_client: MagicMock) -> None:
    docker_client.images.push.side_effect = requests_errors.ConnectionError("daemon gone")

    with pytest.raises(ImageError, match="daemon gone"):
        DockerService(docker_client).push_image(make_plan().build)
