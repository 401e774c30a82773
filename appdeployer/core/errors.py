"""Exception hierarchy for appdeployer."""


class AppDeployerError(Exception):
    """Base class for every error that aborts a deployment run."""


class ConfigurationError(AppDeployerError):
    """Options are missing, malformed or inconsistent.

    Always raised before any remote call is made.
    """


class SourceUpdateError(AppDeployerError):
    """Pulling the latest application sources failed."""


class ImageError(AppDeployerError):
    """Building or pushing the container image failed."""


class ReconcileError(AppDeployerError):
    """A Kubernetes API call failed in a way that cannot be treated as success."""
