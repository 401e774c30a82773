"""appdeployer - build an app image and run it on Kubernetes."""

__version__ = "0.1.0"
