"""Core building blocks: option resolution, image building and cluster reconciliation."""
