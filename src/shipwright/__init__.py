"""Shipwright - Container promotion pipeline for low-code applications.

This package validates an application source tree, builds a versioned
container image from it, smoke tests the image, publishes it to a registry,
points the deployment descriptor at it, and records a deployment report.
"""

__version__ = "0.1.0"
