"""buildstash - change-triggered secret staging for container image builds.

This package fingerprints a build's declarative inputs, keeps a short-lived
credential staged until those inputs change, and hands the credential to a
container build as a redacted build argument.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
