"""Build orchestration module.

This module handles:
- Build configuration schema and loading
- Fingerprint computation
- Running the container build engine
- Coordinating fingerprint, secret staging and build
"""

from buildstash.builds.schema import BuildArg, BuildConfig, ExportTarget

__all__ = ["BuildArg", "BuildConfig", "ExportTarget"]

# Submodules are imported directly to avoid circular imports
# Access via buildstash.builds.coordinator, etc.
