"""Package version."""

from vigil_schemas.version import VersionInfo

VERSION = VersionInfo(major=0, minor=1, patch=0)
