"""
buildcloud — Hyper-V build cloud provisioner.

Builds a base VM image, prepares host networking, registers the
host as a build cloud with the CI service, and installs the host agent.
Run it once per host; run it again to roll out a new image.
"""

import os

__version__ = "0.1.0"

BUILDCLOUD_CONFIG = os.environ.get("BUILDCLOUD_CONFIG", "~/.buildcloud/config.yaml")
