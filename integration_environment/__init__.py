# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Domain controller and Debian host for testing distros in a Docker container.

Run: python -m integration_environment [--tags windows,linux,build_artifacts]

Tags:
    windows: set up the domain controller only;
    linux: set up the Debian host, including build artifacts;
    build_artifacts: only extract PSWSMan.zip, downloaded from the GitHub Actions run.
"""
