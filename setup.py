#!/usr/bin/env python
"""Azure CLI Extension: az hcimigrate — Azure Migrate to Azure Stack HCI."""

from setuptools import find_packages, setup

VERSION = "0.1.0b1"
CLASSIFIERS = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "License :: OSI Approved :: MIT License",
]

DEPENDENCIES = [
    "knack>=0.11.0",
    "pyyaml>=6.0",
    "requests>=2.28.0",
    "rich>=13.0.0",
    # prompt_toolkit for the confirmation prompt of destructive commands
    "prompt_toolkit>=3.0.0",
    # cross-process lock for the local control-plane state file
    "filelock>=3.12.0",
]

setup(
    name="az-hcimigrate",
    version=VERSION,
    description="Azure CLI extension for migrating VMware and Hyper-V machines to Azure Stack HCI",
    long_description="Discovers, initializes and replicates servers to AzStackHCI through Azure Migrate.",
    license="MIT",
    author="Microsoft",
    author_email="",
    url="https://github.com/Azure/azure-cli-extensions",
    classifiers=CLASSIFIERS,
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=DEPENDENCIES,
    extras_require={
        "test": ["pytest>=7.0"],
    },
    package_data={
        "azext_hcimigrate": [
            "azext_metadata.json",
        ]
    },
    entry_points={
        "azure.cli.extensions": [
            "hcimigrate=azext_hcimigrate",
        ]
    },
)
