"""Shared test fixtures for azext_hcimigrate tests."""

import copy
from unittest.mock import patch

import pytest
import yaml

from azext_hcimigrate import resource_ids
from azext_hcimigrate.config import DEFAULT_CONFIG
from azext_hcimigrate.controlplane.local import LocalControlPlane
from azext_hcimigrate.retry import RetryPolicy

SUB = "00000000-0000-0000-0000-000000000001"
HCI_SUB = "00000000-0000-0000-0000-000000000002"
RG = "migrate-rg"
PROJECT = "test-project"
LOCATION = "eastus"
PROJECT_ID = resource_ids.migrate_project_id(SUB, RG, PROJECT)


# ------------------------------------------------------------------
# Global: prevent real telemetry HTTP calls during tests
# ------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _no_telemetry_network():
    """Prevent telemetry from making real HTTP requests during tests.

    The @track decorator fires on every hcimigrate_* command.  With a
    connection string in the environment, _post() would send a real
    request for every test invocation.
    """
    with patch("azext_hcimigrate.telemetry._post", return_value=True):
        yield


def machine_record(name, os_type="windowsguest", fabric_type="VMware", ip="10.0.0.4", boot="BIOS"):
    """A discovery record as the appliance reports it."""
    return {
        "machineName": name,
        "osType": os_type,
        "osName": "Ubuntu 22.04" if os_type == "linuxguest" else "Microsoft Windows Server 2019 (64-bit)",
        "fabricType": fabric_type,
        "ipAddresses": [ip],
        "bootType": boot,
        "disks": [
            {"diskId": f"{name}-disk-0", "isOsDisk": True, "maxSizeInBytes": 68719476736},
            {"diskId": f"{name}-disk-1", "isOsDisk": False, "maxSizeInBytes": 137438953472},
        ],
        "nics": [{"nicId": f"{name}-nic-0", "macAddress": "00:15:5d:00:00:01"}],
    }


@pytest.fixture
def retry():
    """Zero-delay retry policy."""
    return RetryPolicy(max_retries=2, delay_seconds=0, sleep=lambda s: None)


@pytest.fixture
def control_plane():
    """Local control plane with a project and three discovered machines."""
    cp = LocalControlPlane()
    cp.seed_project(SUB, RG, PROJECT, LOCATION)
    cp.seed_machine(PROJECT_ID, "test-machine-001", machine_record("web01"))
    cp.seed_machine(PROJECT_ID, "test-machine-002", machine_record("db01", os_type="linuxguest", ip="10.0.0.5"))
    cp.seed_machine(PROJECT_ID, "test-machine-003", machine_record("hv01", fabric_type="HyperV", boot="EFI"))
    return cp


@pytest.fixture
def tmp_project(tmp_path):
    """Create an empty working directory."""
    project_dir = tmp_path / "test-project"
    project_dir.mkdir()
    return project_dir


@pytest.fixture
def sample_config():
    """Return a deep copy of the default config with test values."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["project"]["name"] = PROJECT
    config["project"]["resource_group"] = RG
    config["project"]["location"] = LOCATION
    config["project"]["subscription_id"] = SUB
    config["appliances"]["source"] = "vmw-appliance"
    config["appliances"]["target"] = "hci-appliance"
    config["hci"]["cluster_id"] = (
        f"/subscriptions/{SUB}/resourceGroups/hci-rg/providers/Microsoft.AzureStackHCI/clusters/hci01"
    )
    config["hci"]["target_resource_group_id"] = f"/subscriptions/{SUB}/resourceGroups/vms-rg"
    config["hci"]["storage_path_id"] = (
        f"/subscriptions/{SUB}/resourceGroups/hci-rg/providers/Microsoft.AzureStackHCI/storageContainers/sc01"
    )
    config["controlplane"]["backend"] = "local"
    config["retry"]["delay_seconds"] = 0
    return config


@pytest.fixture
def project_with_config(tmp_project, sample_config):
    """A working directory with hcimigrate.yaml using the local backend."""
    with open(tmp_project / "hcimigrate.yaml", "w", encoding="utf-8") as f:
        yaml.dump(sample_config, f, default_flow_style=False)
    return tmp_project


@pytest.fixture
def project_with_state(project_with_config):
    """Like project_with_config, with the local control-plane state seeded."""
    state_path = project_with_config / DEFAULT_CONFIG["controlplane"]["local_state_path"]
    cp = LocalControlPlane(state_path)
    cp.seed_project(SUB, RG, PROJECT, LOCATION)
    cp.seed_machine(PROJECT_ID, "test-machine-001", machine_record("web01"))
    cp.seed_machine(PROJECT_ID, "test-machine-002", machine_record("db01", os_type="linuxguest"))
    return project_with_config
