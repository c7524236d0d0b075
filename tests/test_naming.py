"""Tests for azext_hcimigrate.naming — derived names and constraints."""

import pytest

from azext_hcimigrate import resource_ids
from azext_hcimigrate.errors import ValidationError
from azext_hcimigrate.naming import (
    MAX_STORAGE_ACCOUNT_NAME_LENGTH,
    MAX_VAULT_NAME_LENGTH,
    MigrationNaming,
    check_name_length,
)

PROJECT_ID = resource_ids.migrate_project_id("00000000-0000-0000-0000-000000000001", "rg1", "proj")


class TestMigrationNaming:

    def test_names_are_deterministic(self):
        first = MigrationNaming(PROJECT_ID, "proj")
        second = MigrationNaming(PROJECT_ID.upper(), "proj")
        assert first.vault() == second.vault()
        assert first.storage_account() == second.storage_account()

    def test_different_projects_get_different_names(self):
        other = resource_ids.migrate_project_id("00000000-0000-0000-0000-000000000001", "rg2", "proj")
        assert MigrationNaming(PROJECT_ID, "proj").vault() != MigrationNaming(other, "proj").vault()

    def test_vault_name(self):
        name = MigrationNaming(PROJECT_ID, "proj").vault()
        assert name.startswith("proj")
        assert name.endswith("replicationvault")
        assert len(name) <= MAX_VAULT_NAME_LENGTH

    def test_storage_account_constraints(self):
        name = MigrationNaming(PROJECT_ID, "proj").storage_account()
        assert name.startswith("migratersa")
        assert name == name.lower()
        assert "-" not in name
        assert len(name) <= MAX_STORAGE_ACCOUNT_NAME_LENGTH

    def test_fabric_and_dra(self):
        naming = MigrationNaming(PROJECT_ID, "proj")
        assert naming.fabric("vmw-app", "VMware") == "vmw-app-vmware-fabric"
        assert naming.fabric("hci-app", "AzStackHCI") == "hci-app-azstackhci-fabric"
        assert naming.dra("vmw-app") == "vmw-app-dra"

    def test_policy_and_extension(self):
        naming = MigrationNaming(PROJECT_ID, "proj")
        assert naming.policy("vault1", "VMwareToAzStackHCI") == "vault1VMwareToAzStackHCIpolicy"
        assert naming.extension("src", "tgt") == "src-tgt-MigReplicationExtn"

    def test_overrides(self):
        naming = MigrationNaming(PROJECT_ID, "proj", {
            "replication_vault": "my-vault",
            "storage_account": "My-Cache-Account",
            "fabric:VMware": "my-source-fabric",
        })
        assert naming.vault() == "my-vault"
        assert naming.storage_account() == "mycacheaccount"
        assert naming.fabric("vmw-app", "VMware") == "my-source-fabric"
        assert naming.fabric("hci-app", "AzStackHCI") == "hci-app-azstackhci-fabric"

    def test_invalid_characters_are_removed(self):
        naming = MigrationNaming(PROJECT_ID, "my project!")
        assert " " not in naming.vault()
        assert "!" not in naming.vault()

    def test_long_project_name_is_truncated(self):
        naming = MigrationNaming(PROJECT_ID, "p" * 120)
        assert len(naming.vault()) == MAX_VAULT_NAME_LENGTH
        assert naming.vault().endswith("replicationvault")

    def test_long_vault_keeps_policies_apart(self):
        vault = "v" * 78
        naming = MigrationNaming(PROJECT_ID, "proj")
        vmware = naming.policy(vault, "VMwareToAzStackHCI")
        hyperv = naming.policy(vault, "HyperVToAzStackHCI")
        assert vmware != hyperv
        assert vmware.endswith("VMwareToAzStackHCIpolicy")
        assert hyperv.endswith("HyperVToAzStackHCIpolicy")
        assert len(vmware) <= 80
        assert len(hyperv) <= 80

    def test_long_fabric_names_keep_extension_suffix(self):
        naming = MigrationNaming(PROJECT_ID, "proj")
        name = naming.extension("s" * 60, "t" * 60)
        assert name.endswith("-MigReplicationExtn")
        assert len(name) <= 80
        assert name != naming.extension("s" * 60, "u" * 60)


class TestCheckNameLength:

    @pytest.mark.parametrize("resource_type,limit", [
        ("replication_vault", 80),
        ("storage_account", 24),
        ("virtual_machine", 64),
        ("resource_group", 90),
    ])
    def test_limits(self, resource_type, limit):
        assert check_name_length(resource_type, "a" * limit) == "a" * limit
        with pytest.raises(ValidationError, match="exceeds maximum length"):
            check_name_length(resource_type, "a" * (limit + 1))

    def test_empty_name(self):
        with pytest.raises(ValidationError, match="cannot be empty"):
            check_name_length("virtual_machine", "")
