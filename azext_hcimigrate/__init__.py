"""Azure CLI Extension: az hcimigrate — migrate VMware and Hyper-V machines to AzStackHCI."""

try:
    from azure.cli.core import AzCommandsLoader
except ImportError:
    # Without the Azure CLI the stages and control planes can still be
    # imported on their own, e.g. by the tests.
    AzCommandsLoader = None  # type: ignore[assignment,misc]

if AzCommandsLoader is not None:
    from azext_hcimigrate._help import helps  # type: ignore[attr-defined]  # noqa: F401

    class HciMigrateCommandsLoader(AzCommandsLoader):
        """Command loader for az hcimigrate extension."""

        def __init__(self, cli_ctx=None):
            from azure.cli.core.commands import CliCommandType

            hcimigrate_custom = CliCommandType(operations_tmpl="azext_hcimigrate.custom#{}")
            super().__init__(cli_ctx=cli_ctx, custom_command_type=hcimigrate_custom)

        def load_command_table(self, args):
            from azext_hcimigrate.commands import load_command_table

            load_command_table(self, args)
            return self.command_table

        def load_arguments(self, command):
            from azext_hcimigrate._params import load_arguments

            load_arguments(self, command)

    COMMAND_LOADER_CLS = HciMigrateCommandsLoader
