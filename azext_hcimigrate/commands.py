"""Command table registration for az hcimigrate."""


def load_command_table(self, _):
    """Register all hcimigrate commands."""

    with self.command_group("hcimigrate", is_preview=True) as g:
        g.custom_command("discover", "hcimigrate_discover")
        g.custom_command("init", "hcimigrate_init")
        g.custom_command("replicate", "hcimigrate_replicate")
        g.custom_command("get", "hcimigrate_get")
        g.custom_command("list", "hcimigrate_list")
        g.custom_command("remove", "hcimigrate_remove")
        g.custom_command("outputs", "hcimigrate_outputs")
        g.custom_command("status", "hcimigrate_status")

    with self.command_group("hcimigrate config", is_preview=True) as g:
        g.custom_command("init", "hcimigrate_config_init")
        g.custom_command("show", "hcimigrate_config_show")
        g.custom_command("get", "hcimigrate_config_get")
        g.custom_command("set", "hcimigrate_config_set")
