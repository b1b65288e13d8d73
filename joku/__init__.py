"""joku: a terminal remote for Roku devices.

Quickstart::

    from joku.client import ECPClient
    from joku.commands import CommandName, encode
    from joku.registry import DeviceRegistry

    store = DeviceRegistry("~/.config/joku/config.toml").load()
    async with ECPClient() as client:
        await client.execute(encode(CommandName.HOME), store.device)
"""

__version__ = "0.2.0"
