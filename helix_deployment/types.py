import click
from eth_utils import to_checksum_address


class MinInt(click.ParamType):
    name = "minint"

    def __init__(self, min_value):
        self.min_value = min_value

    def convert(self, value, param, ctx):
        try:
            ivalue = int(value)
        except ValueError:
            self.fail(f"{value} is not a valid integer", param, ctx)
        if ivalue < self.min_value:
            self.fail(
                f"{value} is less than the minimum allowed value of {self.min_value}", param, ctx
            )
        return ivalue


class ChecksumAddress(click.ParamType):
    name = "checksum_address"

    def convert(self, value, param, ctx):
        try:
            value = to_checksum_address(value=value)
        except ValueError:
            self.fail(f"{value} is not a valid address", param, ctx)
        else:
            return value


class NetworkId(click.ParamType):
    """A chain id (97) or a symbolic network name (testnetBSC)."""

    name = "network"

    def convert(self, value, param, ctx):
        if isinstance(value, int):
            return value
        value = str(value).strip()
        if not value:
            self.fail("Network identifier cannot be empty", param, ctx)
        return int(value) if value.isdigit() else value
