from __future__ import annotations


class ConfigError(Exception):
    """sql.yml or the token file is missing or malformed."""


class GatewayError(Exception):
    def __init__(self, message: str, *, guild_id: int | None = None, operation: str | None = None) -> None:
        super().__init__(message)
        self.guild_id = guild_id
        self.operation = operation


class GatewayConnectionError(GatewayError):
    pass


class GatewaySessionError(GatewayError):
    pass


class StoreError(Exception):
    def __init__(self, message: str, *, operation: str | None = None, guild_id: int | None = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.guild_id = guild_id


class StoreUnavailable(StoreError):
    """The connection could not be opened or the schema could not be created."""
