"""Per server configuration, as the flat key/value mapping of a server section"""

from typing import Any, Mapping

import pydantic

from q3_session.exceptions import ConfigError
from q3_session.rcon import ResendPolicy


class ServerConfig(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(populate_by_name=True, extra="ignore")

    address: str | None = pydantic.Field(default=None, alias="Address")
    port: pydantic.conint(ge=0, le=65535) | None = pydantic.Field(  # type: ignore
        default=None, alias="Port"
    )
    rcon_password: str | None = pydantic.Field(default=None, alias="RConPassword")
    recover_password: str | None = pydantic.Field(
        default=None, alias="RecoverPassword"
    )
    rcon_send_interval: bool = pydantic.Field(default=True, alias="RConSendInterval")
    rcon_resend_policy: ResendPolicy = pydantic.Field(
        default=ResendPolicy.DROP, alias="RConResendPolicy"
    )
    logfile: str | None = pydantic.Field(default=None, alias="Logfile")
    use_plugins: list[str] | None = pydantic.Field(default=None, alias="UsePlugins")
    default_level: int = pydantic.Field(default=0, alias="DefaultLevel")
    auto_hold: bool = pydantic.Field(default=False, alias="AutoHold")

    @pydantic.field_validator("use_plugins", mode="before")
    @classmethod
    def split_plugins(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = [plugin.strip() for plugin in v.split(",") if plugin.strip()]
        return v

    @pydantic.field_validator("use_plugins")
    @classmethod
    def always_use_core(cls, v: list[str] | None) -> list[str] | None:
        if v is not None and "core" not in v:
            v = [*v, "core"]
        return v

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "ServerConfig":
        """Validate a raw key/value mapping

        Raises
            ConfigError: if any recognized key has an invalid value
        """
        try:
            return cls.model_validate(dict(config))
        except pydantic.ValidationError as e:
            raise ConfigError(str(e))
