import pytest

from q3_session.config import ServerConfig
from q3_session.exceptions import ConfigError
from q3_session.rcon import ResendPolicy


def test_defaults():
    config = ServerConfig.from_mapping({})

    assert config.address is None
    assert config.port is None
    assert config.rcon_send_interval is True
    assert config.rcon_resend_policy is ResendPolicy.DROP
    assert config.use_plugins is None
    assert config.default_level == 0
    assert config.auto_hold is False


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("stats, admin", ["stats", "admin", "core"]),
        ("core,stats", ["core", "stats"]),
        ("  ", ["core"]),
        (["admin"], ["admin", "core"]),
    ],
)
def test_use_plugins(raw, expected):
    assert ServerConfig.from_mapping({"UsePlugins": raw}).use_plugins == expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("yes", True),
        ("on", True),
        ("1", True),
        ("true", True),
        ("no", False),
        ("off", False),
        ("0", False),
    ],
)
def test_bool_keys(raw, expected):
    config = ServerConfig.from_mapping({"AutoHold": raw, "RConSendInterval": raw})

    assert config.auto_hold is expected
    assert config.rcon_send_interval is expected


def test_full_section():
    config = ServerConfig.from_mapping(
        {
            "Address": "127.0.0.1",
            "Port": "27960",
            "RConPassword": "secret",
            "RecoverPassword": "recover",
            "RConResendPolicy": "resend",
            "Logfile": "/tmp/games.log",
            "DefaultLevel": "1",
            "Unknown": "ignored",
        }
    )

    assert config.address == "127.0.0.1"
    assert config.port == 27960
    assert config.rcon_password == "secret"
    assert config.recover_password == "recover"
    assert config.rcon_resend_policy is ResendPolicy.RESEND
    assert config.logfile == "/tmp/games.log"
    assert config.default_level == 1


@pytest.mark.parametrize(
    "mapping",
    [
        {"Port": "70000"},
        {"Port": "-1"},
        {"Port": "abc"},
        {"AutoHold": "maybe"},
        {"DefaultLevel": "high"},
        {"RConResendPolicy": "twice"},
    ],
)
def test_invalid_values(mapping):
    with pytest.raises(ConfigError):
        ServerConfig.from_mapping(mapping)
