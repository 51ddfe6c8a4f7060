"""Models for RCon query responses"""

import pydantic


class StatusPlayer(pydantic.BaseModel):
    """One row of the `status` command"""

    name: str
    # ip:port, None for bots
    address: str | None = None
    score: int = 0
    ping: int = 0


class ServerStatus(pydantic.BaseModel):
    """The result of the `status` command, players keyed by slot id"""

    map_name: str | None = None
    players: dict[int, StatusPlayer] = {}
