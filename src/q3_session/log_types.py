"""Models for game server log events"""

from datetime import timedelta
from enum import IntEnum
from typing import TYPE_CHECKING, Protocol, TypeAlias

import pydantic

from q3_session import constants

if TYPE_CHECKING:
    from q3_session.session import ServerSession


class Team(IntEnum):
    FREE = constants.TEAM_FREE
    RED = constants.TEAM_RED
    BLUE = constants.TEAM_BLUE
    SPEC = constants.TEAM_SPEC


class BaseServerEvent(pydantic.BaseModel):
    # Relative map time from the log line, None for events synthesized by the session
    game_time: timedelta | None = None


class StartupGameEvent(BaseServerEvent):
    """The session attached to the game server"""


class HoldServerEvent(BaseServerEvent):
    """The session was put on hold"""


class ShutdownGameEvent(BaseServerEvent):
    """The game server is going down (also happens on every map change)"""


class EndGameEvent(BaseServerEvent):
    """The session detached from the game server"""


class HotpotatoEvent(BaseServerEvent):
    """The bomb (hot potato) timer ran out"""


class ClientConnectEvent(BaseServerEvent):
    player_id: int


class ClientDisconnectEvent(BaseServerEvent):
    player_id: int


class ClientBeginEvent(BaseServerEvent):
    player_id: int


class ClientUserinfoEvent(BaseServerEvent):
    """A player (re)sent their full userinfo"""

    player_id: int
    userinfo: dict[str, str]


class ClientUserinfoChangedEvent(BaseServerEvent):
    """A player's short userinfo (name, team, colors) changed"""

    player_id: int
    userinfo: dict[str, str]


class InitGameEvent(BaseServerEvent):
    """A new map started"""

    server_info: dict[str, str]


class InitRoundEvent(BaseServerEvent):
    """A new round started, the server info is sent again"""

    server_info: dict[str, str]


class ExitEvent(BaseServerEvent):
    """The map ended"""

    reason: str


class SurvivorWinnerEvent(BaseServerEvent):
    """A survivor round ended"""

    token: str
    team: Team | None


class KillEvent(BaseServerEvent):
    killer_id: int | None
    victim_id: int | None
    means_of_death: int | None
    text: str | None = None


class HitEvent(BaseServerEvent):
    victim_id: int | None
    attacker_id: int | None
    hit_location: int | None
    weapon: int | None
    text: str | None = None


class ItemEvent(BaseServerEvent):
    player_id: int | None
    item: str | None


class FlagEvent(BaseServerEvent):
    player_id: int | None
    action: int | None
    flag: str | None = None

    @property
    def captured(self) -> bool:
        return self.action == constants.FLAG_CAPTURED


class SayEvent(BaseServerEvent):
    player_id: int
    author: str
    message: str
    team_only: bool = False


class CallvoteEvent(BaseServerEvent):
    player_id: int
    vote_string: str


class VoteEvent(BaseServerEvent):
    """A player voted (1 = yes, 2 = no)"""

    player_id: int
    vote: int


class RadioEvent(BaseServerEvent):
    player_id: int
    group_id: int
    message_id: int
    location: str
    message: str


class AccountKickEvent(BaseServerEvent):
    player_id: int
    login: str
    reason: str


class AccountBanEvent(BaseServerEvent):
    player_id: int
    login: str
    days: int
    hours: int
    minutes: int

    @property
    def duration(self) -> timedelta:
        return timedelta(days=self.days, hours=self.hours, minutes=self.minutes)


class AccountValidatedEvent(BaseServerEvent):
    player_id: int
    login: str
    rcon_level: int
    notoriety: str


class AccountRejectedEvent(BaseServerEvent):
    player_id: int
    login: str
    reason: str


ServerEvent: TypeAlias = (
    AccountBanEvent
    | AccountKickEvent
    | AccountRejectedEvent
    | AccountValidatedEvent
    | CallvoteEvent
    | ClientBeginEvent
    | ClientConnectEvent
    | ClientDisconnectEvent
    | ClientUserinfoChangedEvent
    | ClientUserinfoEvent
    | EndGameEvent
    | ExitEvent
    | FlagEvent
    | HitEvent
    | HoldServerEvent
    | HotpotatoEvent
    | InitGameEvent
    | InitRoundEvent
    | ItemEvent
    | KillEvent
    | RadioEvent
    | SayEvent
    | ShutdownGameEvent
    | StartupGameEvent
    | SurvivorWinnerEvent
    | VoteEvent
)


class EventSink(Protocol):
    """The plugin layer, as seen from a server session"""

    def call_server_event(self, session: "ServerSession", event: ServerEvent) -> None:
        ...

    def call_command(
        self, session: "ServerSession", command: str, player_id: int, args: list[str]
    ) -> None:
        ...

    def call_all_routines(self, session: "ServerSession") -> None:
        ...
