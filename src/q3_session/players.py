"""Connected player bookkeeping for a server session"""

import re
import time
from datetime import datetime, timezone
from typing import Callable, Iterator
from uuid import uuid4

import pydantic
from loguru import logger

from q3_session import constants
from q3_session.log_types import Team

_leading_digit_pattern = re.compile(r"^[0-9]")


def clean_name(name: str) -> str:
    """Strip the leading digit the game server prepends to some player names"""
    return re.sub(_leading_digit_pattern, "", name)


def split_address(address: str | None) -> tuple[str | None, int | None]:
    """Split an ip:port string, either part is None when absent or invalid"""
    if not address:
        return None, None

    host, separator, port = address.rpartition(":")
    if not separator:
        return address, None

    try:
        return host, int(port)
    except ValueError:
        return host, None


class Player(pydantic.BaseModel):
    """A player connected to a game server slot"""

    model_config = pydantic.ConfigDict(validate_assignment=True)

    id: int
    name: str | None = None
    level: int = 0
    team: Team = Team.SPEC
    is_bot: bool = False
    addr: str | None = None
    port: int | None = None
    guid: str | None = None
    joined_at: pydantic.AwareDatetime = pydantic.Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)
    )
    begun: bool = False
    # Unique for the whole session, unlike slot ids which are reused
    uuid: str = pydantic.Field(default_factory=lambda: uuid4().hex)
    other: dict[str, str] = {}
    auth_login: str | None = None
    auth_rcon_level: int | None = None
    auth_notoriety: str | None = None

    @property
    def ip(self) -> str | None:
        return self.addr


class PlayerRegistry:
    """Players of one server session keyed by slot id"""

    def __init__(
        self, default_level: int = 0, clock: Callable[[], float] = time.time
    ) -> None:
        self.default_level = default_level
        self._clock = clock
        self._players: dict[int, Player] = {}

    def __len__(self) -> int:
        return len(self._players)

    def __iter__(self) -> Iterator[Player]:
        return iter(list(self._players.values()))

    def __contains__(self, player_id: object) -> bool:
        return player_id in self._players

    def get(self, player_id: int) -> Player | None:
        return self._players.get(player_id)

    def ids(self) -> list[int]:
        return list(self._players)

    def connect(self, player_id: int) -> Player:
        """Create a fresh player in the slot, replacing whatever was left in it"""
        player = Player(
            id=player_id,
            level=self.default_level,
            joined_at=datetime.fromtimestamp(self._clock(), tz=timezone.utc),
        )
        self._players[player_id] = player
        return player

    def _get_or_connect(self, player_id: int) -> Player:
        # Slots announced before the session attached never saw a ClientConnect
        if (player := self._players.get(player_id)) is None:
            logger.debug(f"Creating player for unannounced slot {player_id}")
            player = self.connect(player_id)

        return player

    def remove(self, player_id: int) -> Player | None:
        return self._players.pop(player_id, None)

    def clear(self) -> None:
        self._players.clear()

    def merge_userinfo(self, player_id: int, userinfo: dict[str, str]) -> Player:
        """Merge a full userinfo into the player, keeping fields the userinfo lacks"""
        player = self._get_or_connect(player_id)

        if constants.BOT_ONLY_USERINFO_KEY in userinfo:
            player.is_bot = True
        else:
            player.is_bot = False
            addr, port = split_address(userinfo.get("ip"))
            if addr is not None:
                player.addr = addr
                player.port = port
            if "cl_guid" in userinfo:
                player.guid = userinfo["cl_guid"]

        if "name" in userinfo:
            player.name = clean_name(userinfo["name"])

        player.other = {**player.other, **userinfo}
        return player

    def apply_userinfo_changed(
        self, player_id: int, userinfo: dict[str, str]
    ) -> Player:
        """Apply a short userinfo (n = name, t = team, a0-a2 = colors)"""
        player = self._get_or_connect(player_id)

        if "t" in userinfo:
            try:
                player.team = Team(int(userinfo["t"]))
            except ValueError:
                logger.warning(f"Invalid team `{userinfo['t']}` for player {player_id}")

        if all(key in userinfo for key in ("a0", "a1", "a2")):
            player.other = {
                **player.other,
                "cg_rgb": f"{userinfo['a0']} {userinfo['a1']} {userinfo['a2']}",
            }

        if "n" in userinfo:
            player.name = clean_name(userinfo["n"])

        return player

    def begin(self, player_id: int) -> Player:
        player = self._get_or_connect(player_id)
        player.begun = True
        return player
