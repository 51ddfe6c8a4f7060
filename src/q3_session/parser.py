import re
from datetime import timedelta

from loguru import logger

from q3_session import constants
from q3_session.exceptions import ProtocolError
from q3_session.log_types import (
    AccountBanEvent,
    AccountKickEvent,
    AccountRejectedEvent,
    AccountValidatedEvent,
    CallvoteEvent,
    ClientBeginEvent,
    ClientConnectEvent,
    ClientDisconnectEvent,
    ClientUserinfoChangedEvent,
    ClientUserinfoEvent,
    ExitEvent,
    FlagEvent,
    HitEvent,
    HotpotatoEvent,
    InitGameEvent,
    InitRoundEvent,
    ItemEvent,
    KillEvent,
    RadioEvent,
    SayEvent,
    ServerEvent,
    ShutdownGameEvent,
    SurvivorWinnerEvent,
    Team,
    VoteEvent,
)


class LineProtocolParser:
    """Parses raw Quake3 game log lines into typed server events

    Stateless: player and score bookkeeping is done by the session from the
    returned events.
    """

    #   0:00 InitGame: \sv_allowdownload\0\g_matchmode\0\g_gametype\4...
    # 12:34 Kill: 0 1 16: Bob killed Alice by UT_MOD_SPAS
    _log_line_pattern = re.compile(r"^\s*(\d+:\d{2}|\d+)\s+(.*)$")

    # say: 0 Bob: !help
    _say_pattern = re.compile(r"^(\d+)\s+(.*?):\s?(.*)$", re.DOTALL)
    # Callvote: 1 - "map ut4_casa"
    _callvote_pattern = re.compile(r'^(\d+)\s*-\s*"(.*)"$')
    # Vote: 0 - 1
    _vote_pattern = re.compile(r"^(\d+)\s*-\s*(\d+)$")
    # Radio: 0 - 7 - 2 - "Courtyard" - "I'm going for the flag"
    _radio_pattern = re.compile(
        r'^(\d+)\s*-\s*(\d+)\s*-\s*(\d+)\s*-\s*"(.*?)"\s*-\s*"(.*)"$'
    )
    # AccountKick: 3 - bob: no valid account
    _account_kick_pattern = re.compile(r"^(\d+)\s*-\s*(.*?):\s*(.*)$")
    # AccountBan: 3 - bob - 1d - 2h - 30m
    _account_ban_pattern = re.compile(
        r"^(\d+)\s*-\s*(.+?)\s*-\s*(\d+)d\s*-\s*(\d+)h\s*-\s*(\d+)m$"
    )
    # AccountValidated: 3 - bob - 2 - "serious"
    _account_validated_pattern = re.compile(
        r'^(\d+)\s*-\s*(.+?)\s*-\s*(-?\d+)\s*-\s*"(.*)"$'
    )
    # AccountRejected: 3 - bob - "account banned"
    _account_rejected_pattern = re.compile(r'^(\d+)\s*-\s*(.+?)\s*-\s*"(.*)"$')

    @staticmethod
    def _relative_time_to_timedelta(relative_time: str) -> timedelta:
        """Convert a relative game log timestamp (M:SS or seconds) to a timedelta"""
        match relative_time.split(":"):
            case [seconds]:
                return timedelta(seconds=int(seconds))
            case [minutes, seconds]:
                return timedelta(minutes=int(minutes), seconds=int(seconds))
            case _:
                raise ValueError(f"Unable to parse relative time=`{relative_time}`")

    @classmethod
    def split_raw_log_line(cls, line: str) -> tuple[str, timedelta | None]:
        """Strip the relative timestamp prefix, returning the line body and the timestamp"""
        line = line.rstrip("\r\n")
        if match := re.match(cls._log_line_pattern, line):
            raw_time, body = match.groups()
            return body, cls._relative_time_to_timedelta(raw_time)

        return line.strip(), None

    @staticmethod
    def parse_info(info: str) -> dict[str, str]:
        """Parse a back-slash delimited info string into a dict"""
        # \ip\145.99.135.227:27960\challenge\-232198920\qport\2781\name\Bob...
        # n\Bob\t\1\r\2\tl\0\f0\\f1\\f2\\a0\0\a1\0\a2\0
        parts = info.strip().lstrip("\\").split("\\")
        return dict(zip(parts[0::2], parts[1::2]))

    @staticmethod
    def team_number(token: str) -> Team | None:
        """Resolve a team token (red, Blue, spectator...) to a team, None if unknown"""
        team = constants.TEAM_NAMES.get(token.strip().lower())
        if team is None:
            return None

        return Team(team)

    @staticmethod
    def _parse_id(raw: str, line: str) -> int:
        try:
            return int(raw.split(maxsplit=1)[0])
        except (IndexError, ValueError):
            raise ProtocolError(f"Unable to parse player id in `{line}`")

    @classmethod
    def _parse_id_info(cls, raw: str, line: str) -> tuple[int, dict[str, str]]:
        player_id = cls._parse_id(raw, line)
        parts = raw.split(maxsplit=1)
        if len(parts) < 2:
            return player_id, {}

        return player_id, cls.parse_info(parts[1])

    @staticmethod
    def _int_fields(raw: str, count: int) -> list[int | None]:
        """Split space separated integers, missing or non numeric fields are None"""
        tokens = raw.split()
        fields: list[int | None] = []
        for index in range(count):
            try:
                fields.append(int(tokens[index]))
            except (IndexError, ValueError):
                fields.append(None)

        return fields

    @staticmethod
    def _match(pattern: re.Pattern, raw: str, line: str) -> tuple[str, ...]:
        if match := re.match(pattern, raw):
            return match.groups()

        raise ProtocolError(f"Unable to parse `{line}`")

    @classmethod
    def parse_line(cls, line: str) -> ServerEvent | None:
        """Parse one raw game log line

        Returns
            The event, or None for lines without an event or with an unknown event name

        Raises
            ProtocolError: if a known event has a malformed payload that can't be degraded
        """
        body, game_time = cls.split_raw_log_line(line)
        event_name, separator, rest = body.partition(":")
        if not separator:
            return None

        rest = rest.strip()

        match event_name.strip():
            case "ClientConnect":
                return ClientConnectEvent(
                    player_id=cls._parse_id(rest, line), game_time=game_time
                )
            case "ClientDisconnect":
                return ClientDisconnectEvent(
                    player_id=cls._parse_id(rest, line), game_time=game_time
                )
            case "ClientBegin":
                return ClientBeginEvent(
                    player_id=cls._parse_id(rest, line), game_time=game_time
                )
            case "ClientUserinfo":
                player_id, userinfo = cls._parse_id_info(rest, line)
                return ClientUserinfoEvent(
                    player_id=player_id, userinfo=userinfo, game_time=game_time
                )
            case "ClientUserinfoChanged":
                player_id, userinfo = cls._parse_id_info(rest, line)
                return ClientUserinfoChangedEvent(
                    player_id=player_id, userinfo=userinfo, game_time=game_time
                )
            case "InitGame":
                return InitGameEvent(
                    server_info=cls.parse_info(rest), game_time=game_time
                )
            case "InitRound":
                return InitRoundEvent(
                    server_info=cls.parse_info(rest), game_time=game_time
                )
            case "Exit":
                return ExitEvent(reason=rest, game_time=game_time)
            case "SurvivorWinner":
                return SurvivorWinnerEvent(
                    token=rest, team=cls.team_number(rest), game_time=game_time
                )
            case "ShutdownGame":
                return ShutdownGameEvent(game_time=game_time)
            case "Kill":
                head, _, text = rest.partition(":")
                killer_id, victim_id, means_of_death = cls._int_fields(head, 3)
                return KillEvent(
                    killer_id=killer_id,
                    victim_id=victim_id,
                    means_of_death=means_of_death,
                    text=text.strip() or None,
                    game_time=game_time,
                )
            case "Hit":
                head, _, text = rest.partition(":")
                victim_id, attacker_id, hit_location, weapon = cls._int_fields(head, 4)
                return HitEvent(
                    victim_id=victim_id,
                    attacker_id=attacker_id,
                    hit_location=hit_location,
                    weapon=weapon,
                    text=text.strip() or None,
                    game_time=game_time,
                )
            case "Item":
                (player_id,) = cls._int_fields(rest, 1)
                parts = rest.split(maxsplit=1)
                return ItemEvent(
                    player_id=player_id,
                    item=parts[1] if len(parts) > 1 else None,
                    game_time=game_time,
                )
            case "Hotpotato":
                return HotpotatoEvent(game_time=game_time)
            case "Flag":
                head, _, flag = rest.partition(":")
                player_id, action = cls._int_fields(head, 2)
                return FlagEvent(
                    player_id=player_id,
                    action=action,
                    flag=flag.strip() or None,
                    game_time=game_time,
                )
            case "say" | "sayteam":
                player_id, author, message = cls._match(cls._say_pattern, rest, line)
                return SayEvent(
                    player_id=int(player_id),
                    author=author.strip(),
                    message=message,
                    team_only=event_name.strip() == "sayteam",
                    game_time=game_time,
                )
            case "Callvote":
                player_id, vote_string = cls._match(cls._callvote_pattern, rest, line)
                return CallvoteEvent(
                    player_id=int(player_id),
                    vote_string=vote_string,
                    game_time=game_time,
                )
            case "Vote":
                player_id, vote = cls._match(cls._vote_pattern, rest, line)
                return VoteEvent(
                    player_id=int(player_id), vote=int(vote), game_time=game_time
                )
            case "Radio":
                player_id, group_id, message_id, location, message = cls._match(
                    cls._radio_pattern, rest, line
                )
                return RadioEvent(
                    player_id=int(player_id),
                    group_id=int(group_id),
                    message_id=int(message_id),
                    location=location,
                    message=message,
                    game_time=game_time,
                )
            case "AccountKick":
                player_id, login, reason = cls._match(
                    cls._account_kick_pattern, rest, line
                )
                return AccountKickEvent(
                    player_id=int(player_id),
                    login=login.strip(),
                    reason=reason.strip(),
                    game_time=game_time,
                )
            case "AccountBan":
                player_id, login, days, hours, minutes = cls._match(
                    cls._account_ban_pattern, rest, line
                )
                return AccountBanEvent(
                    player_id=int(player_id),
                    login=login,
                    days=int(days),
                    hours=int(hours),
                    minutes=int(minutes),
                    game_time=game_time,
                )
            case "AccountValidated":
                player_id, login, rcon_level, notoriety = cls._match(
                    cls._account_validated_pattern, rest, line
                )
                return AccountValidatedEvent(
                    player_id=int(player_id),
                    login=login,
                    rcon_level=int(rcon_level),
                    notoriety=notoriety,
                    game_time=game_time,
                )
            case "AccountRejected":
                player_id, login, reason = cls._match(
                    cls._account_rejected_pattern, rest, line
                )
                return AccountRejectedEvent(
                    player_id=int(player_id),
                    login=login,
                    reason=reason,
                    game_time=game_time,
                )
            case _:
                logger.debug(f"Ignoring unknown event `{event_name}`")
                return None
