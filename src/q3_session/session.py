import re
import time
from typing import Any, Callable, Mapping, Self

from loguru import logger

from q3_session import constants
from q3_session.config import ServerConfig
from q3_session.exceptions import (
    ConfigError,
    ProtocolError,
    ResourceError,
    TransportError,
)
from q3_session.log_source import (
    LogfileLocation,
    LogSource,
    create_log_source,
    parse_logfile,
)
from q3_session.log_types import (
    AccountValidatedEvent,
    ClientBeginEvent,
    ClientConnectEvent,
    ClientDisconnectEvent,
    ClientUserinfoChangedEvent,
    ClientUserinfoEvent,
    EndGameEvent,
    EventSink,
    FlagEvent,
    HoldServerEvent,
    InitGameEvent,
    InitRoundEvent,
    SayEvent,
    ServerEvent,
    ShutdownGameEvent,
    StartupGameEvent,
    SurvivorWinnerEvent,
    Team,
)
from q3_session.parser import LineProtocolParser
from q3_session.players import PlayerRegistry, clean_name, split_address
from q3_session.rcon import RConSession, RConTransport
from q3_session.response_types import StatusPlayer


class ServerSession:
    """A live session against one game server

    Tails the server log, keeps the connected players and scores up to date and
    forwards every event to the plugin sink. The session is driven by calling
    `step` once per scheduler tick; all of its state is only mutated there, in
    `connect` and in the lifecycle methods, from a single task.

    Lifecycle: disabled until `connect` succeeds, then enabled. `hold` keeps
    everything but throttles log reads to once a second and ignores chat
    commands, a new map (InitGame) re-enables the session.
    """

    def __init__(
        self,
        transport: RConTransport,
        sink: EventSink,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
        on_release: Callable[[str | None], None] | None = None,
        log_source_factory: Callable[[LogfileLocation], LogSource] = create_log_source,
    ) -> None:
        self.name: str | None = None
        self._address: str | None = None
        self._port: int | None = None
        self._rcon = RConSession(transport, clock=monotonic)
        self._rcon_waiting = True
        self._sink = sink
        self._clock = clock
        self._on_release = on_release
        self._log_source_factory = log_source_factory
        self._logfile: LogfileLocation | None = None
        self._log_source: LogSource | None = None
        self._reopen_log = False
        self._partial_line = b""
        self._plugins: list[str] | None = None
        self._disabled = True
        self._hold = False
        self._auto_hold = False
        self._connected = False

        self.last_read_at: int | None = None
        self.shutdown_at: float | None = None
        self.server_info: dict[str, str] = {}
        self.scores: dict[int, int] = {}
        self.players = PlayerRegistry(clock=clock)
        self.plugin_vars: dict[str, Any] = {}

    @classmethod
    def from_config(
        cls,
        name: str,
        config: ServerConfig | Mapping[str, Any],
        transport: RConTransport,
        sink: EventSink,
        **kwargs,
    ) -> Self:
        """Create a session from a server configuration

        Raises
            ConfigError: if the name or any configuration value is invalid
        """
        session = cls(transport, sink, **kwargs)
        session.set_name(name)
        session.load_config(config)
        return session

    def enable(self) -> None:
        """Fully enable the session, also leaving hold"""
        self._disabled = False
        self._hold = False
        logger.debug(f"Server {self.name} enabled.")

    def disable(self) -> None:
        """Stop reading the log and detach from the server"""
        self._disabled = True
        self.disconnect()
        logger.debug(f"Server {self.name} disabled.")

    def hold(self) -> None:
        """Put the session on hold until the next InitGame

        Used when the game server went down without the session being told why.
        """
        self._hold = True
        logger.debug(f"Server {self.name} put on hold.")
        self._emit(HoldServerEvent())

    def is_enabled(self) -> bool:
        return not self._disabled and not self._hold

    def is_disabled(self) -> bool:
        return self._disabled

    def is_held(self) -> bool:
        return self._hold

    def set_name(self, name: str) -> None:
        if not re.fullmatch(constants.SERVER_NAME_PATTERN, name):
            raise ConfigError(f"Misformed server name: `{name}`")

        self.name = name

    def set_address(self, address: str | None = None, port: int | None = None) -> None:
        """Set the address and/or the port, nothing is changed if the port is invalid"""
        if port is not None and (isinstance(port, bool) or not 0 <= port <= 65535):
            raise ConfigError(f"IP port {port} for server {self.name} is not correct")

        if address:
            self._address = address
        if port is not None:
            self._port = port

    def get_address(self) -> tuple[str | None, int | None]:
        return self._address, self._port

    def set_logfile(self, logfile: str) -> None:
        self._logfile = parse_logfile(logfile)

    @property
    def rcon(self) -> RConSession:
        return self._rcon

    @property
    def rcon_password(self) -> str | None:
        return self._rcon.password

    @property
    def recover_password(self) -> str | None:
        return self._rcon.recover_password

    @property
    def default_level(self) -> int:
        return self.players.default_level

    @property
    def gametype(self) -> str | None:
        raw_gametype = self.server_info.get("g_gametype")
        if raw_gametype is None:
            return None

        return constants.GAMETYPES.get(raw_gametype, raw_gametype)

    def get_plugins(self) -> list[str] | None:
        """Plugins active on this server, None meaning every loaded plugin"""
        return self._plugins

    def load_config(self, config: ServerConfig | Mapping[str, Any]) -> None:
        if not isinstance(config, ServerConfig):
            config = ServerConfig.from_mapping(config)

        if config.address is not None or config.port is not None:
            self.set_address(config.address, config.port)
        if config.logfile is not None:
            self.set_logfile(config.logfile)

        self._rcon.password = config.rcon_password
        self._rcon.recover_password = config.recover_password or None
        self._rcon.resend_policy = config.rcon_resend_policy
        self._rcon_waiting = config.rcon_send_interval
        self._plugins = config.use_plugins
        self.players.default_level = config.default_level
        self._auto_hold = config.auto_hold

    def _emit(self, event: ServerEvent) -> None:
        self._sink.call_server_event(self, event)

    @staticmethod
    def _new_scores() -> dict[int, int]:
        return {int(team): 0 for team in constants.SCORING_TEAMS}

    def _sync_player(self, player_id: int, entry: StatusPlayer) -> None:
        """Rebuild a player from the status list and a dump of their userinfo"""
        logger.info(f"Gathering info for player {entry.name} (Slot {player_id})...")
        dump = self._rcon.dump_user(player_id)
        if dump is None:
            logger.warning(f"Cannot retrieve info for player {entry.name}.")
            return

        player = self.players.connect(player_id)
        if constants.BOT_ONLY_USERINFO_KEY in dump:
            player.is_bot = True
        else:
            player.addr, player.port = split_address(entry.address)
            player.guid = dump.get("cl_guid")

        player.name = clean_name(dump.get("name", entry.name))
        player.other = dict(dump)

        userinfo = {
            **dump,
            **{
                key: str(value)
                for key, value in entry.model_dump(exclude_none=True).items()
            },
        }
        self._emit(ClientConnectEvent(player_id=player_id))
        self._emit(ClientUserinfoEvent(player_id=player_id, userinfo=userinfo))

    def _sync_teams(self) -> None:
        logger.info("Gathering teams...")
        team_lists = (
            (Team.RED, self._rcon.red_team_list()),
            (Team.BLUE, self._rcon.blue_team_list()),
        )
        for team, team_list in team_lists:
            if team_list is None:
                logger.warning(f"Cannot retrieve {team.name.lower()} team list")
                continue

            for player_id in team_list:
                if (player := self.players.get(player_id)) is None:
                    logger.debug(f"Unknown player {player_id} in {team.name.lower()} team list")
                    continue

                player.team = team
                player.begun = True
                userinfo = {
                    "team": team.name.lower(),
                    "t": str(int(team)),
                    "n": player.name or "",
                }
                self._emit(ClientUserinfoChangedEvent(player_id=player_id, userinfo=userinfo))
                self._emit(ClientBeginEvent(player_id=player_id))

        for player in self.players:
            if player.team is Team.SPEC:
                self._emit(ClientBeginEvent(player_id=player.id))

    def connect(self) -> None:
        """Attach to the game server

        Tests the RCon channel (recovering the password once if possible), replays
        the current players and teams to the plugins as if they just joined and
        starts tailing the log from its current end.

        Raises
            ConfigError: the address or log file is missing
            AuthError: the RCon password is refused
            TransportError: the server doesn't answer the initial queries
            ResourceError: the log can't be opened
        """
        if self._address is None or self._port is None:
            raise ConfigError(f"No address set for server {self.name}")
        if self._logfile is None:
            raise ConfigError(f"No log file set for server {self.name}")

        logger.info(f"Connecting to server {self.name}...")
        self._rcon.configure(
            self._address,
            self._port,
            self._rcon.password,
            self._rcon.recover_password,
            self._rcon_waiting,
        )
        self._rcon.test()

        self._connected = True
        self._emit(StartupGameEvent())

        logger.info("Gathering server info...")
        server_info = self._rcon.server_info()
        if server_info is None:
            raise TransportError(
                f"Can't gather server info: {self._rcon.transport.last_error().value}"
            )
        self.server_info = server_info

        logger.info("Gathering server players...")
        status = self._rcon.status()
        if status is None:
            raise TransportError(
                f"Can't gather server players: {self._rcon.transport.last_error().value}"
            )

        self.players.clear()
        for player_id, entry in status.players.items():
            self._sync_player(player_id, entry)

        if len(self.players) > 0:
            self._sync_teams()

        self.scores = self._new_scores()
        self._emit(InitGameEvent(server_info=dict(self.server_info)))

        self.open_log_file()
        self.enable()
        self._log_status()

    def _log_status(self) -> None:
        matchmode = "On" if self.server_info.get("g_matchmode", "0") not in ("", "0") else "Off"
        logger.info("Current server status :")
        logger.info(f"\tServer name : {self.server_info.get('sv_hostname')}")
        logger.info(f"\tGametype : {self.gametype}")
        logger.info(f"\tMap : {self.server_info.get('mapname')}")
        logger.info(f"\tNumber of players : {len(self.players)}")
        logger.info(f"\tServer version : {self.server_info.get('version')}")
        logger.info(f"\tMatchmode : {matchmode}")

    def disconnect(self) -> None:
        """Detach from the game server, telling the plugins every player left

        Safe to call at any time and more than once.
        """
        self._disabled = True
        self.close_log_file()
        if not self._connected:
            return

        self._connected = False
        logger.info(f"Disconnecting from server {self.name}")

        logger.debug("Sending ClientDisconnect events to plugins")
        for player_id in self.players.ids():
            self._emit(ClientDisconnectEvent(player_id=player_id))
        self.players.clear()

        self._emit(ShutdownGameEvent())
        self._emit(EndGameEvent())

        if self._on_release is not None:
            self._on_release(self.name)

    def open_log_file(self, resume: bool = False) -> None:
        if self._logfile is None:
            raise ResourceError(f"No log file set for server {self.name}")

        if self._log_source is None:
            self._log_source = self._log_source_factory(self._logfile)

        self._log_source.open(resume=resume)
        self._reopen_log = False
        if not resume:
            self._partial_line = b""

    def close_log_file(self) -> None:
        log_source, self._log_source = self._log_source, None
        if log_source is not None:
            log_source.close()

    def file_get_contents(self, path: str) -> str:
        """Read a file on the game server, with the same access method as the log"""
        return self._file_access().file_get_contents(path)

    def file_put_contents(self, path: str, content: str) -> None:
        """Write a file on the game server, with the same access method as the log"""
        self._file_access().file_put_contents(path, content)

    def _file_access(self) -> LogSource:
        if self._log_source is not None:
            return self._log_source
        if self._logfile is None:
            raise ResourceError(f"No log file set for server {self.name}")

        return self._log_source_factory(self._logfile)

    def step(self) -> bool:
        """Run one tick: read and process new log lines, poll RCon, run plugin routines"""
        if self._disabled:
            return True

        now = self._clock()
        self._expire_shutdown(now)

        if not self._hold or int(now) != self.last_read_at:
            self.last_read_at = int(now)
            self._read_log()

        self._rcon.poll()
        self._sink.call_all_routines(self)
        return True

    def _expire_shutdown(self, now: float) -> None:
        """Drop players left behind by a ShutdownGame that wasn't followed by a new map"""
        if self.shutdown_at is None or now - self.shutdown_at < constants.SHUTDOWN_GRACE_PERIOD:
            return

        self.shutdown_at = None
        if len(self.players) == 0:
            return

        for player_id in self.players.ids():
            self._emit(ClientDisconnectEvent(player_id=player_id))
        self.players.clear()
        logger.debug(f"Deleted player data for server {self.name}")

    def _read_log(self) -> None:
        if self._log_source is None:
            return

        if self._reopen_log:
            try:
                self.open_log_file(resume=True)
            except ResourceError as e:
                logger.warning(f"[{self.name}] Can't reopen the game log: {e}")
                return

        try:
            data = self._log_source.read()
        except ResourceError as e:
            logger.warning(f"[{self.name}] {e}, reopening the game log on next tick")
            self._reopen_log = True
            return

        for line in self._split_lines(data):
            self.process_line(line)

    def _split_lines(self, data: bytes) -> list[str]:
        """Split complete lines, keeping an unterminated last line for the next read"""
        if not data:
            return []

        *lines, self._partial_line = (self._partial_line + data).split(b"\n")
        return [
            line.decode("utf-8", errors="replace").rstrip("\r")
            for line in lines
            if line.strip()
        ]

    def process_line(self, line: str) -> None:
        """Parse one raw log line and apply it, malformed lines are logged and skipped"""
        logger.debug(f"[{self.name}] {line}")
        try:
            event = LineProtocolParser.parse_line(line)
        except ProtocolError as e:
            logger.warning(f"[{self.name}] {e}")
            return

        if event is not None:
            self.handle_event(event)

    def _update_server_info(self, server_info: dict[str, str]) -> None:
        """Shared by InitGame and InitRound, both resend the server info"""
        self.server_info = {**self.server_info, **server_info}

    def _add_point(self, team: int | None) -> None:
        if team in constants.SCORING_TEAMS:
            self.scores[team] = self.scores.get(team, 0) + 1

    def handle_event(self, event: ServerEvent) -> None:
        """Apply an event to the session state and forward it to the plugins"""
        match event:
            case ClientConnectEvent():
                self.players.connect(event.player_id)
                logger.debug(f"Client connected: {event.player_id}")
                self._emit(event)
            case ClientDisconnectEvent():
                self._emit(event)
                logger.debug(f"Client disconnected: {event.player_id}")
                self.players.remove(event.player_id)
            case ClientUserinfoEvent():
                self._emit(event)
                player = self.players.merge_userinfo(event.player_id, event.userinfo)
                logger.debug(
                    f"Client sent user info: {event.player_id} name={player.name} guid={player.guid} bot={player.is_bot}"
                )
            case ClientUserinfoChangedEvent():
                self._emit(event)
                player = self.players.apply_userinfo_changed(event.player_id, event.userinfo)
                logger.debug(
                    f"Client changed user info: {event.player_id} name={player.name} team={player.team.name}"
                )
            case ClientBeginEvent():
                logger.debug(f"Client has begun: {event.player_id}")
                self._emit(event)
                self.players.begin(event.player_id)
            case InitRoundEvent():
                logger.debug("New round started")
                self._emit(event)
                self._update_server_info(event.server_info)
            case InitGameEvent():
                # A new map is proof the server is alive again
                self.enable()
                self.shutdown_at = None
                logger.debug(f"New map started: {event.server_info.get('mapname')}")
                self._emit(event)
                self.scores = self._new_scores()
                self._update_server_info(event.server_info)
            case SurvivorWinnerEvent():
                logger.debug(f"Round ended, winner: {event.token}")
                self._emit(event)
                self._add_point(event.team)
            case ShutdownGameEvent():
                logger.debug("The server is going down")
                self._emit(event)
                self.shutdown_at = self._clock()
                if self._auto_hold:
                    self.hold()
            case FlagEvent():
                self._emit(event)
                if event.captured and event.player_id is not None:
                    if (player := self.players.get(event.player_id)) is not None:
                        self._add_point(player.team)
            case SayEvent():
                self._emit(event)
                if event.message.startswith(constants.COMMAND_PREFIX) and not self._hold:
                    self._dispatch_command(event)
            case AccountValidatedEvent():
                if (player := self.players.get(event.player_id)) is not None:
                    player.auth_login = event.login
                    player.auth_rcon_level = event.rcon_level
                    player.auth_notoriety = event.notoriety
                self._emit(event)
            case _:
                self._emit(event)

    def _dispatch_command(self, event: SayEvent) -> None:
        command, *args = event.message[len(constants.COMMAND_PREFIX) :].split(" ")
        args = [arg for arg in args if arg]
        if not command:
            return

        logger.debug(f"Command caught: {constants.COMMAND_PREFIX}{command}")
        self._sink.call_command(self, command, event.player_id, args)
