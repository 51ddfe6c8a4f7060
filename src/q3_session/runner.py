from typing import Any, Mapping

import trio
from loguru import logger

from q3_session import constants
from q3_session.config import ServerConfig
from q3_session.exceptions import AuthError, ConfigError, ResourceError, TransportError
from q3_session.log_types import EventSink
from q3_session.rcon import RConTransport
from q3_session.session import ServerSession


class SessionManager:
    """Owns the server sessions and drives them concurrently

    Every session gets its own trio task; connect() and step() are blocking calls
    so they run in worker threads.
    """

    def __init__(self, sink: EventSink) -> None:
        self.sink = sink
        self._sessions: dict[str, ServerSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, name: object) -> bool:
        return name in self._sessions

    def get(self, name: str) -> ServerSession | None:
        return self._sessions.get(name)

    def load_server(
        self,
        name: str,
        config: ServerConfig | Mapping[str, Any],
        transport: RConTransport,
        **kwargs,
    ) -> ServerSession:
        """Create and register a session, replacing a session with the same name

        Raises
            ConfigError: the configuration is invalid, nothing is registered
        """
        session = ServerSession.from_config(
            name,
            config,
            transport,
            self.sink,
            on_release=self.unload_server,
            **kwargs,
        )

        if (previous := self._sessions.get(name)) is not None:
            logger.info(f"Replacing server {name}")
            previous.disconnect()

        self._sessions[name] = session
        logger.info(f"Loaded server {name}")
        return session

    def unload_server(self, name: str | None) -> None:
        if name is not None and self._sessions.pop(name, None) is not None:
            logger.info(f"Unloaded server {name}")

    def _release(self, name: str, session: ServerSession) -> None:
        try:
            session.disconnect()
        except Exception:
            logger.exception(f"Error while disconnecting from server {name}")

        if self._sessions.get(name) is session:
            self.unload_server(name)

    async def _run_session(
        self, name: str, session: ServerSession, tick_interval: float, max_ticks: int | None
    ) -> None:
        # A failing session must never cancel the nursery shared with the others
        try:
            await trio.to_thread.run_sync(session.connect)
        except (AuthError, ConfigError, ResourceError, TransportError) as e:
            logger.error(f"Can't connect to server {name}: {e}")
            self._release(name, session)
            return
        except Exception:
            logger.exception(f"Unexpected error while connecting to server {name}")
            self._release(name, session)
            return

        ticks = 0
        while self._sessions.get(name) is session:
            if max_ticks is not None and ticks >= max_ticks:
                break

            try:
                await trio.to_thread.run_sync(session.step)
            except Exception:
                logger.exception(f"Error during tick of server {name}")
            ticks += 1
            await trio.sleep(tick_interval)

        logger.debug(f"Stopped driving server {name}")

    async def run(
        self, tick_interval: float = constants.TICK_INTERVAL, max_ticks: int | None = None
    ) -> None:
        """Drive every loaded session until all are released (or ran `max_ticks` steps)"""
        async with trio.open_nursery() as nursery:
            for name, session in list(self._sessions.items()):
                nursery.start_soon(
                    self._run_session, name, session, tick_interval, max_ticks
                )

    def shutdown(self) -> None:
        """Disconnect every session"""
        for session in list(self._sessions.values()):
            session.disconnect()
        self._sessions.clear()
