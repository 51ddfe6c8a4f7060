import time
from enum import Enum
from typing import Callable, Protocol

from loguru import logger

from q3_session import constants
from q3_session.exceptions import AuthError, TransportError
from q3_session.response_types import ServerStatus


class RConError(Enum):
    NONE = "none"
    BAD_AUTH = "bad_auth"
    NO_REPLY = "no_reply"
    OTHER = "other"


class RConTransport(Protocol):
    """A Quake3 RCon client, query helpers return None on failure (see last_error)"""

    def set_server(self, address: str, port: int) -> None:
        ...

    def set_credentials(self, password: str) -> None:
        ...

    def set_waiting(self, waiting: bool) -> None:
        ...

    def test(self) -> bool:
        ...

    def send(self, command: str, expect_reply: bool = True) -> None:
        ...

    def resend(self) -> None:
        ...

    def get_reply(self, timeout: float = 0) -> str | None:
        ...

    def last_error(self) -> RConError:
        ...

    def server_info(self) -> dict[str, str] | None:
        ...

    def status(self) -> ServerStatus | None:
        ...

    def dump_user(self, player_id: int) -> dict[str, str] | None:
        ...

    def red_team_list(self) -> list[int] | None:
        ...

    def blue_team_list(self) -> list[int] | None:
        ...


class ResendPolicy(Enum):
    """What to do with the last command when the server rotates the RCon password

    The server may or may not have executed it before rejecting, so resending can
    run it twice.
    """

    RESEND = "resend"
    DROP = "drop"


class RConSession:
    """Wraps an RCon transport with password recovery and throttled reply polling"""

    def __init__(
        self,
        transport: RConTransport,
        resend_policy: ResendPolicy = ResendPolicy.DROP,
        poll_interval: float = constants.RCON_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.resend_policy = resend_policy
        self.poll_interval = poll_interval
        self._clock = clock
        self.password: str | None = None
        self.recover_password: str | None = None
        self._last_poll: float | None = None
        # When the last unanswered recovery request went out
        self._recovery_sent_at: float | None = None

    def configure(
        self,
        address: str,
        port: int,
        password: str | None,
        recover_password: str | None = None,
        waiting: bool = True,
    ) -> None:
        self.password = password
        self.recover_password = recover_password or None
        self.transport.set_server(address, port)
        self.transport.set_credentials(password or "")
        self.transport.set_waiting(waiting)

    def _install_password(self, reply: str | None) -> bool:
        """Install the password from a `rconPassword <new password>` reply"""
        if not reply or not reply.startswith(constants.NEW_PASSWORD_MARKER):
            return False

        _, _, password = reply.partition(" ")
        password = password.strip()
        if not password:
            logger.warning(f"Received an empty rotated RCon password: `{reply}`")
            return False

        self.password = password
        self.transport.set_credentials(password)
        self._recovery_sent_at = None
        logger.info("Updated RCon password.")
        return True

    def _send_recovery(self) -> None:
        self.transport.send(
            f"{constants.RECOVERY_COMMAND} {self.recover_password}", expect_reply=False
        )

    def recover(self, timeout: float = constants.RECOVERY_TIMEOUT) -> bool:
        """Ask the server for the current password and install it, a single attempt"""
        if not self.recover_password:
            return False

        logger.warning("Bad RCon password, trying to recover")
        self._send_recovery()
        return self._install_password(self.transport.get_reply(timeout))

    def test(self) -> None:
        """Check that the server answers to our password, recovering it once if allowed

        Raises
            AuthError: the password is refused and couldn't be recovered
            TransportError: the server did not answer
        """
        if self.transport.test():
            return

        error = self.transport.last_error()
        if error is RConError.BAD_AUTH:
            if self.recover() and self.transport.test():
                return

            raise AuthError(f"Can't connect: bad RCon password ({self.transport.last_error().value})")

        raise TransportError(f"Can't connect: {error.value}")

    def poll(self) -> str | None:
        """Read an unsolicited reply, at most once every `poll_interval` seconds"""
        now = self._clock()
        if self._last_poll is not None and now - self._last_poll < self.poll_interval:
            return None

        self._last_poll = now
        reply = self.transport.get_reply(0)

        if reply:
            logger.debug(f"RCon data received: {reply}")
            if self._install_password(reply):
                match self.resend_policy:
                    case ResendPolicy.RESEND:
                        logger.info("Resending the last RCon command with the new password")
                        self.transport.resend()
                    case ResendPolicy.DROP:
                        logger.info("Dropping the last RCon command sent before the password change")
            return reply

        error = self.transport.last_error()
        if error not in (RConError.NONE, RConError.NO_REPLY):
            logger.warning(f"RCon error: {error.value}")
            if (
                error is RConError.BAD_AUTH
                and self.recover_password
                and (
                    self._recovery_sent_at is None
                    or now - self._recovery_sent_at >= constants.RECOVERY_TIMEOUT
                )
            ):
                self._recovery_sent_at = now
                self._send_recovery()

        return None

    def server_info(self) -> dict[str, str] | None:
        return self.transport.server_info()

    def status(self) -> ServerStatus | None:
        return self.transport.status()

    def dump_user(self, player_id: int) -> dict[str, str] | None:
        return self.transport.dump_user(player_id)

    def red_team_list(self) -> list[int] | None:
        return self.transport.red_team_list()

    def blue_team_list(self) -> list[int] | None:
        return self.transport.blue_team_list()
