"""Session management service - one controller per user identity."""

import logging
import time
from typing import Callable, Dict, List, Optional

from ..core.rate_limiter import RateGovernor
from ..models.session import SessionConfiguration, clamp_temperature
from ..storage.settings_storage import SettingsStorage
from .session_controller import SendFn, SessionController

logger = logging.getLogger(__name__)


class SessionManager:
    """Creates and caches session controllers."""

    def __init__(
        self,
        send: SendFn,
        storage: Optional[SettingsStorage] = None,
        catalog=None,
        governor: Optional[RateGovernor] = None,
        locale: str = "en",
        defaults: Optional[SessionConfiguration] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize session manager.

        Args:
            send: Send capability shared by every session
            storage: Settings storage, one view per identity
            catalog: Model catalog capability
            governor: Quota gate applied in-process, if any
            locale: Language of user-presentable messages
            defaults: Configuration new sessions start from
            clock: Monotonic seconds, used to find idle sessions
        """
        self.send = send
        self.storage = storage
        self.catalog = catalog
        self.governor = governor
        self.locale = locale
        self.defaults = defaults or SessionConfiguration()
        self._sessions: Dict[str, SessionController] = {}
        self._last_used: Dict[str, float] = {}
        self._clock = clock

    @classmethod
    def defaults_from_config(cls, config) -> SessionConfiguration:
        """Starting configuration from a ChatConfig."""
        return SessionConfiguration(
            temperature=clamp_temperature(config.default_temperature),
            system_prompt=config.default_system_prompt,
            provider=config.default_provider,
        )

    async def get(self, identity) -> SessionController:
        """
        Get or create the session of an identity.

        Args:
            identity: Discord user ID or any other client key

        Returns:
            SessionController with persisted settings loaded
        """
        identity = str(identity)

        # Check cache first
        if identity in self._sessions:
            self._last_used[identity] = self._clock()
            return self._sessions[identity]

        controller = SessionController(
            self.send,
            settings=self.storage.for_identity(identity) if self.storage else None,
            catalog=self.catalog,
            governor=self.governor,
            identity=identity,
            locale=self.locale,
            defaults=self.defaults,
        )
        await controller.load_settings()

        # Another caller may have created it while settings were loading
        controller = self._sessions.setdefault(identity, controller)
        self._last_used[identity] = self._clock()
        logger.debug(f"Session ready for {identity}")
        return controller

    def peek(self, identity) -> Optional[SessionController]:
        """Get a session without creating it."""
        return self._sessions.get(str(identity))

    def drop(self, identity) -> bool:
        """Forget a session, cancelling its exchange in flight."""
        identity = str(identity)
        self._last_used.pop(identity, None)
        controller = self._sessions.pop(identity, None)
        if controller is None:
            return False
        controller.cancel()
        return True

    def drop_all(self) -> int:
        count = len(self._sessions)
        for controller in self._sessions.values():
            controller.cancel()
        self._sessions.clear()
        self._last_used.clear()
        return count

    def evict_idle(self, max_idle: float) -> int:
        """
        Forget sessions unused for longer than ``max_idle`` seconds.

        Sessions with an exchange or a settings save in flight are kept.

        Returns:
            Number of sessions dropped
        """
        cutoff = self._clock() - max_idle
        idle = [
            identity for identity, controller in self._sessions.items()
            if self._last_used.get(identity, 0.0) < cutoff and not controller.busy
        ]
        for identity in idle:
            del self._sessions[identity]
            self._last_used.pop(identity, None)
        if idle:
            logger.info(f"Evicted {len(idle)} idle sessions")
        return len(idle)

    def identities(self) -> List[str]:
        return list(self._sessions)

    async def wait_for_persistence(self) -> None:
        for controller in list(self._sessions.values()):
            await controller.wait_for_persistence()
