"""Application context - the explicit replacement for module-level globals."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from .backends import Backend, LocalBackend
from .billing import WebhookHandler
from .config import Config
from .mailer import Mailer, make_mailer
from .profile import Profile
from .store import Store

logger = logging.getLogger(__name__)


class AppContext:
    """
    Everything a session needs: config, backend, mailer and the store.

    A store exists only between start() and end(); end() closes it and
    signs the user out of the backend.
    """

    def __init__(
        self,
        config: Config,
        backend: Optional[Backend] = None,
        mailer: Optional[Mailer] = None,
    ):
        self.config = config
        self.backend = backend or LocalBackend(
            config.data_dir,
            secret_key=config.secret_key,
            base_url=config.base_url,
        )
        self.mailer = mailer or make_mailer(config)
        self.store: Optional[Store] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.backend.user_id

    async def start(self, user_id: Optional[str] = None) -> Store:
        """Sign in, subscribe to changes and load the user's records."""
        if self.store is not None:
            self.end()
        self.backend.sign_in(user_id or self.config.user_id)
        store = Store(self.backend)
        store.open()
        await store.load()
        self.store = store
        logger.info(
            "Session started for %s (%d vehicle(s))", self.backend.user_id, len(store.vehicles)
        )
        return store

    def end(self) -> None:
        if self.store is not None:
            self.store.close()
            self.store = None
        self.backend.sign_out()

    @asynccontextmanager
    async def session(self, user_id: Optional[str] = None) -> AsyncIterator[Store]:
        store = await self.start(user_id)
        try:
            yield store
            await store.wait_idle()
        finally:
            self.end()

    def webhook_handler(self) -> WebhookHandler:
        return WebhookHandler(
            self.backend,
            self.mailer,
            self.config.webhook_secret,
            self.config.webhook_tolerance,
        )

    async def register(self, email: str, name: Optional[str] = None) -> Profile:
        """
        Attach an email address to the signed-in user's profile.

        The first address a profile gets triggers the welcome email.
        """
        user_id = self.backend.require_user()
        existing = await self.backend.get_profile(user_id)
        profile = await self.backend.update_profile(user_id, email=email)
        if existing is None or not existing.email:
            self.mailer.send(email, "welcome", name=name)
            logger.info("Welcome email sent to %s", email)
        return profile
