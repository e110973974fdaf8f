from typing import Dict, List
from loguru import logger

from pipeline.constants import ADMIN_USER, ROLE_ADMIN, ROLE_INTERN, ROLE_LABELS, ROLE_SALES_PERSON
from pipeline.store import AppState

class SessionManager:
    """Logged-in identity. Lives only as long as the process and never enters the data cache."""

    def __init__(self, app_state: AppState, record_store):
        self.app_state = app_state
        self.record_store = record_store

    async def login_options(self) -> Dict[str, List[str]]:
        """Names offered on the login screen; the administrator is listed with the sales people."""
        options = await self.record_store.login_options()
        options["sales_persons"] = options["sales_persons"] + [ADMIN_USER]
        return options

    async def login(self, name: str, password: str, role: str = ROLE_SALES_PERSON) -> str:
        """
        Authenticate and start a session.

        Args:
            name: User name
            password: Password
            role: "salesPerson" or "intern"; the administrator is recognized by name

        Returns:
            The session role
        """
        if name == ADMIN_USER:
            role = ROLE_ADMIN
        if role not in (ROLE_SALES_PERSON, ROLE_INTERN, ROLE_ADMIN):
            raise ValueError(f"Unknown role: {role}")

        await self.record_store.authenticate(name, password, ROLE_LABELS[role])

        self.app_state.reset()
        self.app_state.user = name
        self.app_state.role = role
        logger.info(f"{name} logged in as {role}")
        return role

    def logout(self) -> None:
        logger.info(f"{self.app_state.user} logged out")
        self.app_state.reset()
