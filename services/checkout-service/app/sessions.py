from typing import Dict, Optional

from shared.utils import NotFoundException

from app.orchestrator import CheckoutSession


class SessionRegistry:
    """In-process checkout sessions keyed by user id."""

    def __init__(self):
        self._sessions: Dict[str, CheckoutSession] = {}

    def put(self, session: CheckoutSession) -> CheckoutSession:
        self._sessions[session.user_id] = session
        return session

    def get(self, user_id: str) -> Optional[CheckoutSession]:
        return self._sessions.get(user_id)

    def require(self, user_id: str) -> CheckoutSession:
        session = self.get(user_id)
        if session is None:
            raise NotFoundException("Checkout session not found")
        return session

    def discard(self, user_id: str) -> bool:
        return self._sessions.pop(user_id, None) is not None
