"""
access_context.py — The object that owns review-access state for one app.

Built once at startup and kept on ``app.state.access``. Routes reach it through
the ``get_access`` dependency; nothing here is a module-level singleton.
"""
import logging
from typing import Optional
from fastapi import Request
from sqlalchemy import Engine
from .device_storage import KeyValueStore, SqlKeyValueStore
from .events import AuthEvent, EventBus, EventName
from .review_access import ReviewAccessGate, QuotaPolicy

logger = logging.getLogger(__name__)


class AccessContext:
    def __init__(self, gate: ReviewAccessGate, bus: Optional[EventBus] = None):
        self.gate = gate
        self.bus = bus or EventBus()

    @classmethod
    def from_engine(
        cls,
        engine: Engine,
        anon_store: Optional[KeyValueStore] = None,
        anon_policy: Optional[QuotaPolicy] = None,
        authed_policy: Optional[QuotaPolicy] = None,
        **gate_kwargs,
    ) -> "AccessContext":
        gate = ReviewAccessGate(
            anon_store=anon_store or SqlKeyValueStore(engine),
            engine=engine,
            anon_policy=anon_policy,
            authed_policy=authed_policy,
            **gate_kwargs,
        )
        return cls(gate)

    def on_signed_in(self, user_id: int, device_id: Optional[str]) -> None:
        """
        Called once per successful sign-in. The device's anonymous quota is
        cleared so the visitor continues under the authenticated policy.
        """
        if device_id:
            self.gate.reset_anon_counters(device_id)
        logger.info("User %s signed in (device %s)", user_id, device_id or "-")
        self.bus.emit(EventName.AUTH_SIGNED_IN, AuthEvent(user_id=user_id, device_id=device_id))

    def on_signed_out(self, user_id: int, device_id: Optional[str] = None) -> None:
        self.bus.emit(EventName.AUTH_SIGNED_OUT, AuthEvent(user_id=user_id, device_id=device_id))


def get_access(request: Request) -> AccessContext:
    return request.app.state.access
