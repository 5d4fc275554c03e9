"""
review_access.py — Review access gate.

Limits how many distinct reviews a visitor may open inside a rolling window
before they are asked to sign in (or contribute a review).

Two tracks share the same shape:

    anonymous      quota kept in per-device storage under three keys
                   (window start, count, seen ids)
    authenticated  one ``review_views`` row per (user, review); the count is
                   the number of distinct reviews viewed inside the window

Re-opening a review already counted is always free. Every operation here
catches its own storage errors, logs them and returns the permissive answer,
so callers never see an exception from the gate.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple
from pydantic import BaseModel
from sqlalchemy import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select, func
from .device_storage import KeyValueStore
from .models import ReviewView, User, utcnow
from . import config

logger = logging.getLogger(__name__)

KEY_START = "rv.windowStart"
KEY_COUNT = "rv.count"
KEY_SEEN = "rv.seenSet"
ANON_KEYS = (KEY_START, KEY_COUNT, KEY_SEEN)


@dataclass(frozen=True)
class QuotaPolicy:
    limit: int = 3
    window: timedelta = timedelta(hours=24)

    @classmethod
    def anonymous_from_config(cls) -> "QuotaPolicy":
        return cls(limit=config.REVIEW_ANON_LIMIT, window=timedelta(hours=config.REVIEW_WINDOW_HOURS))

    @classmethod
    def authenticated_from_config(cls) -> "QuotaPolicy":
        return cls(limit=config.REVIEW_AUTHED_LIMIT, window=timedelta(hours=config.REVIEW_WINDOW_HOURS))

    def remaining(self, count: int) -> int:
        return max(0, self.limit - count)


class AccessDecision(BaseModel):
    allowed: bool
    # None means the visitor is not subject to a quota
    remaining: Optional[int] = None


class ViewCount(BaseModel):
    count: int
    remaining: Optional[int] = None


@dataclass
class AnonymousQuota:
    window_start: datetime
    seen_review_ids: List[str] = field(default_factory=list)

    @property
    def view_count(self) -> int:
        return len(self.seen_review_ids)

    def expired(self, now: datetime, window: timedelta) -> bool:
        return now - self.window_start >= window

    def has_seen(self, review_id) -> bool:
        return _key(review_id) in self.seen_review_ids

    def add(self, review_id) -> bool:
        key = _key(review_id)
        if key in self.seen_review_ids:
            return False
        self.seen_review_ids.append(key)
        return True


def _key(review_id) -> str:
    # Ids arrive as ints from the API and as strings from storage
    return str(review_id)


def _parse_start(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s value %r", KEY_START, raw)
        return None


def _parse_seen(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        values = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed %s value", KEY_SEEN)
        return []
    if not isinstance(values, list):
        return []
    seen: List[str] = []
    for v in values:
        k = _key(v)
        if k not in seen:
            seen.append(k)
    return seen


def has_unlimited_access(user: Optional[User]) -> bool:
    """Anything other than a real ``True`` on the profile counts as no exemption."""
    if user is None:
        return False
    return getattr(user, "has_unlimited_access", False) is True


class ReviewAccessGate:
    def __init__(
        self,
        anon_store: KeyValueStore,
        engine: Engine,
        anon_policy: Optional[QuotaPolicy] = None,
        authed_policy: Optional[QuotaPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.anon_store = anon_store
        self.engine = engine
        self.anon_policy = anon_policy or QuotaPolicy.anonymous_from_config()
        self.authed_policy = authed_policy or QuotaPolicy.authenticated_from_config()
        self.clock = clock

    # ── Anonymous track ──────────────────────────────────────────────────────

    def load_anon_quota(self, device_id: str) -> Tuple[AnonymousQuota, bool]:
        """
        Read the stored quota. When none exists or its window expired, a fresh
        one starting now is returned and the flag is True.

        The stored ``rv.count`` is written for other readers but never read
        back here; the count is always the size of the seen set.
        """
        now = self.clock()
        raw = self.anon_store.multi_get(device_id, ANON_KEYS)
        start = _parse_start(raw.get(KEY_START))
        quota = AnonymousQuota(window_start=start or now, seen_review_ids=_parse_seen(raw.get(KEY_SEEN)))
        if start is None or quota.expired(now, self.anon_policy.window):
            return AnonymousQuota(window_start=now), True
        return quota, False

    def _save_anon_quota(self, device_id: str, quota: AnonymousQuota) -> None:
        self.anon_store.multi_set(device_id, {
            KEY_START: quota.window_start.isoformat(),
            KEY_COUNT: str(quota.view_count),
            KEY_SEEN: json.dumps(quota.seen_review_ids),
        })

    def can_view_another(self, device_id: str, review_id) -> AccessDecision:
        policy = self.anon_policy
        try:
            quota, fresh = self.load_anon_quota(device_id)
        except Exception:
            logger.warning("Anonymous quota read failed for device %s; allowing", device_id, exc_info=True)
            return AccessDecision(allowed=True, remaining=policy.limit)

        # The window opens at the first check, not the first registered view
        if fresh:
            try:
                self._save_anon_quota(device_id, quota)
            except Exception:
                logger.warning("Could not persist quota window for device %s", device_id, exc_info=True)

        remaining = policy.remaining(quota.view_count)
        if review_id is not None and quota.has_seen(review_id):
            return AccessDecision(allowed=True, remaining=remaining)
        return AccessDecision(allowed=quota.view_count < policy.limit, remaining=remaining)

    def register_view(self, device_id: str, review_id) -> ViewCount:
        policy = self.anon_policy
        try:
            quota, _ = self.load_anon_quota(device_id)
        except Exception:
            logger.warning("Anonymous quota read failed for device %s; view not recorded", device_id, exc_info=True)
            return ViewCount(count=0, remaining=policy.limit)

        count_before = quota.view_count
        if review_id is None or not quota.add(review_id):
            return ViewCount(count=count_before, remaining=policy.remaining(count_before))

        try:
            self._save_anon_quota(device_id, quota)
        except Exception:
            logger.warning("Anonymous quota write failed for device %s; view not recorded", device_id, exc_info=True)
            return ViewCount(count=count_before, remaining=policy.remaining(count_before))

        return ViewCount(count=quota.view_count, remaining=policy.remaining(quota.view_count))

    def reset_anon_counters(self, device_id: str) -> None:
        try:
            self.anon_store.multi_remove(device_id, ANON_KEYS)
        except Exception:
            logger.warning("Could not reset anonymous quota for device %s", device_id, exc_info=True)

    # ── Authenticated track ──────────────────────────────────────────────────

    def _authed_count(self, session: Session, user_id: int) -> int:
        since = self.clock() - self.authed_policy.window
        return session.exec(
            select(func.count(func.distinct(ReviewView.review_id))).where(
                ReviewView.user_id == user_id,
                ReviewView.viewed_at >= since,
            )
        ).one()

    def _already_viewed(self, session: Session, user_id: int, review_id) -> bool:
        return session.exec(
            select(ReviewView.id).where(
                ReviewView.user_id == user_id,
                ReviewView.review_id == review_id,
            )
        ).first() is not None

    def can_authed_view_another(self, user_id: int, review_id=None) -> AccessDecision:
        policy = self.authed_policy
        try:
            with Session(self.engine) as session:
                if has_unlimited_access(session.get(User, user_id)):
                    return AccessDecision(allowed=True, remaining=None)
                count = self._authed_count(session, user_id)
                if review_id is not None and self._already_viewed(session, user_id, review_id):
                    return AccessDecision(allowed=True, remaining=policy.remaining(count))
        except Exception:
            logger.warning("Authenticated quota read failed for user %s; allowing", user_id, exc_info=True)
            return AccessDecision(allowed=True, remaining=policy.limit)

        return AccessDecision(allowed=count < policy.limit, remaining=policy.remaining(count))

    def register_authed_review_view(self, user_id: int, review_id) -> ViewCount:
        policy = self.authed_policy
        try:
            with Session(self.engine) as session:
                unlimited = has_unlimited_access(session.get(User, user_id))
                if not self._already_viewed(session, user_id, review_id):
                    session.add(ReviewView(user_id=user_id, review_id=review_id, viewed_at=self.clock()))
                    try:
                        session.commit()
                    except IntegrityError:
                        # Another request registered the same pair first
                        session.rollback()
                count = self._authed_count(session, user_id)
        except Exception:
            logger.warning("Could not register view of review %s for user %s", review_id, user_id, exc_info=True)
            return ViewCount(count=0, remaining=policy.limit)

        return ViewCount(count=count, remaining=None if unlimited else policy.remaining(count))
