"""Transition intents: persisted, resumable multi-step transitions.

Every multi-step transition runs as a small saga:

1. An intent row is committed before any work starts.
2. Steps run in order; ``TransitionContext.step`` counts the ones that
   succeeded.  External side effects (blob uploads) register a compensation.
3. All relational writes plus the intent's COMPLETED marker commit together.
4. Post-commit steps (e-mail) run last and are best-effort.

A failure rolls the relational writes back, runs the compensations and
marks the intent FAILED with the failing step index, so a retry with the
same idempotency key resumes instead of duplicating work.  A retry of a
COMPLETED intent replays its stored result.
"""

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rars.errors import InvalidTransition, RarsError, UpstreamFailure, ValidationFailure
from rars.models.db.intent import TransitionIntent
from rars.models.enums import IntentStatus

logger = logging.getLogger(__name__)


def payload_fingerprint(payload: Optional[dict[str, Any]]) -> Optional[str]:
    """Stable SHA-256 over the operation arguments an Idempotency-Key covers."""
    if not payload:
        return None
    encoded = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


@dataclass
class TransitionContext:
    intent_id: uuid.UUID
    action: str
    entity_id: str
    step: int = 0
    compensations: list[Callable[[], Awaitable[Any]]] = field(default_factory=list)
    after_commit: list[Callable[[], Awaitable[Any]]] = field(default_factory=list)

    def advance(self, label: str) -> None:
        self.step += 1
        logger.debug(
            "intent=%s action=%s entity=%s step=%d %s",
            self.intent_id,
            self.action,
            self.entity_id,
            self.step,
            label,
        )


class TransitionService:
    """Owns the lifecycle of ``transition_intents`` rows."""

    @staticmethod
    async def lookup(
        db: AsyncSession,
        idempotency_key: Optional[str],
        action: str,
        entity_id: Any,
        fingerprint: Optional[str] = None,
    ) -> Optional[TransitionIntent]:
        """Return the intent previously recorded under *idempotency_key*.

        Raises:
            ValidationFailure: The key was used for a different action, entity
                or payload.
            InvalidTransition: The earlier attempt is still in flight.
        """
        if not idempotency_key:
            return None
        result = await db.execute(
            select(TransitionIntent).where(
                TransitionIntent.idempotency_key == idempotency_key
            )
        )
        intent = result.scalar_one_or_none()
        if intent is None:
            return None
        if (
            intent.action != action
            or intent.entity_id != str(entity_id)
            or intent.fingerprint != fingerprint
        ):
            raise ValidationFailure(
                "Idempotency-Key was already used for a different operation"
            )
        if intent.status == IntentStatus.PENDING.value:
            raise InvalidTransition(
                "A transition with this Idempotency-Key is already in progress"
            )
        return intent

    @staticmethod
    async def open(
        db: AsyncSession,
        *,
        action: str,
        entity_id: Any,
        actor_id: Optional[uuid.UUID],
        idempotency_key: Optional[str] = None,
        fingerprint: Optional[str] = None,
        previous: Optional[TransitionIntent] = None,
    ) -> TransitionContext:
        """Persist (or re-arm a FAILED) intent and commit it."""
        if previous is not None:
            intent = previous
            logger.info(
                "Resuming failed intent %s (%s on %s, failed at step %d)",
                intent.id,
                action,
                entity_id,
                intent.step,
            )
        else:
            intent = TransitionIntent(
                idempotency_key=idempotency_key,
                action=action,
                entity_id=str(entity_id),
                actor_id=actor_id,
                fingerprint=fingerprint,
            )
            db.add(intent)
        intent.status = IntentStatus.PENDING.value
        intent.step = 0
        intent.error = None
        try:
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            raise UpstreamFailure(f"Could not record transition intent: {exc}") from exc
        return TransitionContext(
            intent_id=intent.id, action=action, entity_id=str(entity_id)
        )

    @staticmethod
    async def complete(
        db: AsyncSession, ctx: TransitionContext, result: dict[str, Any]
    ) -> None:
        """Mark the intent COMPLETED and commit it with the pending writes."""
        intent = await db.get(TransitionIntent, ctx.intent_id)
        intent.status = IntentStatus.COMPLETED.value
        intent.step = ctx.step
        intent.result_json = result
        await db.commit()
        logger.info(
            "intent=%s %s on %s completed after %d steps",
            ctx.intent_id,
            ctx.action,
            ctx.entity_id,
            ctx.step,
        )

    @staticmethod
    async def fail(db: AsyncSession, ctx: TransitionContext, exc: Exception) -> None:
        """Roll back, compensate, and record the failing step on the intent."""
        await db.rollback()

        for compensate in reversed(ctx.compensations):
            try:
                await compensate()
            except Exception as comp_exc:
                logger.error(
                    "intent=%s compensation failed at step %d: %s",
                    ctx.intent_id,
                    ctx.step,
                    comp_exc,
                )

        log = logger.warning if isinstance(exc, RarsError) else logger.error
        log(
            "intent=%s %s on %s failed at step %d: %s",
            ctx.intent_id,
            ctx.action,
            ctx.entity_id,
            ctx.step + 1,
            exc,
        )
        try:
            intent = await db.get(TransitionIntent, ctx.intent_id)
            if intent is not None:
                intent.status = IntentStatus.FAILED.value
                intent.step = ctx.step
                intent.error = f"{type(exc).__name__}: {exc}"[:2000]
                await db.commit()
        except SQLAlchemyError as mark_exc:
            await db.rollback()
            logger.error(
                "intent=%s could not be marked FAILED (step %d): %s",
                ctx.intent_id,
                ctx.step,
                mark_exc,
            )

    @staticmethod
    async def run_after_commit(ctx: TransitionContext) -> None:
        for step in ctx.after_commit:
            try:
                await step()
            except Exception as exc:
                logger.warning(
                    "intent=%s post-commit step failed for %s: %s",
                    ctx.intent_id,
                    ctx.entity_id,
                    exc,
                )

    @staticmethod
    async def get(db: AsyncSession, intent_id: uuid.UUID) -> Optional[TransitionIntent]:
        return await db.get(TransitionIntent, intent_id)
