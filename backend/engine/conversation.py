"""
Trade Entry Conversation Engine.

Per-user state machine driving the multi-step journal entry flow:
Idle -> Step(1..N) -> Confirming -> committed, with Editing(field) loops
from the preview, back/skip navigation, cancel, parking and idle expiry.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from engine.errors import FieldValidationError, InvalidTransitionError
from engine.fields import DEFAULT_FLOW, REQUIRED_FIELDS, Flow, TradeField, step_of, validate_flow
from engine.interfaces import PendingStore, Presenter, SchemaSource, TradeStore
from engine.models import (
    ConversationState,
    DraftEntry,
    FieldOption,
    InputAction,
    InputKind,
    PendingEntry,
    Phase,
    TransitionResult,
    TransitionStatus,
    as_utc,
    utc_now,
)
from engine.validation import parse_field_input, validate_multi
from services.logging_service import user_context
from services.suggestion_cache import SuggestionCache

logger = logging.getLogger(__name__)

MSG_BUSY = "Still processing your previous input, please wait."
MSG_EXPIRED = "Your trade entry expired after inactivity. Please start a new trade."
MSG_NO_SESSION = "There is no trade in progress. Start a new trade first."
MSG_TOO_MANY_ERRORS = "Too many invalid inputs. The trade entry was cancelled."
MSG_COMMIT_FAILED = "Could not save the trade. Please try confirming again."
MSG_PENDING_GONE = "This trade is no longer available."
MSG_CANCEL_SCHEDULED = "Cancelling as soon as the current input finishes."

SchemaResolver = Callable[[int], Optional[SchemaSource]]


class ConversationEngine:
    """
    Drives each user through the entry flow.

    Responsible for:
    - Holding one ConversationState per user (partitioned map)
    - Serialising a single user's input with a per-user lock
    - Validating and storing field values on the draft
    - Feeding ranked suggestions to the presenter at every step
    - Committing confirmed drafts to the TradeStore
    - Parking, resuming and expiring drafts
    """

    def __init__(
        self,
        trade_store: TradeStore,
        suggestions: SuggestionCache,
        presenter: Presenter,
        pending_store: Optional[PendingStore] = None,
        flow: Flow = DEFAULT_FLOW,
        idle_timeout: timedelta = timedelta(minutes=30),
        max_input_errors: int = 3,
        pending_ttl: timedelta = timedelta(hours=24),
        top_n: int = 12,
        page_size: int = 5,
        schema_resolver: Optional[SchemaResolver] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the conversation engine.

        Args:
            trade_store: Durable store committed trades are handed to
            suggestions: Shared suggestion cache feeding each step's options
            presenter: Outbound rendering hooks
            pending_store: Store for parked drafts (parking disabled when None)
            flow: Ordered fields collected by the conversation
            idle_timeout: Inactivity after which a conversation expires
            max_input_errors: Invalid inputs tolerated before auto-cancel
            pending_ttl: Age after which parked drafts are dropped
            top_n: Options shown per page
            page_size: Parked drafts listed per page
            schema_resolver: Returns the user's external schema source, if any
            clock: Returns the current UTC time
        """
        self.trade_store = trade_store
        self.suggestions = suggestions
        self.presenter = presenter
        self.pending_store = pending_store
        self.flow = validate_flow(flow)
        self.idle_timeout = idle_timeout
        self.max_input_errors = max(1, int(max_input_errors))
        self.pending_ttl = pending_ttl
        self.top_n = max(1, int(top_n))
        self.page_size = max(1, int(page_size))
        self.schema_resolver = schema_resolver
        self._clock = clock

        self._states: Dict[int, ConversationState] = {}
        self._user_locks: Dict[int, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings,
        trade_store: TradeStore,
        presenter: Presenter,
        suggestions: Optional[SuggestionCache] = None,
        **kwargs,
    ) -> "ConversationEngine":
        """Build an engine (and its suggestion cache) from application settings."""
        if suggestions is None:
            from services.history_aggregator import HistoryAggregator

            suggestions = SuggestionCache(
                history=HistoryAggregator(trade_store, settings.ranking_weights()),
                schema_ttl_seconds=settings.schema_cache_ttl_seconds,
                suggestion_ttl_seconds=settings.suggestion_cache_ttl_seconds,
            )
        kwargs.setdefault("idle_timeout", timedelta(minutes=settings.idle_timeout_minutes))
        kwargs.setdefault("max_input_errors", settings.max_input_errors)
        kwargs.setdefault("pending_ttl", timedelta(hours=settings.pending_ttl_hours))
        kwargs.setdefault("top_n", settings.suggestion_top_n)
        kwargs.setdefault("page_size", settings.pending_page_size)
        return cls(trade_store=trade_store, suggestions=suggestions, presenter=presenter, **kwargs)

    # ── State registry ───────────────────────────────────────────────────────

    def _user_lock(self, user_id: int) -> threading.Lock:
        with self._registry_lock:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._user_locks[user_id] = lock
            return lock

    def _acquire(self, user_id: int) -> Optional[threading.Lock]:
        """Take the user's lock without blocking; None while another input holds it."""
        while True:
            lock = self._user_lock(user_id)
            if not lock.acquire(blocking=False):
                return None
            with self._registry_lock:
                if self._user_locks.get(user_id) is lock:
                    return lock
            # Pruned between lookup and acquire; retry with the live lock.
            lock.release()

    def _release(self, user_id: int, lock: threading.Lock) -> None:
        """Release the user's lock, forgetting it once the user has no conversation."""
        with self._registry_lock:
            if user_id not in self._states and self._user_locks.get(user_id) is lock:
                del self._user_locks[user_id]
        lock.release()

    def _take_deferred_cancel(self, state: ConversationState) -> Optional[TransitionResult]:
        """Drop ``state`` if a cancel arrived while its lock was held elsewhere."""
        if not state.cancel_requested or self._get(state.user_id) is not state:
            return None
        self._drop(state.user_id)
        logger.info("Applied deferred cancel for trade %s", state.draft.entry_id)
        return TransitionResult(TransitionStatus.CANCELLED, message="Trade entry cancelled.")

    def _get(self, user_id: int) -> Optional[ConversationState]:
        with self._registry_lock:
            return self._states.get(user_id)

    def _put(self, state: ConversationState) -> None:
        with self._registry_lock:
            self._states[state.user_id] = state

    def _drop(self, user_id: int) -> Optional[ConversationState]:
        with self._registry_lock:
            return self._states.pop(user_id, None)

    def _is_expired(self, state: ConversationState, now: datetime) -> bool:
        return now - as_utc(state.last_input_at) > self.idle_timeout

    def get_state(self, user_id: int) -> Optional[Dict[str, Any]]:
        """Read-only snapshot of a user's conversation."""
        state = self._get(user_id)
        return state.snapshot() if state else None

    def active_count(self) -> int:
        with self._registry_lock:
            return len(self._states)

    # ── Entry points ─────────────────────────────────────────────────────────

    def start_trade(
        self,
        user_id: int,
        prefill: Optional[Mapping[Any, Any]] = None,
        handle: Optional[Any] = None,
    ) -> TransitionResult:
        """
        Idle -> Step(1): open a fresh draft for the user.

        A stale conversation is purged first; a live one is replaced.
        ``prefill`` holds values supplied up front (e.g. extracted from a
        screenshot); the flow then opens at the first required field still
        missing, or at the preview when nothing required is missing.
        """
        with user_context(user_id):
            lock = self._acquire(user_id)
            if lock is None:
                return self._busy(user_id)
            try:
                now = self._clock()
                existing = self._get(user_id)
                if existing is not None:
                    if self._is_expired(existing, now):
                        logger.info("Purged expired conversation %s before new trade", existing.draft.entry_id)
                    else:
                        logger.info("Replacing active conversation %s with a new trade", existing.draft.entry_id)
                    self._drop(user_id)

                draft = DraftEntry(user_id=user_id, created_at=now)
                if prefill:
                    self._apply_prefill(draft, prefill)
                state = ConversationState(
                    user_id=user_id,
                    draft=draft,
                    flow=self.flow,
                    last_input_at=now,
                    presentation_handle=handle,
                )
                self._position_for_resume(state)
                self._put(state)
                logger.info("Started trade %s for user %s at %s", draft.entry_id, user_id, state.phase.value)
                result = self._present(state)
                return self._take_deferred_cancel(state) or result
            finally:
                self._release(user_id, lock)

    def handle(self, user_id: int, action: InputAction) -> TransitionResult:
        """
        Apply one user action to the user's conversation.

        Input arriving while another input for the same user is still being
        processed is rejected with BUSY rather than queued. CANCEL bypasses
        that guard and is honoured once the in-flight input completes, or
        at the latest before the next input is applied.
        """
        with user_context(user_id):
            if action.kind == InputKind.CANCEL:
                return self.cancel(user_id)

            lock = self._acquire(user_id)
            if lock is None:
                return self._busy(user_id)
            try:
                state = self._get(user_id)
                if state is None:
                    self.presenter.show_error(user_id, MSG_NO_SESSION)
                    return TransitionResult(TransitionStatus.NO_SESSION, message=MSG_NO_SESSION)
                if state.busy:
                    return self._busy(user_id, state)
                cancelled = self._take_deferred_cancel(state)
                if cancelled is not None:
                    return cancelled

                now = self._clock()
                if self._is_expired(state, now):
                    self._drop(user_id)
                    logger.info("Conversation %s expired after inactivity", state.draft.entry_id)
                    self.presenter.show_error(user_id, MSG_EXPIRED)
                    return TransitionResult(TransitionStatus.EXPIRED, message=MSG_EXPIRED)

                state.last_input_at = now
                state.busy = True
                try:
                    result = self._dispatch(state, action)
                except InvalidTransitionError as exc:
                    logger.warning("Rejected %s for user %s in %s: %s",
                                   action.kind.value, user_id, state.phase.value, exc)
                    self.presenter.show_error(user_id, str(exc))
                    self._render(state)
                    result = TransitionResult(TransitionStatus.REJECTED, state.snapshot(), str(exc))
                finally:
                    state.busy = False

                return self._take_deferred_cancel(state) or result
            finally:
                self._release(user_id, lock)

    def cancel(self, user_id: int) -> TransitionResult:
        """Any state -> Terminal(cancelled); idempotent."""
        state = self._get(user_id)
        if state is None:
            return TransitionResult(TransitionStatus.NO_SESSION, message=MSG_NO_SESSION)
        lock = self._acquire(user_id)
        if lock is None:
            state.cancel_requested = True
            logger.info("Cancel for trade %s deferred until current input completes", state.draft.entry_id)
            return TransitionResult(TransitionStatus.CANCEL_SCHEDULED, state.snapshot(), MSG_CANCEL_SCHEDULED)
        try:
            if self._get(user_id) is state:
                self._drop(user_id)
            logger.info("Cancelled trade %s for user %s", state.draft.entry_id, user_id)
            return TransitionResult(TransitionStatus.CANCELLED, message="Trade entry cancelled.")
        finally:
            self._release(user_id, lock)

    def park(self, user_id: int) -> TransitionResult:
        """Move the active draft aside so it can be resumed later."""
        return self.handle(user_id, InputAction.park())

    def resume(self, user_id: int, entry_id: str) -> TransitionResult:
        """Reactivate a parked draft; any active conversation is replaced."""
        with user_context(user_id):
            if self.pending_store is None:
                self.presenter.show_error(user_id, MSG_PENDING_GONE)
                return TransitionResult(TransitionStatus.NO_SESSION, message=MSG_PENDING_GONE)
            lock = self._acquire(user_id)
            if lock is None:
                return self._busy(user_id)
            try:
                now = self._clock()
                entry = self.pending_store.get(user_id, entry_id)
                if entry is None:
                    self.presenter.show_error(user_id, MSG_PENDING_GONE)
                    return TransitionResult(TransitionStatus.NO_SESSION, message=MSG_PENDING_GONE)
                if now - as_utc(entry.created_at) > self.pending_ttl:
                    self.pending_store.delete(user_id, entry_id)
                    self.presenter.show_error(user_id, MSG_EXPIRED)
                    return TransitionResult(TransitionStatus.EXPIRED, message=MSG_EXPIRED)

                existing = self._drop(user_id)
                if existing is not None:
                    logger.info("Replacing active conversation %s with parked trade %s",
                                existing.draft.entry_id, entry_id)
                # Leave the pending store before becoming active: a draft is never both.
                self.pending_store.delete(user_id, entry_id)
                state = ConversationState(
                    user_id=user_id,
                    draft=entry.draft,
                    flow=self.flow,
                    last_input_at=now,
                    presentation_handle=entry.presentation_handle,
                )
                self._position_for_resume(state)
                self._put(state)
                logger.info("Resumed parked trade %s at %s", entry_id, state.phase.value)
                result = self._present(state)
                return self._take_deferred_cancel(state) or result
            finally:
                self._release(user_id, lock)

    # ── Pending entries ──────────────────────────────────────────────────────

    def list_pending(self, user_id: int, page: int = 1) -> Tuple[List[PendingEntry], int]:
        """A page of the user's parked drafts (newest first) and the total count."""
        if self.pending_store is None:
            return [], 0
        self.pending_store.delete_older_than(self._clock() - self.pending_ttl)
        page = max(1, int(page))
        entries = self.pending_store.list_for_user(user_id, page=page, page_size=self.page_size)
        total = self.pending_store.count_for_user(user_id)
        self.presenter.show_pending(user_id, entries, page, total)
        return entries, total

    def clear_pending(self, user_id: int) -> int:
        if self.pending_store is None:
            return 0
        removed = self.pending_store.clear_for_user(user_id)
        logger.info("Cleared %d parked trades for user %s", removed, user_id)
        return removed

    def discard_pending(self, user_id: int, entry_id: str) -> bool:
        if self.pending_store is None:
            return False
        return self.pending_store.delete(user_id, entry_id)

    def sweep_expired(self) -> Dict[str, int]:
        """
        Free idle conversations and old parked drafts.

        Not required for correctness (expiry is also applied on next touch);
        meant for a periodic background job.
        """
        now = self._clock()
        with self._registry_lock:
            candidates = [s for s in self._states.values() if self._is_expired(s, now)]
        expired = 0
        for state in candidates:
            lock = self._acquire(state.user_id)
            if lock is None:
                continue
            try:
                if self._get(state.user_id) is state and self._is_expired(state, now):
                    self._drop(state.user_id)
                    expired += 1
            finally:
                self._release(state.user_id, lock)
        pending = 0
        if self.pending_store is not None:
            pending = self.pending_store.delete_older_than(now - self.pending_ttl)
        if expired or pending:
            logger.info("Swept %d idle conversations and %d parked trades", expired, pending)
        return {"states": expired, "pending": pending}

    # ── Transitions ──────────────────────────────────────────────────────────

    def _dispatch(self, state: ConversationState, action: InputAction) -> TransitionResult:
        if action.kind == InputKind.PARK:
            return self._park(state)
        if state.phase == Phase.STEP:
            return self._on_step(state, action)
        if state.phase == Phase.CONFIRMING:
            return self._on_confirming(state, action)
        return self._on_editing(state, action)

    def _on_step(self, state: ConversationState, action: InputAction) -> TransitionResult:
        trade_field = state.current_field
        kind = action.kind

        if kind == InputKind.VALUE:
            try:
                value = parse_field_input(trade_field, action.text)
            except FieldValidationError as exc:
                return self._input_error(state, exc)
            state.draft.set(trade_field, value)
            return self._advance(state)

        if kind == InputKind.PICK:
            if not trade_field.suggestable:
                raise InvalidTransitionError(f"{trade_field.key} has no options to pick from")
            if trade_field.is_multi:
                try:
                    self._toggle(state, trade_field, action.text)
                except FieldValidationError as exc:
                    return self._input_error(state, exc)
                return self._present(state)
            try:
                value = parse_field_input(trade_field, action.text)
            except FieldValidationError as exc:
                return self._input_error(state, exc)
            state.draft.set(trade_field, value)
            return self._advance(state)

        if kind == InputKind.SKIP:
            return self._advance(state)

        if kind == InputKind.DONE:
            if not trade_field.is_multi:
                raise InvalidTransitionError(f"{trade_field.key} is not a multi-select step")
            return self._advance(state)

        if kind == InputKind.BACK:
            if not state.nav_stack:
                raise InvalidTransitionError("Already at the first step")
            state.step = state.nav_stack.pop()
            state.option_offset = 0
            return self._present(state)

        if kind == InputKind.MORE:
            return self._next_page(state)

        if kind == InputKind.CONFIRM:
            raise InvalidTransitionError("The trade can be confirmed after the last step")
        raise InvalidTransitionError(f"Cannot {kind.value} while entering {trade_field.key}")

    def _on_confirming(self, state: ConversationState, action: InputAction) -> TransitionResult:
        kind = action.kind

        if kind == InputKind.CONFIRM:
            return self._commit(state)

        if kind == InputKind.EDIT:
            trade_field = action.field
            if trade_field is None or step_of(state.flow, trade_field) is None:
                raise InvalidTransitionError("That field is not part of this trade")
            state.phase = Phase.EDITING
            state.editing_field = trade_field
            state.option_offset = 0
            logger.info("Editing %s on trade %s", trade_field.key, state.draft.entry_id)
            return self._present(state)

        if kind == InputKind.BACK:
            state.phase = Phase.STEP
            state.step = state.nav_stack.pop() if state.nav_stack else state.total_steps
            state.option_offset = 0
            return self._present(state)

        raise InvalidTransitionError(f"Cannot {kind.value} on the trade preview")

    def _on_editing(self, state: ConversationState, action: InputAction) -> TransitionResult:
        trade_field = state.editing_field
        kind = action.kind

        if kind == InputKind.VALUE or (kind == InputKind.PICK and not trade_field.is_multi):
            if kind == InputKind.PICK and not trade_field.suggestable:
                raise InvalidTransitionError(f"{trade_field.key} has no options to pick from")
            try:
                value = parse_field_input(trade_field, action.text)
            except FieldValidationError as exc:
                return self._input_error(state, exc)
            state.draft.set(trade_field, value)
            return self._finish_edit(state)

        if kind == InputKind.PICK:
            try:
                self._toggle(state, trade_field, action.text)
            except FieldValidationError as exc:
                return self._input_error(state, exc)
            return self._present(state)

        if kind in (InputKind.SKIP, InputKind.BACK, InputKind.DONE):
            return self._finish_edit(state)

        if kind == InputKind.MORE:
            return self._next_page(state)

        raise InvalidTransitionError(f"Finish editing {trade_field.key} first")

    def _advance(self, state: ConversationState) -> TransitionResult:
        if state.phase != Phase.STEP or not 1 <= state.step <= state.total_steps:
            raise InvalidTransitionError("No step to advance from")
        state.nav_stack.append(state.step)
        state.option_offset = 0
        if state.step < state.total_steps:
            state.step += 1
        else:
            state.phase = Phase.CONFIRMING
        logger.debug("Trade %s advanced to %s %d", state.draft.entry_id, state.phase.value, state.step)
        return self._present(state)

    def _finish_edit(self, state: ConversationState) -> TransitionResult:
        state.phase = Phase.CONFIRMING
        state.editing_field = None
        state.option_offset = 0
        return self._present(state)

    def _toggle(self, state: ConversationState, trade_field: TradeField, text: Optional[str]) -> None:
        option = " ".join(str(text or "").split())
        if not option:
            raise FieldValidationError(trade_field, f"Pick a value for {trade_field.key}")
        selected = list(state.draft.get(trade_field) or [])
        remaining = [v for v in selected if v.casefold() != option.casefold()]
        if len(remaining) == len(selected):
            remaining.append(option)
            try:
                validate_multi(trade_field, remaining)
            except ValueError as exc:
                raise FieldValidationError(trade_field, str(exc)) from exc
        state.draft.set(trade_field, remaining)

    def _next_page(self, state: ConversationState) -> TransitionResult:
        total = len(self._options_for(state, top_n=None, offset=0))
        offset = state.option_offset + self.top_n
        state.option_offset = offset if offset < total else 0
        return self._present(state)

    def _input_error(self, state: ConversationState, exc: FieldValidationError) -> TransitionResult:
        state.error_count += 1
        if state.error_count >= self.max_input_errors:
            self._drop(state.user_id)
            logger.warning("Auto-cancelled trade %s after %d invalid inputs",
                           state.draft.entry_id, state.error_count)
            self.presenter.show_error(state.user_id, MSG_TOO_MANY_ERRORS)
            return TransitionResult(TransitionStatus.CANCELLED, message=MSG_TOO_MANY_ERRORS)
        logger.info("Invalid input for %s (%d/%d): %s",
                    exc.field.key, state.error_count, self.max_input_errors, exc.message)
        self.presenter.show_error(state.user_id, exc.message)
        self._render(state)
        return TransitionResult(TransitionStatus.INVALID_INPUT, state.snapshot(), exc.message)

    def _commit(self, state: ConversationState) -> TransitionResult:
        draft = state.draft
        missing = [f.key for f in REQUIRED_FIELDS if f in state.flow and not draft.has(f)]
        if missing:
            message = f"Fill in {', '.join(missing)} before saving."
            self.presenter.show_error(state.user_id, message)
            return TransitionResult(TransitionStatus.INVALID_INPUT, state.snapshot(), message)
        try:
            record = draft.to_record()
        except ValidationError as exc:
            message = "; ".join(err.get("msg", "") for err in exc.errors()) or "Trade is not valid"
            self.presenter.show_error(state.user_id, message)
            return TransitionResult(TransitionStatus.INVALID_INPUT, state.snapshot(), message)

        try:
            trade_id = self.trade_store.add(record)
        except Exception:
            logger.exception("Saving trade %s failed", draft.entry_id)
            self.presenter.show_error(state.user_id, MSG_COMMIT_FAILED)
            return TransitionResult(TransitionStatus.COMMIT_FAILED, state.snapshot(), MSG_COMMIT_FAILED)

        self.suggestions.invalidate_suggestions(state.user_id, draft.touched_fields())
        self._drop(state.user_id)
        logger.info("Committed trade %s as %s for user %s", draft.entry_id, trade_id, state.user_id)
        self.presenter.show_committed(draft, trade_id)
        return TransitionResult(TransitionStatus.COMMITTED, message="Trade saved.", trade_id=trade_id)

    def _park(self, state: ConversationState) -> TransitionResult:
        if self.pending_store is None:
            raise InvalidTransitionError("Parking trades is not available")
        entry = PendingEntry(
            entry_id=state.draft.entry_id,
            user_id=state.user_id,
            draft=state.draft,
            presentation_handle=state.presentation_handle,
            created_at=self._clock(),
        )
        self._drop(state.user_id)
        self.pending_store.save(entry)
        logger.info("Parked trade %s for user %s", entry.entry_id, state.user_id)
        return TransitionResult(TransitionStatus.PARKED, message="Trade saved for later.")

    # ── Presentation ─────────────────────────────────────────────────────────

    def _apply_prefill(self, draft: DraftEntry, prefill: Mapping[Any, Any]) -> None:
        for key, value in prefill.items():
            try:
                trade_field = key if isinstance(key, TradeField) else TradeField.from_key(key)
            except KeyError:
                logger.warning("Ignoring prefill for unknown field %r", key)
                continue
            if value is None or value == "":
                continue
            if isinstance(value, str):
                try:
                    value = parse_field_input(trade_field, value)
                except FieldValidationError as exc:
                    logger.warning("Ignoring prefill for %s: %s", trade_field.key, exc.message)
                    continue
            draft.set(trade_field, value)

    def _position_for_resume(self, state: ConversationState) -> None:
        """Open at the first missing required step, or at the preview when none is missing."""
        if not state.draft.values:
            return
        missing = [f for f in REQUIRED_FIELDS if f in state.flow and not state.draft.has(f)]
        if missing:
            state.step = step_of(state.flow, missing[0])
            state.phase = Phase.STEP
        else:
            state.step = state.total_steps
            state.phase = Phase.CONFIRMING
        state.nav_stack = list(range(1, state.step if state.phase == Phase.STEP else state.total_steps + 1))

    def _schema_for(self, user_id: int) -> Optional[SchemaSource]:
        if self.schema_resolver is None:
            return None
        try:
            return self.schema_resolver(user_id)
        except Exception:
            logger.warning("Schema resolver failed for user %s", user_id, exc_info=True)
            return None

    def _options_for(self, state: ConversationState, top_n: Optional[int], offset: int) -> List[FieldOption]:
        trade_field = state.current_field
        if trade_field is None or not trade_field.suggestable:
            return []
        try:
            return self.suggestions.get_suggestions(
                state.user_id,
                trade_field,
                draft=state.draft,
                schema=self._schema_for(state.user_id),
                top_n=top_n,
                offset=offset,
                now=self._clock(),
            )
        except Exception:
            logger.exception("Suggestions failed for %s; showing step without options", trade_field.key)
            return []

    def _render(self, state: ConversationState) -> None:
        if state.phase == Phase.CONFIRMING:
            handle = self.presenter.show_confirmation(state.draft)
        else:
            options = self._options_for(state, top_n=self.top_n, offset=state.option_offset)
            handle = self.presenter.show_step(state, options)
        if handle is not None:
            state.presentation_handle = handle

    def _present(self, state: ConversationState) -> TransitionResult:
        self._render(state)
        status = TransitionStatus.CONFIRMING if state.phase == Phase.CONFIRMING else TransitionStatus.STEP
        return TransitionResult(status, state.snapshot())

    def _busy(self, user_id: int, state: Optional[ConversationState] = None) -> TransitionResult:
        logger.info("Rejected input for user %s: still processing", user_id)
        state = state or self._get(user_id)
        return TransitionResult(TransitionStatus.BUSY, state.snapshot() if state else None, MSG_BUSY)
