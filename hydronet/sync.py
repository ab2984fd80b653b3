"""
Scheme Synchronization for HydroNet.

Turns the change-set tracker into delete / update / create requests for the
scheme transport and integrates the outcome with NiceGUI toasts.

Each of the three requests succeeds or fails on its own. A successful
request clears only the entries it carried whose revision did not change
while it was in flight; a failed one leaves its set for the next save.
Local edits are never rolled back.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from hydronet.changeset import ChangeEntry, ChangeKind, ObjectKey
from hydronet.conversion import entries_to_feature_collection, tombstones_to_feature_collection
from hydronet.errors import SyncError
from hydronet.model import NetworkModel

logger = logging.getLogger(__name__)

# Request order within one save
OPERATIONS = ("delete", "update", "create")


@dataclass
class OperationResult:
    """Outcome of one of the three requests."""
    operation: str
    success: bool = True
    count: int = 0
    message: str = ""
    skipped: bool = False
    status_code: Optional[int] = None


@dataclass
class SyncResult:
    """Outcome of a save cycle."""
    operations: List[OperationResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None and all(op.success for op in self.operations)

    @property
    def sent(self) -> List[OperationResult]:
        return [op for op in self.operations if not op.skipped]

    def get(self, operation: str) -> Optional[OperationResult]:
        for op in self.operations:
            if op.operation == operation:
                return op
        return None

    def raise_for_failure(self) -> None:
        if self.error is not None:
            raise SyncError(self.error, "save")
        for op in self.operations:
            if not op.success:
                raise SyncError(op.message or f"{op.operation} failed", op.operation, op.status_code)


@dataclass
class SyncState:
    """Tracks the sync state of the editing session."""
    is_saving: bool = False
    last_saved_time: Optional[float] = None
    last_error: Optional[str] = None
    error_count: int = 0


@dataclass
class _PlannedRequest:
    operation: str
    kind: ChangeKind
    entries: List[ChangeEntry]
    payload: Dict[str, Any]
    checkpoint: Dict[ObjectKey, int]


class SchemeSyncClient:
    """
    Reconciliation client between a NetworkModel and a SchemeTransport.

    Events:
    - 'loaded': scheme hydrated into the model
    - 'saved': save cycle finished without failures
    - 'error': load failure, or a save cycle with at least one failure
    """

    def __init__(self, model: NetworkModel, transport, id_scheme: Optional[int] = None):
        """
        Args:
            model: The NetworkModel being edited
            transport: SchemeTransport instance
            id_scheme: Scheme being edited, may also be set by load_scheme
        """
        self.model = model
        self.transport = transport
        self.id_scheme = id_scheme
        self._state = SyncState()
        self._callbacks: Dict[str, List[Callable]] = {
            'loaded': [],
            'saved': [],
            'error': [],
        }

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def tracker(self):
        return self.model.tracker

    def on(self, event: str, callback: Callable) -> None:
        """Register a callback for 'loaded', 'saved' or 'error'."""
        if event in self._callbacks:
            self._callbacks[event].append(callback)

    def off(self, event: str, callback: Callable) -> None:
        if event in self._callbacks and callback in self._callbacks[event]:
            self._callbacks[event].remove(callback)

    def _emit(self, event: str, data: Any = None) -> None:
        for callback in self._callbacks.get(event, []):
            try:
                result = callback(data)
                if asyncio.iscoroutine(result):
                    asyncio.create_task(result)
            except Exception as e:
                logger.error(f"Error in callback for {event}: {e}")

    def _fail(self, message: str) -> None:
        self._state.last_error = message
        self._state.error_count += 1
        self._emit('error', {'message': message})

    # --- Loading ---

    def load_scheme(self, id_scheme: Optional[int] = None) -> bool:
        """Fetch a scheme and replace the model with it. Returns False on failure."""
        id_scheme = id_scheme if id_scheme is not None else self.id_scheme
        if id_scheme is None:
            logger.error("Cannot load: no scheme id")
            self._fail("No scheme selected")
            return False
        try:
            payload = self.transport.load_scheme(id_scheme)
        except SyncError as e:
            logger.error(f"Loading scheme {id_scheme} failed: {e}")
            self._fail(str(e))
            return False
        return self._apply_scheme(id_scheme, payload)

    def _apply_scheme(self, id_scheme: int, payload: Dict[str, Any]) -> bool:
        try:
            self.model.load_features(payload)
        except ValidationError as e:
            logger.error(f"Scheme {id_scheme} is not a FeatureCollection: {e}")
            self._fail(f"Scheme {id_scheme} has an invalid format")
            return False

        self.id_scheme = id_scheme
        self._emit('loaded', {
            'id_scheme': id_scheme,
            'nodes': len(list(self.model.iter_nodes())),
            'segments': len(self.model.segments),
        })
        return True

    async def load_scheme_async(self, id_scheme: Optional[int] = None) -> bool:
        """load_scheme() with the transport call kept off the event loop."""
        id_scheme = id_scheme if id_scheme is not None else self.id_scheme
        if id_scheme is None:
            return self.load_scheme()
        try:
            payload = await asyncio.to_thread(self.transport.load_scheme, id_scheme)
        except SyncError as e:
            logger.error(f"Loading scheme {id_scheme} failed: {e}")
            self._fail(str(e))
            return False
        return self._apply_scheme(id_scheme, payload)

    # --- Saving ---

    def _plan(self) -> List[_PlannedRequest]:
        """Compose all payloads and take checkpoints before any request goes out."""
        tracker = self.tracker
        plans = []

        deleted = tracker.get_deleted()
        if deleted:
            plans.append(_PlannedRequest(
                "delete", ChangeKind.DELETED, deleted,
                {"data": tombstones_to_feature_collection(deleted, self.id_scheme)},
                tracker.checkpoint(ChangeKind.DELETED),
            ))
        updated = tracker.get_updated()
        if updated:
            plans.append(_PlannedRequest(
                "update", ChangeKind.UPDATED, updated,
                {"data": entries_to_feature_collection(updated)},
                tracker.checkpoint(ChangeKind.UPDATED),
            ))
        created = tracker.get_created()
        if created:
            plans.append(_PlannedRequest(
                "create", ChangeKind.CREATED, created,
                {"data": entries_to_feature_collection(created, self.id_scheme)},
                tracker.checkpoint(ChangeKind.CREATED),
            ))
        return plans

    def _send(self, plan: _PlannedRequest) -> OperationResult:
        method = getattr(self.transport, f"{plan.operation}_objects")
        try:
            response = method(plan.payload) or {}
        except Exception as e:
            logger.error(f"{plan.operation} request raised: {e}")
            return OperationResult(plan.operation, success=False, count=len(plan.entries), message=str(e))
        return OperationResult(
            plan.operation,
            success=bool(response.get("success")),
            count=len(plan.entries),
            message=str(response.get("message", "")),
            status_code=response.get("status_code"),
        )

    def _settle(self, plan: _PlannedRequest, result: OperationResult) -> None:
        if not result.success:
            logger.error(f"{plan.operation} failed, keeping {len(plan.entries)} entries: {result.message}")
            self._release(plan)
            return
        if plan.kind == ChangeKind.DELETED:
            self.tracker.clear_deleted(plan.checkpoint)
        elif plan.kind == ChangeKind.UPDATED:
            self.tracker.clear_updated(plan.checkpoint)
        else:
            self.tracker.clear_created(plan.checkpoint)

    def _release(self, plan: _PlannedRequest) -> None:
        if plan.kind == ChangeKind.CREATED:
            self.tracker.release(plan.checkpoint)

    def _begin(self) -> Optional[SyncResult]:
        if self.id_scheme is None:
            logger.error("Cannot save: no scheme id")
            self._fail("No scheme selected")
            return SyncResult(error="No scheme selected")
        if self._state.is_saving:
            logger.warning("Save requested while another save is in flight")
            return SyncResult(error="Save already in progress")
        return None

    def _finish(self, results: List[OperationResult]) -> SyncResult:
        sent = {r.operation: r for r in results}
        operations = [
            sent.get(op) or OperationResult(op, skipped=True) for op in OPERATIONS
        ]
        outcome = SyncResult(operations=operations)
        self._state.is_saving = False

        if outcome.success:
            self._state.last_saved_time = time.time()
            counts = ", ".join(f"{r.operation}={r.count}" for r in results) or "nothing to send"
            logger.info(f"Scheme {self.id_scheme} saved ({counts})")
            self._emit('saved', {'id_scheme': self.id_scheme, 'result': outcome})
        else:
            failed = [r.operation for r in results if not r.success]
            self._fail(f"Failed to save: {', '.join(failed)}")
        return outcome

    def save_all(self) -> SyncResult:
        """Issue delete, update and create requests one after another."""
        early = self._begin()
        if early is not None:
            return early
        self._state.is_saving = True
        try:
            plans = self._plan()
            results = []
            for plan in plans:
                result = self._send(plan)
                self._settle(plan, result)
                results.append(result)
        finally:
            self._state.is_saving = False
        return self._finish(results)

    async def save_all_async(self) -> SyncResult:
        """Run the three requests concurrently in worker threads; clear on the event loop."""
        early = self._begin()
        if early is not None:
            return early
        self._state.is_saving = True
        plans = []
        try:
            plans = self._plan()
            results = await asyncio.gather(*(asyncio.to_thread(self._send, p) for p in plans))
        except BaseException:
            for plan in plans:
                self._release(plan)
            raise
        finally:
            self._state.is_saving = False
        for plan, result in zip(plans, results):
            self._settle(plan, result)
        return self._finish(list(results))


class NiceGUISyncAdapter:
    """
    Adapter that integrates SchemeSyncClient with NiceGUI.

    Surfaces save and load outcomes as toasts.
    """

    def __init__(self, sync_client: SchemeSyncClient):
        self._sync = sync_client
        self._refresh_callback: Optional[Callable] = None

        self._sync.on('loaded', self._on_loaded)
        self._sync.on('saved', self._on_saved)
        self._sync.on('error', self._on_error)

    def set_refresh_callback(self, callback: Callable) -> None:
        """Set the callback to redraw the map."""
        self._refresh_callback = callback

    def _on_loaded(self, data: Dict[str, Any]) -> None:
        from nicegui import ui

        ui.notify(f"Scheme {data.get('id_scheme')} loaded", timeout=1500)
        if self._refresh_callback:
            self._refresh_callback()

    def _on_saved(self, data: Dict[str, Any]) -> None:
        from nicegui import ui

        result: SyncResult = data.get('result')
        if result is not None and not result.sent:
            ui.notify('Nothing to save', timeout=1500)
        else:
            ui.notify('Changes saved', color='positive', timeout=2000)

    def _on_error(self, data: Dict[str, Any]) -> None:
        from nicegui import ui

        message = data.get('message', 'Unknown error')
        ui.notify(f'Sync error: {message}', color='negative', timeout=5000)


def create_scheme_sync(model: NetworkModel, transport,
                       id_scheme: Optional[int] = None) -> tuple:
    """
    Create and configure scheme sync for an editing session.

    Returns:
        Tuple of (SchemeSyncClient, NiceGUISyncAdapter)
    """
    client = SchemeSyncClient(model, transport, id_scheme=id_scheme)
    adapter = NiceGUISyncAdapter(client)
    return client, adapter
