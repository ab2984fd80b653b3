"""
Edit Handlers - Event handlers for map editing in app.py

This module binds leaflet/keyboard events to the EditController so the
main application file stays focused on layout.
"""

import logging
from typing import Any, Callable, Dict, Optional

from nicegui import ui

from hydronet.coincidence import Coord, WebMercatorViewport
from hydronet.edit.controller import DrawingPipe, EditController, MenuRole
from hydronet.errors import NetworkEditError

logger = logging.getLogger(__name__)


def event_latlng(event) -> Optional[Coord]:
    """Extract (lng, lat) from a leaflet event payload."""
    raw = event.args if hasattr(event, 'args') else event
    if not isinstance(raw, dict):
        return None
    latlng = raw.get('latlng') or raw
    if not isinstance(latlng, dict) or 'lat' not in latlng or 'lng' not in latlng:
        return None
    return float(latlng['lng']), float(latlng['lat'])


def setup_edit_handlers(
    controller: EditController,
    refresh_map: Callable[[], None],
    open_object_menu: Callable[[MenuRole], None],
    open_diameter_prompt: Callable[[], None],
    apply_affordances: Optional[Callable[[bool, str], None]] = None,
) -> Dict[str, Callable]:
    """
    Set up all edit mode event handlers.

    Args:
        controller: EditController instance
        refresh_map: Redraws layers from the model
        open_object_menu: Shows the start/end object-type menu
        open_diameter_prompt: Shows the diameter dialog
        apply_affordances: Receives (map_panning, cursor) whenever either changes

    Returns:
        Dict with handler functions for binding to UI events
    """
    model = controller.model
    applied = {'affordances': None}

    def sync_affordances(force: bool = False):
        """Map panning is off while points can be dragged."""
        if apply_affordances is None:
            return
        affordances = (not controller.dragging_enabled, controller.cursor)
        if force or affordances != applied['affordances']:
            applied['affordances'] = affordances
            apply_affordances(*affordances)

    def on_state_change(edit_state):
        """Open whatever prompt the new state asks for, then redraw."""
        sync_affordances()
        if isinstance(edit_state, DrawingPipe):
            if edit_state.menu is not None:
                open_object_menu(edit_state.menu)
            elif edit_state.awaiting_diameter:
                open_diameter_prompt()
        refresh_map()

    controller.set_on_state_change(on_state_change)

    def handle_tool(tool: str):
        controller.select_tool(tool)

    def handle_keyboard(e):
        if e.key == 'Escape' and e.action.keydown:
            was_drawing = isinstance(controller.state, DrawingPipe)
            controller.press_escape()
            if was_drawing:
                ui.notify('Drawing cancelled', position='bottom', timeout=800)

    def handle_click(event):
        point = event_latlng(event)
        if point is None:
            return
        created = controller.click(point)
        if created is not None:
            ui.notify(f'{created.object_type} #{created.id} added', position='bottom', timeout=800)
            refresh_map()

    def handle_mouse_move(event):
        point = event_latlng(event)
        if point is not None:
            controller.pointer_move(point)

    def handle_mouse_down(event):
        point = event_latlng(event)
        if point is not None:
            controller.pointer_down(point)

    def handle_mouse_up(event):
        controller.pointer_up(event_latlng(event))

    def handle_mouse_out(event):
        controller.pointer_cancel()

    def handle_view_change(zoom: float, bounds=None):
        """Zoom/pan changed: coincidence is measured at the new scale."""
        model.set_viewport(WebMercatorViewport(zoom=zoom, bounds=bounds))

    def handle_object_choice(node_type: str):
        try:
            controller.choose_object(node_type)
        except (ValueError, NetworkEditError) as e:
            ui.notify(f'Could not add pipe: {e}', type='negative', position='bottom')
            logger.warning(f"Pipe anchor failed: {e}")

    def handle_menu_dismiss():
        controller.dismiss_menu()

    def handle_diameter(value: Any):
        try:
            controller.confirm_diameter(value)
        except (TypeError, ValueError) as e:
            ui.notify(f'Invalid diameter: {value!r}', type='warning', position='bottom')
            logger.debug(f"Rejected diameter {value!r}: {e}")

    def handle_diameter_cancel():
        controller.cancel_diameter()

    def handle_context_action(action: Dict[str, Any]):
        try:
            result = controller.actions.commit_context_action(action)
        except (TypeError, ValueError, NetworkEditError) as e:
            ui.notify(f'Edit failed: {e}', type='negative', position='bottom')
            logger.warning(f"Context action {action.get('action')!r} failed: {e}")
            return None
        refresh_map()
        return result

    return {
        'handle_tool': handle_tool,
        'handle_keyboard': handle_keyboard,
        'handle_click': handle_click,
        'handle_mouse_move': handle_mouse_move,
        'handle_mouse_down': handle_mouse_down,
        'handle_mouse_up': handle_mouse_up,
        'handle_mouse_out': handle_mouse_out,
        'handle_view_change': handle_view_change,
        'handle_object_choice': handle_object_choice,
        'handle_menu_dismiss': handle_menu_dismiss,
        'handle_diameter': handle_diameter,
        'handle_diameter_cancel': handle_diameter_cancel,
        'handle_context_action': handle_context_action,
        'sync_affordances': sync_affordances,
    }
