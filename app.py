"""
Main NiceGUI application for HydroNet.

Renders the network on a leaflet map, binds pointer/keyboard events to the
EditController and saves the change-set through the SchemeSyncClient.
"""

import logging
import sys

from nicegui import ui

from dotenv import load_dotenv
load_dotenv()

from hydronet.coincidence import CoincidenceMatcher, WebMercatorViewport
from hydronet.config import load_settings
from hydronet.edit import EditController, MenuRole, Tool
from hydronet.edit.constants import JUNCTION_MIN_DEGREE
from hydronet.edit.handlers import setup_edit_handlers
from hydronet.model import NetworkModel, NodeType
from hydronet.paths import ensure_schemes_dir
from hydronet.storage import create_transport
from hydronet.sync import create_scheme_sync
from hydronet.topology import find_junctions

logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
logger = logging.getLogger(__name__)

# Ensure required directories exist on startup
ensure_schemes_dir()

TILE_URL = 'https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png'

NODE_COLORS = {
    NodeType.WELL: '#2563eb',
    NodeType.CONSUMER: '#16a34a',
    NodeType.CAPTURE: '#0891b2',
    NodeType.PUMP: '#9333ea',
    NodeType.RESERVOIR: '#ca8a04',
    NodeType.TOWER: '#dc2626',
}

TOOL_LABELS = {
    Tool.EDIT: 'Edit',
    Tool.PIPE: 'Pipe',
    Tool.WELL: NodeType.WELL.object_type,
    Tool.CONSUMER: NodeType.CONSUMER.object_type,
    Tool.CAPTURE: NodeType.CAPTURE.object_type,
    Tool.PUMP: NodeType.PUMP.object_type,
    Tool.RESERVOIR: NodeType.RESERVOIR.object_type,
    Tool.TOWER: NodeType.TOWER.object_type,
}


def latlng(coord):
    """Model (lng, lat) -> leaflet (lat, lng)."""
    return coord[1], coord[0]


@ui.page('/')
def main_page():
    settings = load_settings()
    matcher = CoincidenceMatcher(
        WebMercatorViewport(zoom=settings.zoom),
        tolerance_px=settings.junction_tolerance_px,
    )
    model = NetworkModel(matcher=matcher)
    controller = EditController(
        model,
        snap_radius_px=settings.snap_radius_px,
        finish_radius_px=settings.finish_radius_px,
    )
    transport = create_transport(settings)
    sync_client, sync_adapter = create_scheme_sync(model, transport, settings.scheme_id)

    state = {'map': None}

    def refresh_map():
        m = state['map']
        if m is None:
            return
        m.clear_layers()
        m.tile_layer(url_template=TILE_URL, options={'maxZoom': 19})
        for segment in model.segments:
            if segment.visible:
                m.generic_layer(name='polyline', args=[
                    [latlng(v) for v in segment.vertices],
                    {'color': '#0ea5e9', 'weight': 3},
                ])
        for node in model.iter_nodes():
            if node.visible:
                m.generic_layer(name='circleMarker', args=[
                    latlng(node.position),
                    {'radius': 8, 'color': NODE_COLORS[node.node_type], 'fillOpacity': 0.9},
                ])
        for junction in find_junctions(model, JUNCTION_MIN_DEGREE):
            m.generic_layer(name='circleMarker', args=[
                latlng(junction), {'radius': 4, 'color': '#111827', 'fillOpacity': 1},
            ])
        edit_state = controller.state
        vertices = getattr(edit_state, 'vertices', None)
        if vertices and len(vertices) > 1:
            m.generic_layer(name='polyline', args=[
                [latlng(v) for v in vertices], {'color': '#f97316', 'dashArray': '4 4'},
            ])
        temp_line = getattr(edit_state, 'temp_line', None)
        if temp_line:
            m.generic_layer(name='polyline', args=[
                [latlng(v) for v in temp_line], {'color': '#f97316', 'opacity': 0.6},
            ])

    # --- Dialogs ---

    with ui.dialog() as object_dialog, ui.card():
        object_title = ui.label()
        with ui.column():
            for node_type in NodeType:
                ui.button(
                    node_type.object_type,
                    on_click=lambda nt=node_type: (object_dialog.close(), handlers['handle_object_choice'](nt.key)),
                ).props('flat')
        ui.button('Cancel', on_click=lambda: (object_dialog.close(), handlers['handle_menu_dismiss']()))

    with ui.dialog() as diameter_dialog, ui.card():
        ui.label('Pipe diameter, mm')
        diameter_input = ui.number(value=110, min=1)
        with ui.row():
            ui.button('OK', on_click=lambda: (diameter_dialog.close(),
                                              handlers['handle_diameter'](diameter_input.value)))
            ui.button('Cancel', on_click=lambda: (diameter_dialog.close(),
                                                  handlers['handle_diameter_cancel']()))

    def open_object_menu(role: MenuRole):
        object_title.text = 'Start object' if role == MenuRole.START else 'End object'
        object_dialog.open()

    def open_diameter_prompt():
        diameter_dialog.open()

    def apply_affordances(map_panning: bool, cursor: str):
        m = state['map']
        if m is None:
            return
        m.style(f'cursor: {cursor}')
        toggle = 'enable' if map_panning else 'disable'
        ui.run_javascript(f'getElement({m.id}).map.dragging.{toggle}()')

    handlers = setup_edit_handlers(
        controller=controller,
        refresh_map=refresh_map,
        open_object_menu=open_object_menu,
        open_diameter_prompt=open_diameter_prompt,
        apply_affordances=apply_affordances,
    )
    sync_adapter.set_refresh_callback(refresh_map)

    ui.keyboard(on_key=handlers['handle_keyboard'])

    # --- Layout Construction ---

    center = (settings.center[1], settings.center[0])
    m = ui.leaflet(center=center, zoom=settings.zoom).style('width: 100vw; height: 100vh;')
    state['map'] = m
    m.on('map-click', handlers['handle_click'])
    m.on('map-mousemove', handlers['handle_mouse_move'])
    m.on('map-mousedown', handlers['handle_mouse_down'])
    m.on('map-mouseup', handlers['handle_mouse_up'])
    m.on('map-mouseout', handlers['handle_mouse_out'])

    async def on_view_change(e):
        bounds = None
        try:
            raw = await m.run_map_method('getBounds')
        except TimeoutError:
            logger.debug('getBounds timed out, keeping unbounded drag')
            raw = None
        if isinstance(raw, dict) and '_southWest' in raw:
            sw, ne = raw['_southWest'], raw['_northEast']
            bounds = (sw['lng'], sw['lat'], ne['lng'], ne['lat'])
        handlers['handle_view_change'](m.zoom, bounds)

    m.on('map-zoomend', on_view_change)
    m.on('map-moveend', on_view_change)

    with ui.row().classes('fixed left-4 top-4 z-[1000] bg-white/90 rounded shadow p-2 gap-1'):
        for tool, label in TOOL_LABELS.items():
            ui.button(label, on_click=lambda t=tool: handlers['handle_tool'](t)).props('dense outline')

        async def save():
            await sync_client.save_all_async()

        ui.button('Save', on_click=save).props('dense color=primary')

    async def load_initial_scheme():
        if settings.scheme_id is not None:
            await sync_client.load_scheme_async(settings.scheme_id)
        refresh_map()
        handlers['sync_affordances'](force=True)

    # Fetch after the page is delivered
    ui.timer(0, load_initial_scheme, once=True)


if __name__ in {"__main__", "__mp_main__"}:
    ui.run(
        title='HydroNet',
        port=8081,
        reload=not getattr(sys, 'frozen', False),
    )
