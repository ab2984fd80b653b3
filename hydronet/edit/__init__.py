"""
Map editing system for HydroNet.

This package provides tool/draw/drag editing of the network:
- EditController: State machine, hit testing and snapping
- EditActions: Committed network mutations and context-menu actions
- handlers: NiceGUI event binding for app.py

Usage:
    from hydronet.edit import EditController, EditActions
    from hydronet.edit.handlers import setup_edit_handlers
"""

from hydronet.edit.constants import (
    SNAP_RADIUS_PX,
    FINISH_RADIUS_PX,
    NODE_HIT_RADIUS_PX,
    VERTEX_HIT_RADIUS_PX,
    SEGMENT_HIT_TOLERANCE_PX,
)
from hydronet.edit.controller import (
    EditController,
    EditState,
    Idle,
    ToolSelected,
    DrawingPipe,
    Dragging,
    DragKind,
    DragTarget,
    MenuRole,
    Tool,
)
from hydronet.edit.actions import EditActions

__all__ = [
    'EditController',
    'EditState',
    'Idle',
    'ToolSelected',
    'DrawingPipe',
    'Dragging',
    'DragKind',
    'DragTarget',
    'MenuRole',
    'Tool',
    'EditActions',
    'SNAP_RADIUS_PX',
    'FINISH_RADIUS_PX',
    'NODE_HIT_RADIUS_PX',
    'VERTEX_HIT_RADIUS_PX',
    'SEGMENT_HIT_TOLERANCE_PX',
]
