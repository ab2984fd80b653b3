"""
Shared constants for the map editing system.

All distances are screen pixels at the current zoom.
"""

# Click within this radius of an existing node/vertex snaps to it
SNAP_RADIUS_PX = 15

# Click within this radius of the last drawn vertex finishes the pipe
FINISH_RADIUS_PX = 10

# Pointer-down hit radii in edit mode (node icons are larger than vertex handles)
NODE_HIT_RADIUS_PX = 18
VERTEX_HIT_RADIUS_PX = 8

# Distance from a segment body that still counts as grabbing it
SEGMENT_HIT_TOLERANCE_PX = 8

# Junction markers are drawn where at least this many segment ends meet
JUNCTION_MIN_DEGREE = 3
