"""
HydroNet - utility network editing and reconciliation engine.

Point-objects (wells, consumers, pumps, ...) and pipe segments are connected
purely by spatial coincidence. This package keeps that connectivity intact
while the operator edits the network and turns the edits into
create/update/delete requests for the scheme backend.
"""

__version__ = "0.3.0"
