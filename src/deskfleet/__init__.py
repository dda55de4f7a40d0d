"""
DeskFleet - isolated remote-desktop worker fleets on a single host
"""

__version__ = "0.1.0"

from .core import FleetRebuilder
from .errors import FleetError
from .fleet import Fleet

__all__ = ["Fleet", "FleetError", "FleetRebuilder"]
