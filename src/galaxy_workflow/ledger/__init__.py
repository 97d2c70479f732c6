"""Galaxy records and the append-only placement ledger."""

from galaxy_workflow.ledger.galaxies import GalaxyRecord, GalaxyRegistry
from galaxy_workflow.ledger.positions import PlacementOutcome, PlacementRecord, PositionLedger

__all__ = [
    "GalaxyRecord",
    "GalaxyRegistry",
    "PlacementOutcome",
    "PlacementRecord",
    "PositionLedger",
]
