"""Port-backed libraries: graph store, reconciler and the workboard controller."""

from workboard.stdlib.lib.graph_store import EDGES_COLLECTION, NODES_COLLECTION, GraphStore
from workboard.stdlib.lib.reconciler import Reconciler
from workboard.stdlib.lib.workboard import Workboard

__all__ = [
    "EDGES_COLLECTION",
    "NODES_COLLECTION",
    "GraphStore",
    "Reconciler",
    "Workboard",
]
