"""IP pool storage, cluster-wide reservations and stale-address reconciliation."""

__version__ = "0.5.4"