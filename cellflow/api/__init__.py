"""HTTP API for CellFlow."""
