"""HTTP API over the query façade."""
