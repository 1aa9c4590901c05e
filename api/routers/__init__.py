"""Query server routers."""
