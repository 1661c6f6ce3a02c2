"""Hospital ER encounter analytics: load, aggregate, chart and report."""
