"""Report layout: measurement, pagination and the passes that use them."""
