"""Unit and property tests for the raster enhancer."""
