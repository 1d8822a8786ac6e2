"""VinylDrop - vinyl release aggregator for Reddit and Discogs."""

__version__ = "0.1.0"
