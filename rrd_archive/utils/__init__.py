"""Small helpers shared across rrd_archive."""
