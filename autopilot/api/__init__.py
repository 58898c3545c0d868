"""HTTP surface for the autopilot engines."""
