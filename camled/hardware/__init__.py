"""Hardware-facing services: LED GPIO, simulated camera and the UI facade."""
