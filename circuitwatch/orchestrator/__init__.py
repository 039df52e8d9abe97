"""Runtime wiring: context, interval loops and bootstrap."""
