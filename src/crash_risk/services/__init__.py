"""Services: statistics, signals, confirmation, hysteresis, watchdog, engine."""
