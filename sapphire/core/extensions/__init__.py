"""Extension runtime — third-party reconciliation scripts run in a child process."""
