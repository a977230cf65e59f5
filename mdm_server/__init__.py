"""FastAPI backend for MDM agent telemetry and compliance."""
