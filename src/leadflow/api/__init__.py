"""HTTP API for the leadflow backend. The application lives in ``leadflow.api.app``."""
