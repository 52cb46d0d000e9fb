"""TLS server provisioning and readiness."""
