"""Key pairs, certificates, and their storage as Kubernetes Secrets."""
