"""On-disk state: the provisioning marker."""
