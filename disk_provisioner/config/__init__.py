"""Configuration loading for disk-provisioner."""
