"""
Provider adapters.

Each subpackage wraps one vendor SDK and is imported on demand by the
registry, so only the SDKs of the providers in use need to be importable.
"""
