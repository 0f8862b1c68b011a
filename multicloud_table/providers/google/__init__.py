"""Google Cloud Datastore provider."""

from .adapter import GoogleDatastoreAdapter
from .codec import GoogleEntityCodec

__all__ = ["GoogleDatastoreAdapter", "GoogleEntityCodec"]
