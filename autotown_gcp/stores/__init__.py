from autotown_gcp.stores.registry import get_store_bundle

__all__ = ["get_store_bundle"]
