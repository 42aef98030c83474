from .cleaner import AssetDataframeCleaner, default_cleaner, normalize_record

__all__ = ["AssetDataframeCleaner", "default_cleaner", "normalize_record"]
