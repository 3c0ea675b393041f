from querychat.models.kv_entry import KVEntry

__all__ = ["KVEntry"]
