from clubhouse.models.record import StoredRecord

__all__ = [
    # Document store
    "StoredRecord",
]
