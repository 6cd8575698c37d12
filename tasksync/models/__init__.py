"""Model modules."""
from tasksync.models.kv import KeyValueEntry
