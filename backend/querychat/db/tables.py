"""
Single source of truth for database tables that exist after migrations.

Chat sessions and saved visualizations are JSON documents stored under fixed keys in kv_entries
(see querychat.core.constants), so there is one table.
"""
# All tables that exist in the DB. Must match models and migrations.
ALL_TABLE_NAMES = ("kv_entries",)
