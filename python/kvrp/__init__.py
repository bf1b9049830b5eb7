"""KVRP community client: live feed synchronization over Supabase."""

__version__ = "0.1.0"
