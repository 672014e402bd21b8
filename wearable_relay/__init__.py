"""Wearable webhook ingestion and real-time relay."""
