"""Calendar models, recurrence expansion and external feed ingestion."""
