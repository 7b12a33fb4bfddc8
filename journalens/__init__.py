"""JournaLens: tiered journal summarization and insight reports."""
