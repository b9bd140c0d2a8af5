"""ACM Gateway - HL7 alarm ingestion, enrichment and persistence."""

__version__ = "0.1.0"
