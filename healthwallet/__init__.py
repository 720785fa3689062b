"""HealthWallet records service: lab-report ingestion, biomarker scoring and trends."""

__version__ = "0.1.0"
