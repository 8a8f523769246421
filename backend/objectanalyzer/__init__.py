"""ObjectAnalyzer: threat-intelligence aggregation and risk scoring."""

__version__ = "0.1.0"
