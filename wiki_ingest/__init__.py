"""
wiki_ingest - resilient ingestion of HoYoWiki agent and W-Engine entries
"""

__version__ = "1.0.0"
