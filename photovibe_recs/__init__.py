"""
PhotoVibe Recs - Songs That Feel Like Your Photo
================================================

A recommendation pipeline that reads the mood of a photo and picks a small,
diverse playlist that matches it, from a curated catalog and live Spotify
search.

Modules:
    - config: Configuration and constants
    - errors: Error taxonomy
    - features: Data model (analysis, candidates, audio features)
    - cache: TTL stores and the audio-feature cache
    - spotify_client: Spotify API wrapper
    - audio_features: Batched, cached audio features and popularity
    - catalog: Curated song catalog
    - vision: Image analysis
    - suggestions: AI song suggestions
    - candidates: Candidate track generation
    - scoring: Multi-criteria scoring engine
    - constraints: Diversity constraint engine
    - explainer: Explanation generation
    - recommender: Main recommendation orchestrator
    - cli: Command-line interface
"""

__version__ = "1.0.0"
__author__ = "PhotoVibe Team"
