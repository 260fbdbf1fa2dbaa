"""
Ultrasound Report Parser
========================
Ingestion service for veterinary ultrasound reports delivered as PDF.

Architecture:
    - Structural Scanner: Walks the PDF object table and recovers embedded images
    - Entity Field Mapper: Reconciles extractor entities into a fixed schema
    - Text Fallback Extractor: Carves diagnosis/recommendation sections from raw text
    - Report Builder: Merges mapped fields, fallbacks and sentinels
    - Pipeline Orchestrator: Validate → store → scan → upload → extract → persist

Version: 1.0.0
"""

__version__ = "1.0.0"
