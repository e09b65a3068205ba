"""Slide Orchestrator package.

Routes agent roles to model backends and runs the deck generation pipeline
(research, outline, per-section writing, enrichment, quality review, assembly)
as a LangGraph workflow.
"""
