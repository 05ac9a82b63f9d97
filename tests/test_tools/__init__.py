"""
Test Tools Package
Tests for the tools module (RAG system, interaction checker, scheduler)
"""

__all__ = [
    "test_rag_system",
    "test_interaction_checker", 
    "test_scheduler",
]
