"""
Scripts for CareCadence
Operational command-line utilities
"""
