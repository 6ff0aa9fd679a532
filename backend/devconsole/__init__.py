"""Dev-Console Co-Pilot backend"""
__version__ = "1.0.0"
