"""
dreamshell: container sessions with persistent stdio transcripts.
"""

__version__ = "0.1.0"
